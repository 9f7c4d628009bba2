"""
Archival CLI for AuditVault.

This module provides the command-line interface for archiving audit records
under retention policies, secure deletion, archive retrieval and maintenance.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import structlog

from .archive_manager import ArchiveManager
from .archive_models import ArchiveRetrievalRequest, DateRange, DeletionCriteria, VerificationStatus


def setup_logging(verbose: bool = False):
    """Setup logging configuration; structlog output is routed through logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.KeyValueRenderer(key_order=['event']),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _create_manager(args, failures: Optional[List[str]] = None) -> ArchiveManager:
    def on_error(stage, policy_name, error):
        if failures is not None:
            failures.append(f"{stage}:{policy_name or '-'}: {error}")

    return ArchiveManager(args.config, args.db, on_error=on_error)


async def run_archive(args) -> int:
    """Archive records under every active retention policy."""
    failures: List[str] = []
    manager = _create_manager(args, failures)

    print(f"Starting archival (dry_run={args.dry_run})...")
    results = await manager.archive_data_by_retention_policies(dry_run=args.dry_run)

    print(f"\nArchival completed: {len(results)} policies archived")
    for result in results:
        status_icon = "✗" if result.verification_status == VerificationStatus.FAILED else "✓"
        print(f"{status_icon} {result.policy}: {result.records_archived} archived, "
              f"{result.records_deleted} deleted, ratio {result.compression_ratio:.2f}, "
              f"{result.verification_status.value} ({result.archive_id or 'not stored'})")

    for failure in failures:
        print(f"  Error: {failure}")

    failed_verification = any(r.verification_status == VerificationStatus.FAILED for r in results)
    return 1 if failures or failed_verification else 0


async def run_delete(args) -> int:
    """Securely delete audit records matching the given criteria."""
    manager = _create_manager(args)

    criteria = DeletionCriteria(
        principal_id=args.principal_id,
        organization_id=args.organization_id,
        date_range=DateRange.parse(args.date_range) if args.date_range else None,
        data_classifications=args.classification,
        retention_policies=args.policy,
        verify_deletion=not args.no_verify and manager.config_manager.verify_deletion,
    )

    if criteria.is_empty():
        print("No deletion criteria given, nothing to delete")
        return 1

    result = await manager.secure_delete_data(criteria, dry_run=args.dry_run)

    verb = "would be deleted" if args.dry_run else "deleted"
    print(f"Records {verb}: {result.records_deleted}")
    print(f"Verification: {result.verification_status.value}")
    if result.verification_details is not None:
        print(f"Remaining records: {result.verification_details.remaining_records}")

    return 1 if result.verification_status == VerificationStatus.FAILED else 0


async def run_retrieve(args) -> int:
    """Read archived records back out."""
    manager = _create_manager(args)

    request = ArchiveRetrievalRequest(
        archive_id=args.archive_id,
        data_classifications=args.classification,
        retention_policies=args.policy,
        principal_id=args.principal_id,
        organization_id=args.organization_id,
        actions=args.actions,
        date_range=DateRange.parse(args.date_range) if args.date_range else None,
        limit=args.limit,
        offset=args.offset,
    )

    result = await manager.retrieve_archived_data(request)
    payload = json.dumps(result.to_dict(), indent=2, default=str)

    if args.output:
        with open(args.output, 'w') as f:
            f.write(payload)
        print(f"Retrieved {result.record_count} records from {len(result.archives)} archives to {args.output}")
    else:
        print(payload)

    if result.excluded_archive_ids:
        print(f"Excluded unreadable archives: {', '.join(result.excluded_archive_ids)}", file=sys.stderr)

    return 0


async def show_stats(args) -> int:
    """Show archive statistics."""
    manager = _create_manager(args)
    stats = await manager.get_archive_statistics()

    if args.prometheus:
        await manager.validate_all_archives()
        print(manager.export_metrics().decode("utf-8"), end="")
        return 0

    print("Archive Statistics")
    print("=" * 40)
    print(f"Total archives: {stats.total_archives}")
    print(f"Original size: {stats.total_original_size / 1024 / 1024:.2f} MB")
    print(f"Compressed size: {stats.total_compressed_size / 1024 / 1024:.2f} MB")
    print(f"Average compression ratio: {stats.average_compression_ratio:.3f}")
    print(f"Oldest archive: {stats.oldest_archive or 'None'}")
    print(f"Newest archive: {stats.newest_archive or 'None'}")

    if stats.archives_by_policy:
        print("\nBy policy:")
        for policy, count in sorted(stats.archives_by_policy.items()):
            print(f"  {policy}: {count}")

    if stats.archives_by_classification:
        print("\nBy classification:")
        for classification, count in sorted(stats.archives_by_classification.items()):
            print(f"  {classification}: {count}")

    return 0


async def run_validate(args) -> int:
    """Verify one archive, or every stored archive."""
    manager = _create_manager(args)

    if args.archive_id:
        valid = await manager.verify_archive_integrity(args.archive_id)
        print(f"{args.archive_id}: {'valid' if valid else 'corrupted or missing'}")
        return 0 if valid else 1

    result = await manager.validate_all_archives()
    print(f"Archives checked: {result.total_archives}")
    print(f"Valid: {result.valid_archives}")
    print(f"Corrupted: {result.corrupted_archives}")
    for archive_id in result.corrupted_archive_ids:
        print(f"  ✗ {archive_id}")

    return 1 if result.corrupted_archives else 0


async def run_cleanup(args) -> int:
    """Delete archives past their policy's delete threshold."""
    failures: List[str] = []
    manager = _create_manager(args, failures)

    result = await manager.cleanup_old_archives(dry_run=args.dry_run)
    verb = "would be deleted" if args.dry_run else "deleted"
    print(f"Archives {verb}: {result.archives_deleted}")
    print(f"Space freed: {result.space_freed / 1024 / 1024:.2f} MB")

    for failure in failures:
        print(f"  Error: {failure}")

    return 1 if failures else 0


async def show_policies(args) -> int:
    """Show retention policies."""
    manager = _create_manager(args)
    policies = await manager.list_retention_policies()

    print("Retention Policies")
    print("=" * 50)

    if not policies:
        print("No retention policies defined (run init-db to seed defaults)")

    for policy in policies:
        status = "ACTIVE" if policy.is_active else "INACTIVE"
        delete_after = policy.delete_after_days if policy.delete_after_days is not None else 'never'
        print(f"\n{policy.policy_name} ({status})")
        print(f"  Classification: {policy.data_classification}")
        print(f"  Description: {policy.description or '-'}")
        print(f"  Retention days: {policy.retention_days}")
        print(f"  Archive after days: {policy.effective_archive_after_days}")
        print(f"  Delete after days: {delete_after}")

    return 0


async def init_db(args) -> int:
    """Create the schema and seed the configured default policies."""
    manager = _create_manager(args)
    count = await manager.seed_default_policies()
    print(f"Database initialized at {args.db} with {count} retention policies")
    return 0


COMMANDS = {
    'archive': run_archive,
    'delete': run_delete,
    'retrieve': run_retrieve,
    'stats': show_stats,
    'validate': run_validate,
    'cleanup': run_cleanup,
    'policies': show_policies,
    'init-db': init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='auditvault-archival',
        description="AuditVault Audit Archival CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database and seed default retention policies
  auditvault-archival --db data/audit.db init-db

  # Preview archival without storing anything
  auditvault-archival --db data/audit.db archive --dry-run

  # Delete a principal's records and verify the deletion
  auditvault-archival --db data/audit.db delete --principal-id user-123

  # Retrieve archived records for one principal
  auditvault-archival --db data/audit.db retrieve --principal-id user-123 --output out.json
        """
    )

    # Global arguments
    parser.add_argument('--config', default='configs/archival.yaml',
                        help='Path to archival configuration file')
    parser.add_argument('--db', default='data/audit.db',
                        help='Path to SQLite database file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    archive_parser = subparsers.add_parser('archive', help='Archive records under retention policies')
    archive_parser.add_argument('--dry-run', action='store_true',
                                help='Prepare archives in memory without storing or marking records')

    delete_parser = subparsers.add_parser('delete', help='Securely delete audit records')
    delete_parser.add_argument('--principal-id', help='Delete records of this principal')
    delete_parser.add_argument('--organization-id', help='Delete records of this organization')
    delete_parser.add_argument('--date-range', help="Inclusive range 'start,end' in ISO-8601")
    delete_parser.add_argument('--classification', nargs='+', help='Data classifications to delete')
    delete_parser.add_argument('--policy', nargs='+', help='Retention policies to delete')
    delete_parser.add_argument('--no-verify', action='store_true', help='Skip post-delete verification')
    delete_parser.add_argument('--dry-run', action='store_true', help='Count matches without deleting')

    retrieve_parser = subparsers.add_parser('retrieve', help='Retrieve archived records')
    retrieve_parser.add_argument('--archive-id', help='Retrieve a single archive')
    retrieve_parser.add_argument('--principal-id', help='Only records of this principal')
    retrieve_parser.add_argument('--organization-id', help='Only records of this organization')
    retrieve_parser.add_argument('--actions', nargs='+', help='Only records with these actions')
    retrieve_parser.add_argument('--classification', nargs='+', help='Only archives of these classifications')
    retrieve_parser.add_argument('--policy', nargs='+', help='Only archives of these retention policies')
    retrieve_parser.add_argument('--date-range', help="Inclusive range 'start,end' in ISO-8601")
    retrieve_parser.add_argument('--limit', type=int, help='Maximum number of archives')
    retrieve_parser.add_argument('--offset', type=int, default=0, help='Archives to skip')
    retrieve_parser.add_argument('--output', help='Write the result as JSON to this file')

    stats_parser = subparsers.add_parser('stats', help='Show archive statistics')
    stats_parser.add_argument('--prometheus', action='store_true',
                              help='Print archive metrics in the Prometheus text format')

    validate_parser = subparsers.add_parser('validate', help='Verify archive integrity')
    validate_parser.add_argument('--archive-id', help='Verify a single archive')

    cleanup_parser = subparsers.add_parser('cleanup', help='Delete expired archives')
    cleanup_parser.add_argument('--dry-run', action='store_true',
                                help='Report expired archives without deleting them')

    subparsers.add_parser('policies', help='Show retention policies')
    subparsers.add_parser('init-db', help='Create the schema and seed default policies')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
