"""
Retention policy engine.

Applies every active retention policy in turn: eligible audit records are
archived, marked, and optionally deleted once they pass the policy's delete
threshold. Each policy is an isolated unit of work; a failure is logged,
counted and reported to the on_error callback, and the next policy runs.
"""

import time
from collections import Counter
from datetime import timedelta
from typing import Callable, Dict, Any, List, Optional

import structlog

from .archive_logging import ArchivalLogger
from .archive_metrics import ArchivalMetrics
from .archive_models import (
    ArchiveCleanupResult, ArchiveMetadata, RetentionArchiveResult, RetentionPolicy,
    VerificationStatus, utc_now
)
from .archive_orchestrator import ArchivalOrchestrator, compression_ratio
from .archive_store import ArchiveStore, AuditStore

logger = structlog.get_logger(__name__)

ErrorCallback = Callable[[str, Optional[str], Exception], None]


def summarize_records(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    """Count records by classification and by action."""
    by_classification = Counter(record.get('data_classification', 'unknown') for record in records)
    by_action = Counter(record.get('action', 'unknown') for record in records)
    return {
        'by_classification': dict(by_classification),
        'by_action': dict(by_action),
    }


class RetentionPolicyEngine:
    """Drives archival and expiry for all active retention policies."""

    def __init__(
        self,
        audit_store: AuditStore,
        archive_store: ArchiveStore,
        orchestrator: ArchivalOrchestrator,
        metrics: Optional[ArchivalMetrics] = None,
        operation_log: Optional[ArchivalLogger] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        self.audit_store = audit_store
        self.archive_store = archive_store
        self.orchestrator = orchestrator
        self.metrics = metrics or orchestrator.metrics
        self.operation_log = operation_log
        self.on_error = on_error

    def _report_failure(self, stage: str, policy_name: Optional[str], error: Exception):
        logger.error("Retention policy processing failed",
                     stage=stage, policy=policy_name, error=str(error),
                     error_type=type(error).__name__)
        self.metrics.record_policy_failure(stage)

        if self.operation_log:
            self.operation_log.log_policy_failure(stage, policy_name, error)

        if self.on_error:
            try:
                self.on_error(stage, policy_name, error)
            except Exception as callback_error:
                logger.error("Error callback raised", stage=stage, error=str(callback_error))

    async def _load_policies(self) -> Optional[List[RetentionPolicy]]:
        try:
            policies = await self.audit_store.list_active_retention_policies()
        except Exception as e:
            self._report_failure("list_policies", None, e)
            return None
        return [policy for policy in policies if policy.is_active]

    async def archive_data_by_retention_policies(self, dry_run: bool = False) -> List[RetentionArchiveResult]:
        """
        Archive records that have passed each active policy's archive threshold.

        Returns one result per policy that had eligible records. Policies with
        nothing to archive, and policies that failed, produce no entry. A
        failure to list policies returns an empty list.
        """
        policies = await self._load_policies()
        if not policies:
            return []

        logger.info("Applying retention policies", policies=len(policies), dry_run=dry_run)
        results = []

        for policy in policies:
            try:
                result = await self._archive_policy(policy, dry_run)
            except Exception as e:
                self._report_failure("archive_policy", policy.policy_name, e)
                continue

            if result is not None:
                results.append(result)
                if self.operation_log:
                    self.operation_log.log_archive_operation(result, dry_run)

        logger.info("Retention policies applied",
                    policies=len(policies), archived_policies=len(results),
                    records_archived=sum(r.records_archived for r in results))
        return results

    async def _archive_policy(self, policy: RetentionPolicy, dry_run: bool) -> Optional[RetentionArchiveResult]:
        start_time = time.perf_counter()
        policy.validate()

        now = utc_now()
        cutoff = now - timedelta(days=policy.effective_archive_after_days)
        records = await self.audit_store.select_records_for_policy(policy, cutoff)

        if not records:
            logger.debug("No records eligible for archival", policy=policy.policy_name)
            return None

        metadata = ArchiveMetadata(
            retention_policy=policy.policy_name,
            data_classification=policy.data_classification,
            date_range={
                'start': str(records[0].get('timestamp')),
                'end': str(records[-1].get('timestamp')),
            },
        )
        summary = summarize_records(records)

        if dry_run:
            archive = self.orchestrator.prepare_archive(records, metadata)
            return RetentionArchiveResult(
                policy=policy.policy_name,
                records_archived=len(records),
                records_deleted=0,
                original_data_size=archive.metadata.original_size,
                compressed_data_size=archive.metadata.compressed_size,
                compression_ratio=compression_ratio(
                    archive.metadata.original_size, archive.metadata.compressed_size
                ),
                processing_time_ms=(time.perf_counter() - start_time) * 1000,
                verification_status=VerificationStatus.SKIPPED,
                archive_id=None,
                summary=summary,
            )

        archive_result = await self.orchestrator.create_archive(records, metadata)
        record_ids = [record['id'] for record in records]
        marked = False

        try:
            await self.audit_store.mark_records_archived(record_ids, now)
            marked = True

            records_deleted = 0
            if policy.delete_after_days is not None:
                delete_cutoff = now - timedelta(days=policy.delete_after_days)
                records_deleted = await self.audit_store.delete_expired_records(policy, delete_cutoff)
        except Exception:
            await self._discard_archive(policy, archive_result.archive_id, record_ids if marked else [])
            raise

        logger.info("Policy archived",
                    policy=policy.policy_name,
                    archive_id=archive_result.archive_id,
                    records_archived=archive_result.record_count,
                    records_deleted=records_deleted)

        return RetentionArchiveResult(
            policy=policy.policy_name,
            records_archived=archive_result.record_count,
            records_deleted=records_deleted,
            original_data_size=archive_result.original_size,
            compressed_data_size=archive_result.compressed_size,
            compression_ratio=archive_result.compression_ratio,
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
            verification_status=archive_result.verification_status,
            archive_id=archive_result.archive_id,
            summary=summary,
        )

    async def _discard_archive(self, policy: RetentionPolicy, archive_id: str, marked_ids: List[Any]):
        """Undo a stored archive whose records could not be marked or expired."""
        try:
            if marked_ids:
                await self.audit_store.unmark_records_archived(marked_ids)
            await self.archive_store.delete_archives([archive_id])
        except Exception as e:
            logger.error("Failed to discard archive of failed policy run",
                         policy=policy.policy_name, archive_id=archive_id, error=str(e))
            return

        logger.warning("Discarded archive of failed policy run",
                       policy=policy.policy_name, archive_id=archive_id,
                       records_unmarked=len(marked_ids))

    async def cleanup_old_archives(self, dry_run: bool = False) -> ArchiveCleanupResult:
        """Delete archives older than their policy's delete_after_days."""
        now = utc_now()
        archives_deleted = 0
        space_freed = 0

        policies = await self._load_policies() or []

        for policy in policies:
            if policy.delete_after_days is None:
                continue

            try:
                cutoff = now - timedelta(days=policy.delete_after_days)
                expired = await self.archive_store.find_archives_created_before(policy.policy_name, cutoff)
                if not expired:
                    continue

                freed = sum(archive.metadata.compressed_size for archive in expired)
                if dry_run:
                    deleted = len(expired)
                else:
                    deleted = await self.archive_store.delete_archives([archive.id for archive in expired])

                archives_deleted += deleted
                space_freed += freed
                logger.info("Expired archives removed",
                            policy=policy.policy_name, archives=deleted,
                            bytes_freed=freed, dry_run=dry_run)
            except Exception as e:
                self._report_failure("cleanup_policy", policy.policy_name, e)

        result = ArchiveCleanupResult(
            archives_deleted=archives_deleted,
            space_freed=space_freed,
            cleanup_timestamp=now.isoformat(),
        )

        if self.operation_log:
            self.operation_log.log_cleanup(result, dry_run)

        return result
