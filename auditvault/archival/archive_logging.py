"""
Operation log and reporting for the archival system.

Every archival, deletion, retrieval and cleanup operation is appended as one
JSON line to a dated operation log. Secure deletions also record the id and
hash of every deleted record as deletion evidence.
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional

from .archive_models import (
    ArchiveCleanupResult, ArchiveRetrievalResult, DeletionCriteria,
    RetentionArchiveResult, SecureDeleteResult, VerificationStatus
)

logger = logging.getLogger(__name__)


class ArchivalLogger:
    """Handles the operation audit trail and summary reports."""

    def __init__(self, logs_dir: str = "logs/archival", enabled: bool = True):
        self.logs_dir = Path(logs_dir)
        self.enabled = enabled
        if self.enabled:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def operation_log_file(self) -> Path:
        log_date = datetime.now().strftime("%Y-%m-%d")
        return self.logs_dir / f"archive_operations_{log_date}.jsonl"

    def log_archive_operation(self, result: RetentionArchiveResult, dry_run: bool = False):
        """Log the result of applying one retention policy."""
        log_entry = {
            "operation": "archive",
            "policy": result.policy,
            "archive_id": result.archive_id,
            "records_archived": result.records_archived,
            "records_deleted": result.records_deleted,
            "original_data_size": result.original_data_size,
            "compressed_data_size": result.compressed_data_size,
            "compression_ratio": round(result.compression_ratio, 4),
            "processing_time_ms": round(result.processing_time_ms, 2),
            "verification_status": result.verification_status.value,
            "summary": result.summary,
            "dry_run": dry_run,
        }

        if result.verification_status == VerificationStatus.FAILED:
            logger.error(f"Archive {result.archive_id} for policy {result.policy} failed verification")
        else:
            logger.info(f"Policy {result.policy}: {result.records_archived} records archived, "
                        f"{result.records_deleted} deleted")

        self._store_operation_log(log_entry)

    def log_policy_failure(self, stage: str, policy_name: Optional[str], error: Exception):
        self._store_operation_log({
            "operation": "policy_failure",
            "stage": stage,
            "policy": policy_name,
            "error_type": type(error).__name__,
            "error_message": str(error),
        })

    def log_deletion(
        self,
        result: SecureDeleteResult,
        deleted_records: List[Dict[str, Any]],
        criteria: DeletionCriteria,
        dry_run: bool = False
    ):
        """Log a secure deletion together with the id and hash of each record."""
        log_entry = {
            "operation": "secure_delete",
            "records_deleted": result.records_deleted,
            "verification_status": result.verification_status.value,
            "deletion_timestamp": result.deletion_timestamp,
            "criteria": {
                "principal_id": criteria.principal_id,
                "organization_id": criteria.organization_id,
                "date_range": (
                    {"start": criteria.date_range.start, "end": criteria.date_range.end}
                    if criteria.date_range else None
                ),
                "data_classifications": criteria.data_classifications,
                "retention_policies": criteria.retention_policies,
            },
            "evidence": [
                {"id": record.get("id"), "hash": record.get("hash")}
                for record in deleted_records
            ],
            "dry_run": dry_run,
        }

        if result.verification_details is not None:
            log_entry["remaining_records"] = result.verification_details.remaining_records

        self._store_operation_log(log_entry)

    def log_retrieval(self, result: ArchiveRetrievalResult):
        self._store_operation_log({
            "operation": "retrieve",
            "request_id": result.request_id,
            "archive_ids": [archive.archive_id for archive in result.archives],
            "excluded_archive_ids": result.excluded_archive_ids,
            "record_count": result.record_count,
            "total_size": result.total_size,
            "retrieval_time_ms": round(result.retrieval_time_ms, 2),
        })

    def log_cleanup(self, result: ArchiveCleanupResult, dry_run: bool = False):
        self._store_operation_log({
            "operation": "cleanup",
            "archives_deleted": result.archives_deleted,
            "space_freed": result.space_freed,
            "space_freed_mb": round(result.space_freed / 1024 / 1024, 2),
            "dry_run": dry_run,
        })

    def _store_operation_log(self, log_entry: Dict[str, Any]):
        """Append an entry to today's operation log."""
        if not self.enabled:
            return

        entry = {"timestamp": datetime.now().isoformat(), **log_entry}
        try:
            with open(self.operation_log_file, 'a') as f:
                f.write(json.dumps(entry, default=str) + '\n')
        except OSError as e:
            logger.error(f"Failed to store operation log: {e}")

    def read_operation_log(self, log_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read back the entries of one day's operation log."""
        log_date = log_date or datetime.now().strftime("%Y-%m-%d")
        log_file = self.logs_dir / f"archive_operations_{log_date}.jsonl"
        if not log_file.exists():
            return []

        with open(log_file, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]

    def create_archival_summary_report(self, results: List[RetentionArchiveResult]) -> Dict[str, Any]:
        """Create and store a summary report for one archival run."""
        total_original = sum(r.original_data_size for r in results)
        total_compressed = sum(r.compressed_data_size for r in results)

        report = {
            "report_id": f"archival_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}",
            "generated_at": datetime.now().isoformat(),
            "summary": {
                "policies_archived": len(results),
                "records_archived": sum(r.records_archived for r in results),
                "records_deleted": sum(r.records_deleted for r in results),
                "original_data_size": total_original,
                "compressed_data_size": total_compressed,
                "overall_compression_ratio": (
                    round(total_compressed / total_original, 4) if total_original else 1.0
                ),
                "failed_verifications": sum(
                    1 for r in results if r.verification_status == VerificationStatus.FAILED
                ),
            },
            "policies": [r.to_dict() for r in results],
        }

        if self.enabled:
            try:
                reports_dir = self.logs_dir / "reports"
                reports_dir.mkdir(parents=True, exist_ok=True)
                report_file = reports_dir / f"{report['report_id']}.json"
                with open(report_file, 'w') as f:
                    json.dump(report, f, indent=2, default=str)
                logger.debug(f"Archival summary report created: {report_file}")
            except OSError as e:
                logger.error(f"Failed to create archival summary report: {e}")

        return report
