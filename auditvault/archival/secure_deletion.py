"""
Secure deletion of audit records.

Deletion is selected by explicit criteria only; criteria with no filters set
match nothing. The ids and hashes of deleted records are kept as evidence in
the operation log, and deletion can be verified afterwards record by record.
"""

from typing import Optional

import structlog

from .archive_logging import ArchivalLogger
from .archive_metrics import ArchivalMetrics
from .archive_models import (
    DeletionCriteria, SecureDeleteResult, VerificationDetails, VerificationStatus, utc_now
)
from .archive_store import AuditStore

logger = structlog.get_logger(__name__)


class SecureDeletionEngine:
    """Deletes audit records matching a criteria set and verifies the result."""

    def __init__(
        self,
        audit_store: AuditStore,
        metrics: Optional[ArchivalMetrics] = None,
        operation_log: Optional[ArchivalLogger] = None
    ):
        self.audit_store = audit_store
        self.metrics = metrics or ArchivalMetrics()
        self.operation_log = operation_log

    async def secure_delete_data(self, criteria: DeletionCriteria, dry_run: bool = False) -> SecureDeleteResult:
        """
        Delete records matching criteria.

        records_deleted is the size of the matched set. With
        criteria.verify_deletion set, every matched id is checked afterwards;
        the status is failed if any of them is still present.
        """
        deletion_timestamp = utc_now().isoformat()

        if criteria.is_empty():
            logger.warning("Secure deletion requested with no criteria, nothing selected")
            matched = []
        else:
            matched = await self.audit_store.select_records_for_deletion(criteria)

        record_ids = [record['id'] for record in matched]

        if dry_run:
            logger.info("Secure deletion dry run", matched=len(record_ids))
            result = SecureDeleteResult(
                records_deleted=len(record_ids),
                verification_status=VerificationStatus.SKIPPED,
                deletion_timestamp=deletion_timestamp,
            )
            if self.operation_log:
                self.operation_log.log_deletion(result, matched, criteria, dry_run=True)
            return result

        if record_ids:
            try:
                affected = await self.audit_store.delete_records(record_ids)
            except Exception as e:
                logger.error("Secure deletion failed", matched=len(record_ids), error=str(e))
                raise

            if affected != len(record_ids):
                logger.warning("Deleted row count differs from matched set",
                               matched=len(record_ids), affected=affected)

        verification_details = None
        if criteria.verify_deletion:
            remaining = 0
            for record_id in record_ids:
                if await self.audit_store.record_exists(record_id):
                    remaining += 1

            verification_details = VerificationDetails(
                all_deleted=remaining == 0,
                remaining_records=remaining,
            )
            verification_status = VerificationStatus.VERIFIED if remaining == 0 else VerificationStatus.FAILED
        else:
            verification_status = VerificationStatus.SKIPPED

        result = SecureDeleteResult(
            records_deleted=len(record_ids),
            verification_status=verification_status,
            deletion_timestamp=deletion_timestamp,
            verification_details=verification_details,
        )

        self.metrics.record_deletion(result.records_deleted, verification_status.value)

        if verification_status == VerificationStatus.FAILED:
            logger.error("Secure deletion verification failed",
                         records_deleted=result.records_deleted,
                         remaining_records=verification_details.remaining_records)
        else:
            logger.info("Secure deletion completed",
                        records_deleted=result.records_deleted,
                        verification_status=verification_status.value)

        if self.operation_log:
            self.operation_log.log_deletion(result, matched, criteria, dry_run=False)

        return result
