"""
Main archive manager - wires the archival system together.

This is the entry point used by the CLI: it builds the stores, engines,
metrics and operation log from a config file and a database path.
"""

import logging
from collections import Counter
from typing import List, Optional

from prometheus_client import CollectorRegistry

from .archive_config import ArchivalConfigManager
from .archive_integrity import ArchiveIntegrityVerifier
from .archive_logging import ArchivalLogger
from .archive_metrics import ArchivalMetrics
from .archive_models import (
    ArchiveCleanupResult, ArchiveRetrievalRequest, ArchiveRetrievalResult, ArchiveStatistics,
    ArchiveValidationResult, DeletionCriteria, RetentionArchiveResult, RetentionPolicy,
    SecureDeleteResult
)
from .archive_orchestrator import ArchivalOrchestrator
from .archive_retrieval import RetrievalEngine
from .retention_engine import ErrorCallback, RetentionPolicyEngine
from .secure_deletion import SecureDeletionEngine
from .sqlite_store import SQLiteArchiveStore, SQLiteAuditStore, initialize_schema

logger = logging.getLogger(__name__)


class ArchiveManager:
    """
    Facade over the archival system.

    Coordinates configuration, the SQLite stores, the retention, deletion and
    retrieval engines, and the operation log.
    """

    def __init__(
        self,
        config_path: str,
        db_path: str,
        registry: Optional[CollectorRegistry] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        self.config_path = config_path
        self.db_path = db_path

        self.config_manager = ArchivalConfigManager(config_path)
        initialize_schema(db_path)

        self.audit_store = SQLiteAuditStore(db_path)
        self.archive_store = SQLiteArchiveStore(db_path)
        self.metrics = ArchivalMetrics(registry)
        self.operation_log = ArchivalLogger(
            self.config_manager.logs_dir,
            enabled=self.config_manager.log_operations
        )

        self.integrity = ArchiveIntegrityVerifier(self.archive_store, self.metrics)
        self.orchestrator = ArchivalOrchestrator(
            self.archive_store,
            self.config_manager.get_archive_config(),
            self.integrity,
            self.metrics
        )
        self.retention = RetentionPolicyEngine(
            self.audit_store,
            self.archive_store,
            self.orchestrator,
            self.metrics,
            self.operation_log,
            on_error
        )
        self.deletion = SecureDeletionEngine(self.audit_store, self.metrics, self.operation_log)
        self.retrieval = RetrievalEngine(
            self.archive_store,
            self.metrics,
            self.operation_log,
            self.config_manager.default_retrieval_limit
        )

        logger.info(f"Archive Manager initialized with config from {config_path}")

    async def archive_data_by_retention_policies(self, dry_run: bool = False) -> List[RetentionArchiveResult]:
        if not self.config_manager.enabled:
            logger.warning("Archival is disabled in configuration")
            return []

        results = await self.retention.archive_data_by_retention_policies(dry_run=dry_run)
        if results:
            self.operation_log.create_archival_summary_report(results)
        return results

    async def cleanup_old_archives(self, dry_run: bool = False) -> ArchiveCleanupResult:
        return await self.retention.cleanup_old_archives(dry_run=dry_run)

    async def secure_delete_data(self, criteria: DeletionCriteria, dry_run: bool = False) -> SecureDeleteResult:
        return await self.deletion.secure_delete_data(criteria, dry_run=dry_run)

    async def retrieve_archived_data(self, request: ArchiveRetrievalRequest) -> ArchiveRetrievalResult:
        return await self.retrieval.retrieve_archived_data(request)

    async def verify_archive_integrity(self, archive_id: str) -> bool:
        return await self.integrity.verify_archive_integrity(archive_id)

    async def validate_all_archives(self) -> ArchiveValidationResult:
        return await self.integrity.validate_all_archives()

    async def list_retention_policies(self) -> List[RetentionPolicy]:
        return await self.audit_store.list_retention_policies()

    async def seed_default_policies(self) -> int:
        """Store the configured default policies. Returns how many were written."""
        policies = self.config_manager.get_default_policies()
        for policy in policies:
            await self.audit_store.save_retention_policy(policy)
        logger.info(f"Seeded {len(policies)} retention policies")
        return len(policies)

    async def get_archive_statistics(self) -> ArchiveStatistics:
        """Aggregate size, ratio and grouping figures over all stored archives."""
        archives = await self.archive_store.list_archives()

        if not archives:
            return ArchiveStatistics(
                total_archives=0,
                total_compressed_size=0,
                total_original_size=0,
                average_compression_ratio=0.0,
                archives_by_policy={},
                archives_by_classification={},
            )

        created = sorted(archive.created_at for archive in archives)
        return ArchiveStatistics(
            total_archives=len(archives),
            total_compressed_size=sum(a.metadata.compressed_size for a in archives),
            total_original_size=sum(a.metadata.original_size for a in archives),
            average_compression_ratio=sum(a.metadata.compression_ratio for a in archives) / len(archives),
            archives_by_policy=dict(Counter(a.metadata.retention_policy for a in archives)),
            archives_by_classification=dict(Counter(a.metadata.data_classification for a in archives)),
            oldest_archive=created[0],
            newest_archive=created[-1],
        )

    def export_metrics(self) -> bytes:
        return self.metrics.export()


def create_archive_manager(config_path: str, db_path: str) -> ArchiveManager:
    """Create and return an ArchiveManager instance."""
    return ArchiveManager(config_path, db_path)
