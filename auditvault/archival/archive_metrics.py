"""
Prometheus metrics for archival activity.

Each ArchivalMetrics instance owns its registry, so several engines or test
cases can create their own without colliding in the global default registry.
"""

import logging
from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest

logger = logging.getLogger(__name__)


class ArchivalMetrics:
    """Counters and histograms for archive creation, deletion and retrieval."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.archives_created = Counter(
            'archival_archives_created_total',
            'Archives created',
            ['retention_policy'],
            registry=self.registry
        )

        self.records_archived = Counter(
            'archival_records_archived_total',
            'Audit records written to archives',
            ['retention_policy'],
            registry=self.registry
        )

        self.policy_failures = Counter(
            'archival_policy_failures_total',
            'Retention policy processing failures',
            ['stage'],
            registry=self.registry
        )

        self.records_deleted = Counter(
            'archival_records_deleted_total',
            'Audit records removed by secure deletion',
            registry=self.registry
        )

        self.deletion_verifications = Counter(
            'archival_deletion_verifications_total',
            'Secure deletion verification outcomes',
            ['status'],
            registry=self.registry
        )

        self.archives_retrieved = Counter(
            'archival_archives_retrieved_total',
            'Archives returned by retrieval requests',
            registry=self.registry
        )

        self.integrity_checks = Counter(
            'archival_integrity_checks_total',
            'Archive integrity check outcomes',
            ['result'],
            registry=self.registry
        )

        self.archive_creation_duration = Histogram(
            'archival_archive_creation_seconds',
            'Time spent serializing, compressing and storing an archive',
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
            registry=self.registry
        )

    def record_archive_created(self, retention_policy: str, record_count: int):
        self.archives_created.labels(retention_policy=retention_policy).inc()
        self.records_archived.labels(retention_policy=retention_policy).inc(record_count)

    def record_policy_failure(self, stage: str):
        self.policy_failures.labels(stage=stage).inc()

    def record_deletion(self, records_deleted: int, verification_status: str):
        self.records_deleted.inc(records_deleted)
        self.deletion_verifications.labels(status=verification_status).inc()

    def record_retrieval(self, archive_count: int):
        self.archives_retrieved.inc(archive_count)

    def record_integrity_check(self, valid: bool):
        self.integrity_checks.labels(result='valid' if valid else 'corrupted').inc()

    def get_sample_value(self, name: str, labels: Optional[dict] = None) -> Optional[float]:
        """Read a single sample from this instance's registry."""
        return self.registry.get_sample_value(name, labels or {})

    def export(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
