"""
Archive creation.

The orchestrator turns a batch of audit records into a compressed,
checksummed archive bundle, stores it and optionally verifies it.
"""

import dataclasses
import time
import uuid
from typing import Dict, Any, List, Optional

import structlog

from .archive_codec import compress, compute_checksum, serialize_records
from .archive_integrity import ArchiveIntegrityVerifier
from .archive_metrics import ArchivalMetrics
from .archive_models import (
    Archive, ArchiveConfig, ArchiveMetadata, ArchiveResult, VerificationStatus, utc_now
)
from .archive_store import ArchiveStore

logger = structlog.get_logger(__name__)


def generate_archive_id(now=None) -> str:
    now = now or utc_now()
    return f"archive_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex}"


def compression_ratio(original_size: int, compressed_size: int) -> float:
    """compressed/original, or 1.0 for an empty payload."""
    if original_size == 0:
        return 1.0
    return compressed_size / original_size


class ArchivalOrchestrator:
    """Builds, stores and verifies archive bundles."""

    def __init__(
        self,
        archive_store: ArchiveStore,
        config: Optional[ArchiveConfig] = None,
        integrity: Optional[ArchiveIntegrityVerifier] = None,
        metrics: Optional[ArchivalMetrics] = None
    ):
        self.archive_store = archive_store
        self.config = config or ArchiveConfig()
        self.metrics = metrics or ArchivalMetrics()
        self.integrity = integrity or ArchiveIntegrityVerifier(archive_store, self.metrics)

    def prepare_archive(self, records: List[Dict[str, Any]], metadata: ArchiveMetadata) -> Archive:
        """
        Serialize, compress and checksum records without storing anything.

        Raises UnsupportedFormatError, UnsupportedCompressionError or
        ConfigurationError when the configured format, algorithm or level
        cannot be used.
        """
        now = utc_now()
        serialized = serialize_records(records, self.config.format)
        compressed = compress(serialized, self.config.compression_algorithm, self.config.compression_level)

        full_metadata = dataclasses.replace(
            metadata,
            record_count=len(records),
            original_size=len(serialized),
            compressed_size=len(compressed),
            compression_ratio=compression_ratio(len(serialized), len(compressed)),
            checksum_original=compute_checksum(serialized),
            checksum_compressed=compute_checksum(compressed),
            compression_algorithm=self.config.compression_algorithm,
            compression_level=self.config.compression_level,
            format=self.config.format,
            batch_size=self.config.batch_size,
            created_at=now.isoformat(),
        )

        return Archive(
            id=generate_archive_id(now),
            metadata=full_metadata,
            data=compressed,
            created_at=now.isoformat(),
        )

    async def create_archive(self, records: List[Dict[str, Any]], metadata: ArchiveMetadata) -> ArchiveResult:
        """Create and persist an archive, verifying it when configured to."""
        start_time = time.perf_counter()

        archive = self.prepare_archive(records, metadata)

        try:
            await self.archive_store.store_archive(archive)
        except Exception as e:
            logger.error("Failed to store archive",
                         archive_id=archive.id,
                         retention_policy=metadata.retention_policy,
                         error=str(e))
            raise

        if self.config.verify_integrity:
            valid = await self.integrity.verify_archive_integrity(archive.id)
            verification_status = VerificationStatus.VERIFIED if valid else VerificationStatus.FAILED
        else:
            verification_status = VerificationStatus.SKIPPED

        elapsed = time.perf_counter() - start_time
        self.metrics.archive_creation_duration.observe(elapsed)
        self.metrics.record_archive_created(metadata.retention_policy, len(records))

        stored = archive.metadata
        result = ArchiveResult(
            archive_id=archive.id,
            record_count=stored.record_count,
            original_size=stored.original_size,
            compressed_size=stored.compressed_size,
            compression_ratio=stored.compression_ratio,
            checksum_original=stored.checksum_original,
            checksum_compressed=stored.checksum_compressed,
            verification_status=verification_status,
            timestamp=archive.created_at,
            processing_time_ms=elapsed * 1000,
        )

        log = logger.info if verification_status != VerificationStatus.FAILED else logger.error
        log("Archive created",
            archive_id=archive.id,
            retention_policy=metadata.retention_policy,
            record_count=result.record_count,
            compression_ratio=round(result.compression_ratio, 4),
            verification_status=verification_status.value)

        return result
