"""
Integrity verification for stored archives.

An archive is intact when the SHA-256 of its stored bytes matches
checksum_compressed and the SHA-256 of its decompressed payload matches
checksum_original. Verification never changes retrieval statistics.
"""

from typing import List, Optional

import structlog

from .archive_codec import compute_checksum, decompress_archive_data
from .archive_metrics import ArchivalMetrics
from .archive_models import Archive, ArchiveValidationResult, utc_now
from .archive_store import ArchiveStore

logger = structlog.get_logger(__name__)


class ArchiveIntegrityVerifier:
    """Checks archives against the checksums recorded at creation."""

    def __init__(self, archive_store: ArchiveStore, metrics: Optional[ArchivalMetrics] = None):
        self.archive_store = archive_store
        self.metrics = metrics or ArchivalMetrics()

    def check_archive(self, archive: Archive) -> bool:
        """Verify an archive already in memory."""
        metadata = archive.metadata

        if not metadata.checksum_compressed or not metadata.checksum_original:
            logger.warning("Archive has no recorded checksums", archive_id=archive.id)
            return False

        if compute_checksum(archive.data) != metadata.checksum_compressed:
            logger.warning("Compressed checksum mismatch", archive_id=archive.id)
            return False

        try:
            payload = decompress_archive_data(archive)
        except Exception as e:
            logger.warning("Archive payload could not be decompressed",
                           archive_id=archive.id, error=str(e))
            return False

        if compute_checksum(payload) != metadata.checksum_original:
            logger.warning("Original checksum mismatch", archive_id=archive.id)
            return False

        return True

    async def verify_archive_integrity(self, archive_id: str) -> bool:
        """Return True only if the archive exists and both checksums match."""
        archive = await self.archive_store.get_archive_by_id(archive_id)
        if archive is None:
            logger.warning("Archive not found for integrity check", archive_id=archive_id)
            self.metrics.record_integrity_check(False)
            return False

        valid = self.check_archive(archive)
        self.metrics.record_integrity_check(valid)
        return valid

    async def validate_all_archives(self) -> ArchiveValidationResult:
        """Check every stored archive and report the corrupted ones."""
        archives = await self.archive_store.list_archives()
        corrupted: List[str] = []

        for archive in archives:
            valid = self.check_archive(archive)
            self.metrics.record_integrity_check(valid)
            if not valid:
                corrupted.append(archive.id)

        result = ArchiveValidationResult(
            total_archives=len(archives),
            valid_archives=len(archives) - len(corrupted),
            corrupted_archives=len(corrupted),
            corrupted_archive_ids=corrupted,
            validation_timestamp=utc_now().isoformat(),
        )

        if corrupted:
            logger.error("Corrupted archives detected",
                         corrupted=len(corrupted), archive_ids=corrupted)
        else:
            logger.info("All archives validated", total=len(archives))

        return result
