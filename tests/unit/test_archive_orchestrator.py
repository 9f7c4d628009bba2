"""
Unit tests for archive creation.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from auditvault.archival.archive_codec import (
    ConfigurationError, UnsupportedCompressionError, UnsupportedFormatError, compute_checksum,
    decode_archive
)
from auditvault.archival.archive_metrics import ArchivalMetrics
from auditvault.archival.archive_models import ArchiveConfig, ArchiveMetadata, VerificationStatus
from auditvault.archival.archive_orchestrator import ArchivalOrchestrator, compression_ratio
from auditvault.archival.sqlite_store import SQLiteArchiveStore, initialize_schema


def _records(count=3):
    return [
        {
            'id': i,
            'timestamp': f'2024-01-{i + 1:02d}T12:00:00+00:00',
            'principal_id': 'user123' if i % 2 == 0 else 'user456',
            'action': 'login',
            'data_classification': 'INTERNAL',
            'retention_policy': 'standard',
            'hash': f'hash-{i}',
        }
        for i in range(count)
    ]


def _metadata():
    return ArchiveMetadata(retention_policy='standard', data_classification='INTERNAL')


@pytest.fixture
def archive_store(tmp_path):
    db_path = tmp_path / 'audit.db'
    initialize_schema(str(db_path))
    return SQLiteArchiveStore(str(db_path))


class TestArchivalOrchestrator:
    """Test cases for ArchivalOrchestrator."""

    @pytest.mark.asyncio
    async def test_create_archive_is_verified(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store)

        result = await orchestrator.create_archive(_records(), _metadata())

        assert result.record_count == 3
        assert result.verification_status == VerificationStatus.VERIFIED
        assert result.archive_id.startswith('archive_')
        assert result.compression_ratio == pytest.approx(result.compressed_size / result.original_size)

        stored = await archive_store.get_archive_by_id(result.archive_id)
        assert stored is not None
        assert stored.retrieved_count == 0
        assert stored.last_retrieved_at is None
        assert stored.metadata.checksum_compressed == compute_checksum(stored.data)
        assert decode_archive(stored) == _records()

    @pytest.mark.asyncio
    async def test_empty_records_produce_valid_archive(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store)

        result = await orchestrator.create_archive([], _metadata())

        assert result.record_count == 0
        assert result.original_size == 2
        assert result.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    @pytest.mark.parametrize('algorithm', ['none', 'gzip', 'deflate', 'bz2', 'lzma'])
    @pytest.mark.parametrize('format_name', ['json', 'jsonl'])
    async def test_every_algorithm_and_format_verifies(self, archive_store, algorithm, format_name):
        config = ArchiveConfig(compression_algorithm=algorithm, format=format_name)
        orchestrator = ArchivalOrchestrator(archive_store, config)

        result = await orchestrator.create_archive(_records(10), _metadata())

        assert result.verification_status == VerificationStatus.VERIFIED
        stored = await archive_store.get_archive_by_id(result.archive_id)
        assert stored.metadata.compression_algorithm == algorithm
        assert stored.metadata.format == format_name
        assert decode_archive(stored) == _records(10)

    @pytest.mark.asyncio
    async def test_none_algorithm_ratio_is_one(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store, ArchiveConfig(compression_algorithm='none'))

        result = await orchestrator.create_archive(_records(), _metadata())

        assert result.compression_ratio == 1.0
        assert result.checksum_original == result.checksum_compressed

    @pytest.mark.asyncio
    async def test_archive_ids_are_unique(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store)

        first = await orchestrator.create_archive(_records(), _metadata())
        second = await orchestrator.create_archive(_records(), _metadata())

        assert first.archive_id != second.archive_id
        assert len(await archive_store.list_archives()) == 2

    @pytest.mark.asyncio
    async def test_unsupported_format_stores_nothing(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store, ArchiveConfig(format='xml'))

        with pytest.raises(UnsupportedFormatError):
            await orchestrator.create_archive(_records(), _metadata())

        assert await archive_store.list_archives() == []

    @pytest.mark.asyncio
    async def test_unsupported_algorithm_stores_nothing(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store, ArchiveConfig(compression_algorithm='zstd'))

        with pytest.raises(UnsupportedCompressionError):
            await orchestrator.create_archive(_records(), _metadata())

        assert await archive_store.list_archives() == []

    @pytest.mark.asyncio
    async def test_invalid_level_stores_nothing(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store, ArchiveConfig(compression_level=11))

        with pytest.raises(ConfigurationError):
            await orchestrator.create_archive(_records(), _metadata())

        assert await archive_store.list_archives() == []

    @pytest.mark.asyncio
    async def test_verification_skipped_when_disabled(self, archive_store):
        orchestrator = ArchivalOrchestrator(archive_store, ArchiveConfig(verify_integrity=False))

        result = await orchestrator.create_archive(_records(), _metadata())

        assert result.verification_status == VerificationStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_failed_verification_reported(self, archive_store):
        integrity = Mock()
        integrity.verify_archive_integrity = AsyncMock(return_value=False)
        orchestrator = ArchivalOrchestrator(archive_store, integrity=integrity)

        result = await orchestrator.create_archive(_records(), _metadata())

        assert result.verification_status == VerificationStatus.FAILED
        integrity.verify_archive_integrity.assert_awaited_once_with(result.archive_id)

    @pytest.mark.asyncio
    async def test_store_error_propagates(self):
        store = Mock()
        store.store_archive = AsyncMock(side_effect=RuntimeError("disk full"))
        orchestrator = ArchivalOrchestrator(store)

        with pytest.raises(RuntimeError, match="disk full"):
            await orchestrator.create_archive(_records(), _metadata())

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, archive_store):
        metrics = ArchivalMetrics()
        orchestrator = ArchivalOrchestrator(archive_store, metrics=metrics)

        await orchestrator.create_archive(_records(4), _metadata())

        assert metrics.get_sample_value(
            'archival_archives_created_total', {'retention_policy': 'standard'}
        ) == 1.0
        assert metrics.get_sample_value(
            'archival_records_archived_total', {'retention_policy': 'standard'}
        ) == 4.0
        assert metrics.get_sample_value('archival_integrity_checks_total', {'result': 'valid'}) == 1.0


class TestPrepareArchive:
    """Test cases for building archives without side effects."""

    def test_prepare_archive_fills_creation_metadata(self):
        store = Mock()
        orchestrator = ArchivalOrchestrator(store, ArchiveConfig(compression_level=9, batch_size=250))

        archive = orchestrator.prepare_archive(_records(), _metadata())

        assert archive.metadata.record_count == 3
        assert archive.metadata.compression_algorithm == 'gzip'
        assert archive.metadata.compression_level == 9
        assert archive.metadata.format == 'json'
        assert archive.metadata.batch_size == 250
        assert archive.metadata.checksum_compressed == compute_checksum(archive.data)
        assert archive.retrieved_count == 0
        store.store_archive.assert_not_called()

    def test_compression_ratio_of_empty_payload(self):
        assert compression_ratio(0, 20) == 1.0
        assert compression_ratio(100, 25) == 0.25
