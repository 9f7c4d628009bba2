"""
Unit tests for the retention policy engine.

Tests policy evaluation, per-policy failure isolation, dry runs and expired
archive cleanup.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from auditvault.archival.archive_metrics import ArchivalMetrics
from auditvault.archival.archive_models import (
    Archive, ArchiveConfig, ArchiveMetadata, ArchiveResult, RetentionPolicy, VerificationStatus,
    utc_now
)
from auditvault.archival.archive_orchestrator import ArchivalOrchestrator
from auditvault.archival.retention_engine import RetentionPolicyEngine, summarize_records


def _policy(name='standard', classification='INTERNAL', **kwargs):
    values = {'retention_days': 365, 'archive_after_days': 30}
    values.update(kwargs)
    return RetentionPolicy(policy_name=name, data_classification=classification, **values)


def _records(classification='INTERNAL', count=2):
    base = utc_now() - timedelta(days=60)
    return [
        {
            'id': f'{classification}-{i}',
            'timestamp': (base + timedelta(hours=i)).isoformat(),
            'principal_id': 'user123',
            'action': 'login' if i % 2 == 0 else 'data.read',
            'data_classification': classification,
            'retention_policy': 'standard',
            'hash': f'hash-{i}',
        }
        for i in range(count)
    ]


def _archive_result(archive_id='archive_1', record_count=2):
    return ArchiveResult(
        archive_id=archive_id,
        record_count=record_count,
        original_size=200,
        compressed_size=100,
        compression_ratio=0.5,
        checksum_original='a' * 64,
        checksum_compressed='b' * 64,
        verification_status=VerificationStatus.VERIFIED,
        timestamp=utc_now().isoformat(),
        processing_time_ms=1.0,
    )


@pytest.fixture
def audit_store():
    store = Mock()
    store.list_active_retention_policies = AsyncMock(return_value=[])
    store.select_records_for_policy = AsyncMock(return_value=[])
    store.mark_records_archived = AsyncMock(return_value=0)
    store.unmark_records_archived = AsyncMock(return_value=0)
    store.delete_expired_records = AsyncMock(return_value=0)
    return store


@pytest.fixture
def archive_store():
    store = Mock()
    store.find_archives_created_before = AsyncMock(return_value=[])
    store.delete_archives = AsyncMock(return_value=0)
    return store


@pytest.fixture
def orchestrator():
    orchestrator = Mock(spec=ArchivalOrchestrator)
    orchestrator.metrics = ArchivalMetrics()
    orchestrator.create_archive = AsyncMock(return_value=_archive_result())
    return orchestrator


class TestArchiveDataByRetentionPolicies:
    """Test cases for archive_data_by_retention_policies."""

    @pytest.mark.asyncio
    async def test_no_policies_returns_empty_list(self, audit_store, archive_store, orchestrator):
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        assert await engine.archive_data_by_retention_policies() == []
        orchestrator.create_archive.assert_not_called()

    @pytest.mark.asyncio
    async def test_archives_eligible_records(self, audit_store, archive_store, orchestrator):
        records = _records()
        audit_store.list_active_retention_policies.return_value = [_policy()]
        audit_store.select_records_for_policy.return_value = records
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        results = await engine.archive_data_by_retention_policies()

        assert len(results) == 1
        result = results[0]
        assert result.policy == 'standard'
        assert result.records_archived == 2
        assert result.records_deleted == 0
        assert result.archive_id == 'archive_1'
        assert result.compression_ratio == 0.5
        assert result.verification_status == VerificationStatus.VERIFIED
        assert result.summary['by_action'] == {'login': 1, 'data.read': 1}

        metadata = orchestrator.create_archive.call_args.args[1]
        assert metadata.retention_policy == 'standard'
        assert metadata.data_classification == 'INTERNAL'
        assert metadata.date_range == {'start': records[0]['timestamp'], 'end': records[-1]['timestamp']}

        audit_store.mark_records_archived.assert_awaited_once()
        assert audit_store.mark_records_archived.call_args.args[0] == ['INTERNAL-0', 'INTERNAL-1']
        audit_store.delete_expired_records.assert_not_called()

    @pytest.mark.asyncio
    async def test_cutoff_uses_archive_after_days(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(archive_after_days=45)]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        before = utc_now()
        await engine.archive_data_by_retention_policies()
        after = utc_now()

        cutoff = audit_store.select_records_for_policy.call_args.args[1]
        assert before - timedelta(days=45) <= cutoff <= after - timedelta(days=45)

    @pytest.mark.asyncio
    async def test_missing_archive_after_days_defaults_to_ninety(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(archive_after_days=None)]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        before = utc_now()
        await engine.archive_data_by_retention_policies()

        cutoff = audit_store.select_records_for_policy.call_args.args[1]
        assert cutoff <= before - timedelta(days=89)
        assert cutoff >= before - timedelta(days=91)

    @pytest.mark.asyncio
    async def test_policy_without_records_yields_no_entry(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy()]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        assert await engine.archive_data_by_retention_policies() == []
        orchestrator.create_archive.assert_not_called()

    @pytest.mark.asyncio
    async def test_inactive_policy_ignored(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(is_active=False)]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        assert await engine.archive_data_by_retention_policies() == []
        audit_store.select_records_for_policy.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_after_days_removes_expired_records(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(delete_after_days=365)]
        audit_store.select_records_for_policy.return_value = _records()
        audit_store.delete_expired_records.return_value = 7
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        before = utc_now()
        results = await engine.archive_data_by_retention_policies()

        assert results[0].records_deleted == 7
        policy, cutoff = audit_store.delete_expired_records.call_args.args
        assert policy.policy_name == 'standard'
        assert cutoff <= before - timedelta(days=364)

    @pytest.mark.asyncio
    async def test_failing_policy_does_not_abort_others(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [
            _policy('first', 'INTERNAL'),
            _policy('broken', 'CONFIDENTIAL'),
            _policy('third', 'PUBLIC'),
        ]

        async def select(policy, cutoff):
            if policy.policy_name == 'broken':
                raise RuntimeError("query failed")
            return _records(policy.data_classification)

        audit_store.select_records_for_policy.side_effect = select
        on_error = Mock()
        metrics = ArchivalMetrics()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, metrics=metrics,
                                       on_error=on_error)

        results = await engine.archive_data_by_retention_policies()

        assert [r.policy for r in results] == ['first', 'third']
        on_error.assert_called_once()
        stage, policy_name, error = on_error.call_args.args
        assert stage == 'archive_policy'
        assert policy_name == 'broken'
        assert isinstance(error, RuntimeError)
        assert metrics.get_sample_value(
            'archival_policy_failures_total', {'stage': 'archive_policy'}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_archive_failure_isolated(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy('first'), _policy('second')]
        audit_store.select_records_for_policy.return_value = _records()
        orchestrator.create_archive.side_effect = [RuntimeError("store down"), _archive_result('archive_2')]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        results = await engine.archive_data_by_retention_policies()

        assert len(results) == 1
        assert results[0].policy == 'second'
        assert results[0].archive_id == 'archive_2'
        audit_store.mark_records_archived.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_failure_discards_stored_archive(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy()]
        audit_store.select_records_for_policy.return_value = _records()
        audit_store.mark_records_archived.side_effect = RuntimeError("database locked")
        on_error = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        results = await engine.archive_data_by_retention_policies()

        assert results == []
        archive_store.delete_archives.assert_awaited_once_with(['archive_1'])
        audit_store.unmark_records_archived.assert_not_called()
        assert str(on_error.call_args.args[2]) == "database locked"

    @pytest.mark.asyncio
    async def test_delete_step_failure_unmarks_and_discards(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(delete_after_days=365)]
        audit_store.select_records_for_policy.return_value = _records()
        audit_store.delete_expired_records.side_effect = RuntimeError("disk I/O error")
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        results = await engine.archive_data_by_retention_policies()

        assert results == []
        audit_store.unmark_records_archived.assert_awaited_once_with(['INTERNAL-0', 'INTERNAL-1'])
        archive_store.delete_archives.assert_awaited_once_with(['archive_1'])

    @pytest.mark.asyncio
    async def test_failed_discard_still_reports_original_error(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy()]
        audit_store.select_records_for_policy.return_value = _records()
        audit_store.mark_records_archived.side_effect = RuntimeError("database locked")
        archive_store.delete_archives.side_effect = RuntimeError("archive store down")
        on_error = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        assert await engine.archive_data_by_retention_policies() == []
        assert str(on_error.call_args.args[2]) == "database locked"

    @pytest.mark.asyncio
    async def test_invalid_policy_skipped(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [
            _policy('invalid', retention_days=10, archive_after_days=30),
            _policy('valid'),
        ]
        audit_store.select_records_for_policy.return_value = _records()
        on_error = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        results = await engine.archive_data_by_retention_policies()

        assert [r.policy for r in results] == ['valid']
        assert isinstance(on_error.call_args.args[2], ValueError)

    @pytest.mark.asyncio
    async def test_listing_failure_returns_empty_list(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.side_effect = RuntimeError("connection lost")
        on_error = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        results = await engine.archive_data_by_retention_policies()

        assert results == []
        on_error.assert_called_once()
        assert on_error.call_args.args[0] == 'list_policies'
        assert on_error.call_args.args[1] is None

    @pytest.mark.asyncio
    async def test_raising_error_callback_does_not_propagate(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.side_effect = RuntimeError("connection lost")
        on_error = Mock(side_effect=RuntimeError("callback broken"))
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        assert await engine.archive_data_by_retention_policies() == []

    @pytest.mark.asyncio
    async def test_dry_run_stores_and_marks_nothing(self, audit_store, archive_store):
        audit_store.list_active_retention_policies.return_value = [_policy(delete_after_days=365)]
        audit_store.select_records_for_policy.return_value = _records(count=5)
        store = Mock()
        store.store_archive = AsyncMock()
        orchestrator = ArchivalOrchestrator(store, ArchiveConfig())
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        results = await engine.archive_data_by_retention_policies(dry_run=True)

        assert len(results) == 1
        assert results[0].records_archived == 5
        assert results[0].archive_id is None
        assert results[0].verification_status == VerificationStatus.SKIPPED
        assert results[0].original_data_size > 0
        store.store_archive.assert_not_called()
        audit_store.mark_records_archived.assert_not_called()
        audit_store.delete_expired_records.assert_not_called()

    @pytest.mark.asyncio
    async def test_operation_log_receives_results(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy()]
        audit_store.select_records_for_policy.return_value = _records()
        operation_log = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, operation_log=operation_log)

        results = await engine.archive_data_by_retention_policies()

        operation_log.log_archive_operation.assert_called_once_with(results[0], False)


class TestCleanupOldArchives:
    """Test cases for cleanup_old_archives."""

    def _archive(self, archive_id, compressed_size):
        return Archive(
            id=archive_id,
            metadata=ArchiveMetadata(
                retention_policy='standard',
                data_classification='INTERNAL',
                compressed_size=compressed_size,
            ),
            data=b'',
            created_at='2020-01-01T00:00:00+00:00',
        )

    @pytest.mark.asyncio
    async def test_deletes_expired_archives(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [
            _policy('standard', delete_after_days=365),
            _policy('keep_forever', 'CONFIDENTIAL'),
        ]
        archive_store.find_archives_created_before.return_value = [
            self._archive('archive_a', 100), self._archive('archive_b', 50)
        ]
        archive_store.delete_archives.return_value = 2
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        result = await engine.cleanup_old_archives()

        assert result.archives_deleted == 2
        assert result.space_freed == 150
        archive_store.find_archives_created_before.assert_awaited_once()
        assert archive_store.find_archives_created_before.call_args.args[0] == 'standard'
        archive_store.delete_archives.assert_awaited_once_with(['archive_a', 'archive_b'])

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [_policy(delete_after_days=365)]
        archive_store.find_archives_created_before.return_value = [self._archive('archive_a', 100)]
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator)

        result = await engine.cleanup_old_archives(dry_run=True)

        assert result.archives_deleted == 1
        assert result.space_freed == 100
        archive_store.delete_archives.assert_not_called()

    @pytest.mark.asyncio
    async def test_cleanup_failure_isolated(self, audit_store, archive_store, orchestrator):
        audit_store.list_active_retention_policies.return_value = [
            _policy('first', delete_after_days=365),
            _policy('second', delete_after_days=365),
        ]
        archive_store.find_archives_created_before.side_effect = [
            RuntimeError("query failed"),
            [self._archive('archive_b', 10)],
        ]
        archive_store.delete_archives.return_value = 1
        on_error = Mock()
        engine = RetentionPolicyEngine(audit_store, archive_store, orchestrator, on_error=on_error)

        result = await engine.cleanup_old_archives()

        assert result.archives_deleted == 1
        assert on_error.call_args.args[:2] == ('cleanup_policy', 'first')


def test_summarize_records():
    summary = summarize_records(_records(count=3))

    assert summary['by_classification'] == {'INTERNAL': 3}
    assert summary['by_action'] == {'login': 2, 'data.read': 1}
