"""
SQLite implementations of the archival storage interfaces.

The audit log, retention policies and archive bundles live in one SQLite
database file. Statistics updates are single UPDATE statements so concurrent
readers never lose an increment.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional, Iterator, Sequence

from .archive_models import (
    Archive, ArchiveMetadata, ArchiveRetrievalRequest, DeletionCriteria, RetentionPolicy
)
from .archive_store import ArchiveStore, AuditStore

logger = logging.getLogger(__name__)

# Stay well below SQLite's bound-parameter limit
ID_CHUNK_SIZE = 500

SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY,
    timestamp TEXT NOT NULL,
    principal_id TEXT,
    organization_id TEXT,
    action TEXT NOT NULL,
    status TEXT,
    data_classification TEXT NOT NULL DEFAULT 'INTERNAL',
    retention_policy TEXT NOT NULL DEFAULT 'standard',
    hash TEXT,
    details TEXT,
    archived_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_log_classification ON audit_log(data_classification);
CREATE INDEX IF NOT EXISTS idx_audit_log_principal ON audit_log(principal_id);

CREATE TABLE IF NOT EXISTS audit_retention_policy (
    id INTEGER PRIMARY KEY,
    policy_name TEXT NOT NULL UNIQUE,
    retention_days INTEGER NOT NULL,
    archive_after_days INTEGER,
    delete_after_days INTEGER,
    data_classification TEXT NOT NULL,
    description TEXT,
    is_active TEXT DEFAULT 'true',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS archive_storage (
    id TEXT PRIMARY KEY,
    metadata TEXT NOT NULL,
    data BLOB NOT NULL,
    created_at TEXT NOT NULL,
    retrieved_count INTEGER NOT NULL DEFAULT 0,
    last_retrieved_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_archive_storage_created_at ON archive_storage(created_at);
"""


def initialize_schema(db_path: str):
    """Create the archival tables if they don't exist."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
    logger.info(f"Archival schema initialized in {path}")


def _chunks(values: Sequence[Any], size: int = ID_CHUNK_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SQLiteStore:
    """Shared connection handling for the SQLite stores."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self):
        initialize_schema(str(self.db_path))


class SQLiteAuditStore(SQLiteStore, AuditStore):
    """Audit log and retention policies backed by SQLite."""

    def _row_to_record(self, row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        details = record.get('details')
        if isinstance(details, str):
            try:
                record['details'] = json.loads(details)
            except json.JSONDecodeError:
                pass
        return record

    async def list_active_retention_policies(self) -> List[RetentionPolicy]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_retention_policy WHERE is_active = 'true' ORDER BY id"
            ).fetchall()
        return [RetentionPolicy.from_row(dict(row)) for row in rows]

    async def list_retention_policies(self) -> List[RetentionPolicy]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM audit_retention_policy ORDER BY id").fetchall()
        return [RetentionPolicy.from_row(dict(row)) for row in rows]

    async def save_retention_policy(self, policy: RetentionPolicy):
        """Insert or replace a policy by name."""
        row = policy.to_row()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO audit_retention_policy
                    (policy_name, retention_days, archive_after_days, delete_after_days,
                     data_classification, description, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(policy_name) DO UPDATE SET
                    retention_days = excluded.retention_days,
                    archive_after_days = excluded.archive_after_days,
                    delete_after_days = excluded.delete_after_days,
                    data_classification = excluded.data_classification,
                    description = excluded.description,
                    is_active = excluded.is_active
                """,
                (row['policy_name'], row['retention_days'], row['archive_after_days'],
                 row['delete_after_days'], row['data_classification'], row['description'],
                 row['is_active'])
            )

    async def insert_records(self, records: List[Dict[str, Any]]) -> int:
        """Append audit records. Returns the number inserted."""
        columns = ['id', 'timestamp', 'principal_id', 'organization_id', 'action', 'status',
                   'data_classification', 'retention_policy', 'hash', 'details']
        rows = []
        for record in records:
            details = record.get('details')
            if details is not None and not isinstance(details, str):
                details = json.dumps(details, default=str)
            rows.append((
                record.get('id'),
                record['timestamp'],
                record.get('principal_id'),
                record.get('organization_id'),
                record['action'],
                record.get('status'),
                record.get('data_classification', 'INTERNAL'),
                record.get('retention_policy', 'standard'),
                record.get('hash'),
                details,
            ))

        with self._connection() as conn:
            conn.executemany(
                f"INSERT INTO audit_log ({', '.join(columns)}) VALUES ({_placeholders(len(columns))})",
                rows
            )
        return len(rows)

    async def select_records_for_policy(self, policy: RetentionPolicy, cutoff: datetime) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM audit_log
                WHERE data_classification = ?
                  AND archived_at IS NULL
                  AND datetime(timestamp) <= datetime(?)
                ORDER BY datetime(timestamp) ASC, id ASC
                """,
                (policy.data_classification, cutoff.isoformat())
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    async def mark_records_archived(self, record_ids: List[Any], archived_at: datetime) -> int:
        updated = 0
        with self._connection() as conn:
            for chunk in _chunks(list(record_ids)):
                cursor = conn.execute(
                    f"UPDATE audit_log SET archived_at = ? WHERE id IN ({_placeholders(len(chunk))})",
                    (archived_at.isoformat(), *chunk)
                )
                updated += cursor.rowcount
        return updated

    async def unmark_records_archived(self, record_ids: List[Any]) -> int:
        updated = 0
        with self._connection() as conn:
            for chunk in _chunks(list(record_ids)):
                cursor = conn.execute(
                    f"UPDATE audit_log SET archived_at = NULL WHERE id IN ({_placeholders(len(chunk))})",
                    tuple(chunk)
                )
                updated += cursor.rowcount
        return updated

    async def delete_expired_records(self, policy: RetentionPolicy, cutoff: datetime) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                DELETE FROM audit_log
                WHERE data_classification = ?
                  AND archived_at IS NOT NULL
                  AND datetime(timestamp) <= datetime(?)
                """,
                (policy.data_classification, cutoff.isoformat())
            )
            deleted = cursor.rowcount
        logger.info(f"Deleted {deleted} expired records for policy {policy.policy_name}")
        return deleted

    async def select_records_for_deletion(self, criteria: DeletionCriteria) -> List[Dict[str, Any]]:
        if criteria.is_empty():
            return []

        clauses = []
        params: List[Any] = []

        if criteria.principal_id:
            clauses.append("principal_id = ?")
            params.append(criteria.principal_id)

        if criteria.organization_id:
            clauses.append("organization_id = ?")
            params.append(criteria.organization_id)

        if criteria.date_range:
            clauses.append("datetime(timestamp) >= datetime(?) AND datetime(timestamp) <= datetime(?)")
            params.extend([criteria.date_range.start, criteria.date_range.end])

        if criteria.data_classifications:
            clauses.append(f"data_classification IN ({_placeholders(len(criteria.data_classifications))})")
            params.extend(criteria.data_classifications)

        if criteria.retention_policies:
            clauses.append(f"retention_policy IN ({_placeholders(len(criteria.retention_policies))})")
            params.extend(criteria.retention_policies)

        query = f"SELECT id, hash FROM audit_log WHERE {' AND '.join(clauses)} ORDER BY id"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    async def delete_records(self, record_ids: List[Any]) -> int:
        deleted = 0
        with self._connection() as conn:
            for chunk in _chunks(list(record_ids)):
                cursor = conn.execute(
                    f"DELETE FROM audit_log WHERE id IN ({_placeholders(len(chunk))})",
                    tuple(chunk)
                )
                deleted += cursor.rowcount
        return deleted

    async def record_exists(self, record_id: Any) -> bool:
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM audit_log WHERE id = ? LIMIT 1", (record_id,)).fetchone()
        return row is not None


class SQLiteArchiveStore(SQLiteStore, ArchiveStore):
    """Archive bundles stored as BLOBs with JSON metadata."""

    def _row_to_archive(self, row: sqlite3.Row) -> Archive:
        return Archive(
            id=row['id'],
            metadata=ArchiveMetadata.from_dict(json.loads(row['metadata'])),
            data=bytes(row['data']),
            created_at=row['created_at'],
            retrieved_count=row['retrieved_count'],
            last_retrieved_at=row['last_retrieved_at'],
        )

    async def store_archive(self, archive: Archive) -> None:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO archive_storage
                    (id, metadata, data, created_at, retrieved_count, last_retrieved_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (archive.id, json.dumps(archive.metadata.to_dict()), sqlite3.Binary(archive.data),
                 archive.created_at, archive.retrieved_count, archive.last_retrieved_at)
            )
            if cursor.rowcount == 0:
                logger.warning(f"Archive {archive.id} already exists, keeping stored copy")

    async def get_archive_by_id(self, archive_id: str) -> Optional[Archive]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM archive_storage WHERE id = ?", (archive_id,)).fetchone()
        return self._row_to_archive(row) if row else None

    async def find_matching_archives(self, request: ArchiveRetrievalRequest) -> List[Archive]:
        clauses = []
        params: List[Any] = []

        if request.archive_id:
            clauses.append("id = ?")
            params.append(request.archive_id)

        if request.data_classifications:
            clauses.append(
                f"json_extract(metadata, '$.data_classification') "
                f"IN ({_placeholders(len(request.data_classifications))})"
            )
            params.extend(request.data_classifications)

        if request.retention_policies:
            clauses.append(
                f"json_extract(metadata, '$.retention_policy') "
                f"IN ({_placeholders(len(request.retention_policies))})"
            )
            params.extend(request.retention_policies)

        query = "SELECT * FROM archive_storage"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, rowid ASC"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_archive(row) for row in rows]

    async def update_retrieval_statistics(self, archive_id: str, retrieved_at: datetime) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE archive_storage
                SET retrieved_count = retrieved_count + 1, last_retrieved_at = ?
                WHERE id = ?
                """,
                (retrieved_at.isoformat(), archive_id)
            )

    async def list_archives(self) -> List[Archive]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM archive_storage ORDER BY created_at ASC, rowid ASC").fetchall()
        return [self._row_to_archive(row) for row in rows]

    async def find_archives_created_before(self, retention_policy: str, cutoff: datetime) -> List[Archive]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM archive_storage
                WHERE json_extract(metadata, '$.retention_policy') = ?
                  AND datetime(created_at) < datetime(?)
                ORDER BY created_at ASC
                """,
                (retention_policy, cutoff.isoformat())
            ).fetchall()
        return [self._row_to_archive(row) for row in rows]

    async def delete_archives(self, archive_ids: List[str]) -> int:
        deleted = 0
        with self._connection() as conn:
            for chunk in _chunks(list(archive_ids)):
                cursor = conn.execute(
                    f"DELETE FROM archive_storage WHERE id IN ({_placeholders(len(chunk))})",
                    tuple(chunk)
                )
                deleted += cursor.rowcount
        return deleted
