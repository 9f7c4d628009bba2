"""
Storage interfaces for the archival system.

This module provides abstract interfaces for the audit log store and the
archive store that the archival engines operate against.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Dict, Any, Optional

from .archive_models import (
    Archive, ArchiveRetrievalRequest, DeletionCriteria, RetentionPolicy
)


class AuditStore(ABC):
    """Abstract interface for the audit log and its retention policies."""

    @abstractmethod
    async def list_active_retention_policies(self) -> List[RetentionPolicy]:
        """Get all retention policies flagged as active."""
        pass

    @abstractmethod
    async def select_records_for_policy(
        self,
        policy: RetentionPolicy,
        cutoff: datetime
    ) -> List[Dict[str, Any]]:
        """Get unarchived records of the policy's classification at or before cutoff, oldest first."""
        pass

    @abstractmethod
    async def mark_records_archived(self, record_ids: List[Any], archived_at: datetime) -> int:
        """Flag records as archived. Returns the number of rows updated."""
        pass

    @abstractmethod
    async def unmark_records_archived(self, record_ids: List[Any]) -> int:
        """Clear the archived flag so the records are eligible again."""
        pass

    @abstractmethod
    async def delete_expired_records(self, policy: RetentionPolicy, cutoff: datetime) -> int:
        """Delete archived records of the policy's classification at or before cutoff."""
        pass

    @abstractmethod
    async def select_records_for_deletion(self, criteria: DeletionCriteria) -> List[Dict[str, Any]]:
        """Get id and hash of every record matching the criteria."""
        pass

    @abstractmethod
    async def delete_records(self, record_ids: List[Any]) -> int:
        """Delete records by id. Returns the number of rows deleted."""
        pass

    @abstractmethod
    async def record_exists(self, record_id: Any) -> bool:
        """Check whether a record is still present."""
        pass


class ArchiveStore(ABC):
    """
    Abstract interface for archive persistence.

    Archive payloads are immutable once stored; only the retrieval statistics
    change, and the store owns the atomicity of that update.
    """

    @abstractmethod
    async def store_archive(self, archive: Archive) -> None:
        """Persist an archive if no archive with the same id exists."""
        pass

    @abstractmethod
    async def get_archive_by_id(self, archive_id: str) -> Optional[Archive]:
        pass

    @abstractmethod
    async def find_matching_archives(self, request: ArchiveRetrievalRequest) -> List[Archive]:
        """Get archives matching the archive-level filters, in creation order."""
        pass

    @abstractmethod
    async def update_retrieval_statistics(self, archive_id: str, retrieved_at: datetime) -> None:
        """Increment retrieved_count and set last_retrieved_at."""
        pass

    @abstractmethod
    async def list_archives(self) -> List[Archive]:
        pass

    @abstractmethod
    async def find_archives_created_before(self, retention_policy: str, cutoff: datetime) -> List[Archive]:
        pass

    @abstractmethod
    async def delete_archives(self, archive_ids: List[str]) -> int:
        pass
