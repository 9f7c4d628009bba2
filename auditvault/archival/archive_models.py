"""
Data models for the archival system.

This module contains the data classes and enums shared by the retention engine,
the archival orchestrator, secure deletion and archive retrieval.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


DEFAULT_ARCHIVE_AFTER_DAYS = 90


class VerificationStatus(Enum):
    """Outcome of an integrity or deletion verification step."""
    VERIFIED = "verified"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RetentionPolicy:
    """Retention rule for audit records of one data classification."""
    policy_name: str
    data_classification: str
    retention_days: int
    archive_after_days: Optional[int] = None
    delete_after_days: Optional[int] = None
    is_active: bool = True
    description: Optional[str] = None

    @property
    def effective_archive_after_days(self) -> int:
        if self.archive_after_days is None:
            return DEFAULT_ARCHIVE_AFTER_DAYS
        return self.archive_after_days

    def validate(self):
        """Raise ValueError if the policy's day thresholds are inconsistent."""
        archive_days = self.effective_archive_after_days
        if archive_days < 0 or self.retention_days < 0:
            raise ValueError(f"Policy {self.policy_name}: day thresholds must be non-negative")
        if archive_days > self.retention_days:
            raise ValueError(
                f"Policy {self.policy_name}: archive_after_days ({archive_days}) "
                f"exceeds retention_days ({self.retention_days})"
            )
        if self.delete_after_days is not None and self.delete_after_days < archive_days:
            raise ValueError(
                f"Policy {self.policy_name}: delete_after_days ({self.delete_after_days}) "
                f"is shorter than archive_after_days ({archive_days})"
            )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RetentionPolicy":
        """Build a policy from a store row, where is_active is the string 'true'/'false'."""
        is_active = row.get('is_active', 'true')
        if isinstance(is_active, str):
            is_active = is_active.strip().lower() == 'true'

        return cls(
            policy_name=row['policy_name'],
            data_classification=row['data_classification'],
            retention_days=row['retention_days'],
            archive_after_days=row.get('archive_after_days'),
            delete_after_days=row.get('delete_after_days'),
            is_active=bool(is_active),
            description=row.get('description'),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            'policy_name': self.policy_name,
            'data_classification': self.data_classification,
            'retention_days': self.retention_days,
            'archive_after_days': self.archive_after_days,
            'delete_after_days': self.delete_after_days,
            'is_active': 'true' if self.is_active else 'false',
            'description': self.description,
        }


@dataclass
class ArchiveConfig:
    """
    Settings used by the archival orchestrator.

    Algorithm and format are kept as plain strings; unsupported values are
    rejected when an archive is created, not when the config is built.
    """
    compression_algorithm: str = "gzip"
    compression_level: int = 6
    format: str = "json"
    verify_integrity: bool = True
    batch_size: int = 1000


@dataclass(frozen=True)
class ArchiveMetadata:
    """Immutable description of an archive bundle."""
    retention_policy: str
    data_classification: str
    date_range: Optional[Dict[str, str]] = None
    tags: Dict[str, Any] = field(default_factory=dict)
    record_count: int = 0
    original_size: int = 0
    compressed_size: int = 0
    compression_ratio: float = 0.0
    checksum_original: Optional[str] = None
    checksum_compressed: Optional[str] = None
    compression_algorithm: Optional[str] = None
    compression_level: Optional[int] = None
    format: Optional[str] = None
    batch_size: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchiveMetadata":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class Archive:
    """A stored archive bundle; data is written once, statistics are store-owned."""
    id: str
    metadata: ArchiveMetadata
    data: bytes
    created_at: str
    retrieved_count: int = 0
    last_retrieved_at: Optional[str] = None


@dataclass
class DateRange:
    """Inclusive ISO-8601 timestamp range."""
    start: str
    end: str

    @classmethod
    def parse(cls, value: str) -> "DateRange":
        """Parse the 'start,end' form used on the command line."""
        parts = [part.strip() for part in value.split(',')]
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid date range '{value}', expected 'start,end'")
        return cls(start=parts[0], end=parts[1])


@dataclass
class ArchiveRetrievalRequest:
    """Filters for reading archived records back out."""
    archive_id: Optional[str] = None
    data_classifications: Optional[List[str]] = None
    retention_policies: Optional[List[str]] = None
    principal_id: Optional[str] = None
    organization_id: Optional[str] = None
    actions: Optional[List[str]] = None
    date_range: Optional[DateRange] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class DeletionCriteria:
    """Selection of audit records for secure deletion."""
    principal_id: Optional[str] = None
    organization_id: Optional[str] = None
    date_range: Optional[DateRange] = None
    data_classifications: Optional[List[str]] = None
    retention_policies: Optional[List[str]] = None
    verify_deletion: bool = False

    def is_empty(self) -> bool:
        return not any([
            self.principal_id,
            self.organization_id,
            self.date_range,
            self.data_classifications,
            self.retention_policies,
        ])


@dataclass
class ArchiveResult:
    """Result of creating one archive."""
    archive_id: str
    record_count: int
    original_size: int
    compressed_size: int
    compression_ratio: float
    checksum_original: str
    checksum_compressed: str
    verification_status: VerificationStatus
    timestamp: str
    processing_time_ms: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['verification_status'] = self.verification_status.value
        return data


@dataclass
class RetentionArchiveResult:
    """Result of applying one retention policy."""
    policy: str
    records_archived: int
    records_deleted: int
    original_data_size: int
    compressed_data_size: int
    compression_ratio: float
    processing_time_ms: float
    verification_status: VerificationStatus
    archive_id: Optional[str] = None
    summary: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['verification_status'] = self.verification_status.value
        return data


@dataclass
class VerificationDetails:
    all_deleted: bool
    remaining_records: int


@dataclass
class SecureDeleteResult:
    """Result of a secure deletion."""
    records_deleted: int
    verification_status: VerificationStatus
    deletion_timestamp: str
    verification_details: Optional[VerificationDetails] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['verification_status'] = self.verification_status.value
        return data


@dataclass
class RetrievedArchive:
    archive_id: str
    metadata: ArchiveMetadata
    records: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'archive_id': self.archive_id,
            'metadata': self.metadata.to_dict(),
            'records': self.records,
        }


@dataclass
class ArchiveRetrievalResult:
    """Result of an archive retrieval request."""
    request_id: str
    retrieved_at: str
    record_count: int
    total_size: int
    retrieval_time_ms: float
    archives: List[RetrievedArchive] = field(default_factory=list)
    excluded_archive_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_id': self.request_id,
            'retrieved_at': self.retrieved_at,
            'record_count': self.record_count,
            'total_size': self.total_size,
            'retrieval_time_ms': self.retrieval_time_ms,
            'archives': [archive.to_dict() for archive in self.archives],
            'excluded_archive_ids': list(self.excluded_archive_ids),
        }


@dataclass
class ArchiveValidationResult:
    total_archives: int
    valid_archives: int
    corrupted_archives: int
    corrupted_archive_ids: List[str]
    validation_timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ArchiveStatistics:
    total_archives: int
    total_compressed_size: int
    total_original_size: int
    average_compression_ratio: float
    archives_by_policy: Dict[str, int]
    archives_by_classification: Dict[str, int]
    oldest_archive: Optional[str] = None
    newest_archive: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ArchiveCleanupResult:
    archives_deleted: int
    space_freed: int
    cleanup_timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
