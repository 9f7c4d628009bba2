"""
Archival module for AuditVault.

This module provides retention-driven archival of audit records:
- Retention policy evaluation and archive creation
- Pluggable serialization (json, jsonl) and compression (gzip, deflate, bz2, lzma)
- SHA-256 integrity verification of stored archives
- Secure deletion with post-delete verification
- Filtered and paginated retrieval from archives
"""

from .archive_codec import (
    ArchivalError, ConfigurationError, UnsupportedFormatError, UnsupportedCompressionError
)
from .archive_models import (
    Archive, ArchiveConfig, ArchiveMetadata, ArchiveResult, ArchiveRetrievalRequest,
    ArchiveRetrievalResult, DateRange, DeletionCriteria, RetentionArchiveResult,
    RetentionPolicy, SecureDeleteResult, VerificationStatus
)
from .archive_store import ArchiveStore, AuditStore
from .sqlite_store import SQLiteArchiveStore, SQLiteAuditStore, initialize_schema
from .archive_integrity import ArchiveIntegrityVerifier
from .archive_orchestrator import ArchivalOrchestrator
from .retention_engine import RetentionPolicyEngine
from .secure_deletion import SecureDeletionEngine
from .archive_retrieval import RetrievalEngine
from .archive_manager import ArchiveManager, create_archive_manager

__all__ = [
    'ArchivalError',
    'ConfigurationError',
    'UnsupportedFormatError',
    'UnsupportedCompressionError',
    'Archive',
    'ArchiveConfig',
    'ArchiveMetadata',
    'ArchiveResult',
    'ArchiveRetrievalRequest',
    'ArchiveRetrievalResult',
    'DateRange',
    'DeletionCriteria',
    'RetentionArchiveResult',
    'RetentionPolicy',
    'SecureDeleteResult',
    'VerificationStatus',
    'ArchiveStore',
    'AuditStore',
    'SQLiteArchiveStore',
    'SQLiteAuditStore',
    'initialize_schema',
    'ArchiveIntegrityVerifier',
    'ArchivalOrchestrator',
    'RetentionPolicyEngine',
    'SecureDeletionEngine',
    'RetrievalEngine',
    'ArchiveManager',
    'create_archive_manager',
]
