"""
AuditVault - Audit record archival and retention engine.

This package contains the archival, secure deletion and retrieval components
that apply organizational retention policies to audit logs.
"""

__version__ = "0.1.0"
__author__ = "Taamir Ransome"
__email__ = "taamir@example.com"
