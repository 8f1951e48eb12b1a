"""Audit logging package."""

from finance_ingestion.audit.logger import (
    AuditLogger,
    create_correlation_id,
    setup_logging,
)
from finance_ingestion.audit.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
)

__all__ = [
    "AuditLogger",
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "create_correlation_id",
    "setup_logging",
]
