"""
Data Models Package

This package contains all Pydantic models used by the ingestion pipeline.
All data leaving the pipeline must conform to these schemas.
"""

from finance_ingestion.models.amounts import (
    normalize_amount,
    normalize_optional_amount,
)
from finance_ingestion.models.extraction import (
    AIPayload,
    ExtractedTransaction,
    ExtractionMethod,
    ExtractionResult,
    RegexExtractionResult,
    SingleDocumentPayload,
    StatementInfo,
    StatementPayload,
    SupportedMimeType,
    TransactionItem,
    UploadedDocument,
    ValidationIssue,
    ValidationResult,
    decode_ai_payload,
)
from finance_ingestion.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Extraction models
    "AIPayload",
    "ExtractedTransaction",
    "ExtractionMethod",
    "ExtractionResult",
    "RegexExtractionResult",
    "SingleDocumentPayload",
    "StatementInfo",
    "StatementPayload",
    "SupportedMimeType",
    "TransactionItem",
    "UploadedDocument",
    "ValidationIssue",
    "ValidationResult",
    "decode_ai_payload",
    # Amount helpers
    "normalize_amount",
    "normalize_optional_amount",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
