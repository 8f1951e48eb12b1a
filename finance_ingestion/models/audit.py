"""
Audit Models for Finance Ingestion

Every significant step of document ingestion is logged for audit purposes.
This provides:
1. Traceability of which strategy (regex, key, model) produced a result
2. Debugging information when extraction goes wrong
3. Cost visibility (how often the paid AI path is taken)

DESIGN DECISION: Audit events are append-only. API keys and document bytes
never appear in them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every decision point of the ingestion pipeline has its own event type.
    """
    # Intake
    DOCUMENT_RECEIVED = "document_received"
    UPLOAD_REJECTED = "upload_rejected"

    # Regex stage
    REGEX_EXTRACTION = "regex_extraction"
    REGEX_ACCEPTED = "regex_accepted"

    # AI stage
    AI_EXTRACTION_STARTED = "ai_extraction_started"
    AI_ATTEMPT_FAILED = "ai_attempt_failed"
    STRATEGY_ROTATED = "strategy_rotated"
    STRATEGY_EXHAUSTED = "strategy_exhausted"
    RETRY_SCHEDULED = "retry_scheduled"

    # Outcome
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Correlation - all events of one processed file share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_json_line(self) -> str:
        """Serialize as one JSON line (for append-only sinks)."""
        return json.dumps(self.to_log_dict(), ensure_ascii=False, default=str)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.document_received("image/png", 2048, correlation_id)
        event = AuditEventBuilder.strategy_rotated(0, 1, "gemini-2.0-flash", correlation_id)
    """

    @staticmethod
    def document_received(
        mime_type: str,
        size_bytes: int,
        categories_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DOCUMENT_RECEIVED,
            correlation_id=correlation_id,
            description=f"Document received: {mime_type}",
            details={
                "mime_type": mime_type,
                "size_bytes": size_bytes,
                "available_categories_count": categories_count,
            },
        )

    @staticmethod
    def upload_rejected(
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_REJECTED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Upload rejected with {len(issues)} issue(s)",
            details={"issues": issues},
        )

    @staticmethod
    def regex_extraction(
        confidence: float,
        matched_patterns: list[str],
        accepted: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.REGEX_ACCEPTED if accepted
            else AuditEventType.REGEX_EXTRACTION
        )
        outcome = "accepted" if accepted else "below threshold"
        return AuditEvent(
            event_type=event_type,
            correlation_id=correlation_id,
            description=f"Regex extraction {outcome} ({confidence:.0%})",
            details={
                "confidence": confidence,
                "matched_patterns": matched_patterns,
            },
        )

    @staticmethod
    def ai_extraction_started(
        mime_type: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_EXTRACTION_STARTED,
            correlation_id=correlation_id,
            description="Document sent to AI extraction",
            details={"mime_type": mime_type},
        )

    @staticmethod
    def ai_attempt_failed(
        key_index: int,
        model: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_ATTEMPT_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"AI attempt failed with key {key_index + 1} / {model}",
            details={"key_index": key_index, "model": model},
            error_message=error_message[:500],
        )

    @staticmethod
    def strategy_rotated(
        key_index: int,
        model_index: int,
        model: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STRATEGY_ROTATED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Rotated to key {key_index + 1} / {model}",
            details={
                "key_index": key_index,
                "model_index": model_index,
                "model": model,
            },
        )

    @staticmethod
    def strategy_exhausted(
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STRATEGY_EXHAUSTED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Every API key and model is exhausted",
        )

    @staticmethod
    def retry_scheduled(
        attempt: int,
        delay_seconds: float,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RETRY_SCHEDULED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Attempt {attempt} failed, retrying in {delay_seconds:.1f}s",
            details={"attempt": attempt, "delay_seconds": delay_seconds},
            error_message=error_message[:500],
        )

    @staticmethod
    def extraction_completed(
        method: str,
        confidence: float,
        is_multi_transaction: bool,
        correlation_id: UUID,
        review_issues: Optional[list[dict]] = None,
    ) -> AuditEvent:
        review_issues = review_issues or []
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            severity=AuditSeverity.WARNING if review_issues else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=f"Extraction completed via {method}",
            details={
                "method": method,
                "confidence": confidence,
                "is_multi_transaction": is_multi_transaction,
                "review_issues": review_issues,
            },
        )

    @staticmethod
    def extraction_failed(
        error_code: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Extraction failed",
            error_code=error_code,
            error_message=error_message[:500],
        )
