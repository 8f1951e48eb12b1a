"""
Audit Logger

DESIGN DECISION: Every pipeline decision is logged.
This provides:
1. Traceability of which strategy produced each result
2. Debugging capability when the AI misbehaves
3. Cost visibility for the paid extraction path

The audit logger:
- Is async to not block the pipeline
- Gracefully handles sink failures (ingestion never fails because of logging)
- Supports correlation IDs to trace all events of one document
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_ingestion.audit.storage import AuditStorageInterface
from finance_ingestion.models.audit import AuditEvent, AuditEventBuilder


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def setup_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger("finance_ingestion").setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (always)
    2. An audit sink (when one is configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Sink for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_ingestion.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Appends to the sink if available.

        Returns True if the sink write succeeded (or no sink configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_document_received(
        self,
        mime_type: str,
        size_bytes: int,
        categories_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.document_received(
            mime_type=mime_type,
            size_bytes=size_bytes,
            categories_count=categories_count,
            correlation_id=correlation_id,
        ))

    async def log_upload_rejected(
        self,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.upload_rejected(
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_regex_extraction(
        self,
        confidence: float,
        matched_patterns: list[str],
        accepted: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.regex_extraction(
            confidence=confidence,
            matched_patterns=matched_patterns,
            accepted=accepted,
            correlation_id=correlation_id,
        ))

    async def log_ai_extraction_started(
        self,
        mime_type: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.ai_extraction_started(
            mime_type=mime_type,
            correlation_id=correlation_id,
        ))

    async def log_ai_attempt_failed(
        self,
        key_index: int,
        model: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ai_attempt_failed(
            key_index=key_index,
            model=model,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_strategy_rotated(
        self,
        key_index: int,
        model_index: int,
        model: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.strategy_rotated(
            key_index=key_index,
            model_index=model_index,
            model=model,
            correlation_id=correlation_id,
        ))

    async def log_strategy_exhausted(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.strategy_exhausted(
            correlation_id=correlation_id,
        ))

    async def log_retry_scheduled(
        self,
        attempt: int,
        delay_seconds: float,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.retry_scheduled(
            attempt=attempt,
            delay_seconds=delay_seconds,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_extraction_completed(
        self,
        method: str,
        confidence: float,
        is_multi_transaction: bool,
        correlation_id: UUID,
        review_issues: Optional[list[dict]] = None,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_completed(
            method=method,
            confidence=confidence,
            is_multi_transaction=is_multi_transaction,
            correlation_id=correlation_id,
            review_issues=review_issues,
        ))

    async def log_extraction_failed(
        self,
        error_code: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of processing one document and pass it through
    all subsequent operations.
    """
    return uuid4()
