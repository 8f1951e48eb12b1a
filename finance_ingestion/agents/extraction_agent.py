"""
AI Extraction Agent

Sends a document to the multimodal model and turns its reply into an
ExtractionResult.

CRITICAL BOUNDARIES:
- CAN: rotate to another (key, model) pair when the current one is out of
  quota or unavailable
- CANNOT: retry the same strategy after a backoff (the orchestrator owns
  retries)
- CANNOT: repair a reply that fits neither known shape. It fails with
  DocumentParseError instead of guessing.

The model is a TRANSCRIBER, not an ORACLE. Missing fields stay missing.
"""

import asyncio
import json
import re
from typing import Optional, Sequence
from uuid import UUID

import structlog

from finance_ingestion.agents.error_signals import is_rotatable_error
from finance_ingestion.agents.gemini_client import InlineDocument, MultimodalGenerator
from finance_ingestion.agents.prompt import build_extraction_prompt
from finance_ingestion.agents.strategy import AIStrategySelector, StrategyConfig
from finance_ingestion.audit.logger import AuditLogger
from finance_ingestion.config.settings import IngestionSettings
from finance_ingestion.errors import (
    AIServiceUnavailableError,
    AITimeoutError,
    DocumentParseError,
)
from finance_ingestion.models.extraction import (
    AIPayload,
    ExtractionMethod,
    ExtractionResult,
    StatementPayload,
    decode_ai_payload,
)

logger = structlog.get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?|\n?```", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences the model sometimes wraps JSON in."""
    return _CODE_FENCE.sub("", text).strip()


def parse_ai_response(text: str) -> AIPayload:
    """
    Parse raw model text into one of the two known payload shapes.

    Steps:
    1. Strip ```json fences
    2. If the text doesn't start with "{", take the span from the first "{"
       to the last "}"
    3. Parse the JSON and decode it by its isMultiTransaction tag

    Raises:
        DocumentParseError: If any step fails
    """
    cleaned = strip_code_fences(text or "")

    if not cleaned.startswith("{"):
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise DocumentParseError(
                "A IA não retornou dados estruturados para este documento.",
                details={"response_preview": cleaned[:200]},
            )
        cleaned = match.group(0)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise DocumentParseError(
            "Não foi possível interpretar a resposta da IA.",
            details={"reason": str(e), "response_preview": cleaned[:200]},
        ) from e

    try:
        return decode_ai_payload(data)
    except ValueError as e:
        raise DocumentParseError(
            "A resposta da IA não corresponde a um formato de documento conhecido.",
            details={"reason": str(e)},
        ) from e


def statement_total(payload: StatementPayload) -> float:
    """
    Total of a statement.

    The issuer's printed total wins. Without one, charges are summed and
    refunds subtracted.
    """
    if payload.statement_info and payload.statement_info.total_amount is not None:
        return payload.statement_info.total_amount

    total = 0.0
    for transaction in payload.transactions:
        if transaction.is_refund:
            total -= abs(transaction.amount)
        else:
            total += transaction.amount
    return round(total, 2)


class DocumentExtractionAgent:
    """
    Extracts structured data from a document with the multimodal model.

    One agent (and one strategy selector) is shared by every request. A
    rotation made while serving one document benefits the next ones.
    """

    def __init__(
        self,
        selector: AIStrategySelector,
        generator: MultimodalGenerator,
        settings: Optional[IngestionSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._selector = selector
        self._generator = generator
        self._settings = settings or IngestionSettings()
        self._audit = audit_logger or AuditLogger()

    def is_available(self) -> bool:
        """True if at least one API key and model are configured."""
        return self._selector.is_available()

    async def extract_with_ai(
        self,
        content: bytes,
        mime_type: str,
        available_categories: Sequence[str] = (),
        correlation_id: Optional[UUID] = None,
    ) -> ExtractionResult:
        """
        Extract data from the document, rotating strategies on quota errors.

        Raises:
            AIServiceUnavailableError: Not configured, or every strategy is
                exhausted, or the rotation ceiling was hit
            AITimeoutError: A generation call exceeded its deadline
            DocumentParseError: The reply fits neither known shape
            Exception: Any other provider failure, unchanged
        """
        document = InlineDocument(data=content, mime_type=mime_type)
        prompt = build_extraction_prompt(available_categories)
        max_attempts = self._settings.max_rotation_attempts

        for attempt in range(1, max_attempts + 1):
            strategy = self._selector.get_current_config()
            logger.info(
                "ai_generation_attempt",
                attempt=attempt,
                key_index=strategy.key_index,
                model=strategy.model,
                correlation_id=str(correlation_id) if correlation_id else None,
            )

            try:
                text = await self._generate_with_timeout(prompt, document, strategy)
            except Exception as e:
                if not is_rotatable_error(e):
                    raise

                await self._audit.log_ai_attempt_failed(
                    key_index=strategy.key_index,
                    model=strategy.model,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                if not self._selector.rotate_strategy(expected=strategy):
                    await self._audit.log_strategy_exhausted(correlation_id=correlation_id)
                    raise AIServiceUnavailableError(
                        "Todas as chaves de API e modelos estão indisponíveis no momento.",
                        details={"last_error": str(e)[:500]},
                    ) from e

                current = self._selector.get_current_config()
                await self._audit.log_strategy_rotated(
                    key_index=current.key_index,
                    model_index=current.model_index,
                    model=current.model,
                    correlation_id=correlation_id,
                )
                continue

            payload = parse_ai_response(text)
            return self.build_result(payload)

        logger.error("ai_rotation_ceiling_reached", attempts=max_attempts)
        raise AIServiceUnavailableError(
            "Limite de tentativas com modelos de IA atingido.",
            details={"attempts": max_attempts},
        )

    async def _generate_with_timeout(
        self,
        prompt: str,
        document: InlineDocument,
        strategy: StrategyConfig,
    ) -> str:
        timeout = self._settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._generator.generate(prompt, document, strategy),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("ai_generation_timeout", model=strategy.model, timeout=timeout)
            raise AITimeoutError(details={"timeout_seconds": timeout}) from None

    def build_result(self, payload: AIPayload) -> ExtractionResult:
        """Translate a decoded payload into the unified result."""
        confidence = self._settings.ai_confidence

        if isinstance(payload, StatementPayload):
            info = payload.statement_info
            return ExtractionResult(
                merchant=(info.institution if info and info.institution else payload.merchant),
                date=(info.due_date if info and info.due_date else payload.date),
                amount=statement_total(payload),
                category=payload.category,
                confidence=confidence,
                extraction_method=ExtractionMethod.AI,
                is_multi_transaction=True,
                transactions=payload.transactions,
                statement_info=info,
            )

        return ExtractionResult(
            merchant=payload.merchant,
            date=payload.date,
            amount=payload.amount,
            category=payload.category,
            items=payload.items or [],
            confidence=confidence,
            extraction_method=ExtractionMethod.AI,
        )
