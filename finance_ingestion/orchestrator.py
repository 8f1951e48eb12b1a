"""
Ingestion Orchestrator

This module ties the pipeline together and defines the end-to-end flow
for one uploaded file:

    file → (PDF) text layer → regex → confidence gate
         → accept, or AI extraction under a retry loop → ExtractionResult

DESIGN DECISION: Cost first. The AI is only called when the free regex
stage is not confident enough (or the file is an image).

The orchestrator enforces the error contract:
- Errors already classified (ValidationError, DocumentParseError,
  AIExtractionError, AITimeoutError, AIServiceUnavailableError) reach the
  caller unchanged
- Anything else becomes InternalServerError
- Every step is audited under one correlation id
- Every result is reviewed; the issues travel on the completion event

IMPORTANT: Nothing here persists the result. The caller decides.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from finance_ingestion.agents import (
    AIStrategySelector,
    DocumentExtractionAgent,
    GeminiGenerator,
    MultimodalGenerator,
    is_retryable_error,
)
from finance_ingestion.audit import (
    AuditLogger,
    AuditStorageInterface,
    create_correlation_id,
    setup_logging,
)
from finance_ingestion.config import Settings, get_settings
from finance_ingestion.config.settings import IngestionSettings
from finance_ingestion.errors import (
    AIServiceUnavailableError,
    IngestionError,
    InternalServerError,
    ValidationError,
)
from finance_ingestion.extraction import extract_pdf_text, extract_with_regex
from finance_ingestion.models.extraction import (
    ExtractionMethod,
    ExtractionResult,
    RegexExtractionResult,
    SupportedMimeType,
)
from finance_ingestion.validation import (
    ResultValidator,
    UploadValidator,
    parse_categories,
)

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
PdfTextExtractor = Callable[[bytes], str]


def _utc_now_iso() -> str:
    """Current instant as ISO 8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class IngestionService:
    """
    Orchestrates the extraction of one file.

    Flow:
    1. PDF → extract text layer → regex
    2. Regex confidence >= threshold → done, no AI call
    3. Otherwise (or image) → AI extraction, retried on transient failures
    4. Return a normalized ExtractionResult
    """

    def __init__(
        self,
        agent: DocumentExtractionAgent,
        settings: Optional[IngestionSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        upload_validator: Optional[UploadValidator] = None,
        result_validator: Optional[ResultValidator] = None,
        pdf_text_extractor: PdfTextExtractor = extract_pdf_text,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the service.

        Args:
            agent: The AI extraction agent (shared across requests)
            settings: Pipeline knobs. Defaults to environment settings.
            audit_logger: For audit trail. Local-only when None.
            upload_validator: Gatekeeper used by process_upload
            result_validator: Reviews every result before it is returned
            pdf_text_extractor: Sync callable returning a PDF's text layer
            sleep: Awaitable used for retry backoff (injectable for tests)
        """
        self._agent = agent
        self._settings = settings or IngestionSettings()
        self._audit = audit_logger or AuditLogger()
        self._upload_validator = upload_validator or UploadValidator()
        self._result_validator = result_validator or ResultValidator()
        self._pdf_text_extractor = pdf_text_extractor
        self._sleep = sleep

    async def process_upload(
        self,
        content: Optional[bytes],
        mime_type: Optional[str],
        available_categories: Union[str, Sequence[str], None] = None,
        filename: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Validate a raw upload, then process it.

        Categories may come as a list or as the JSON string a multipart
        form carries.

        Raises:
            ValidationError: If the upload is empty, too big or unsupported
            Same as process_file otherwise
        """
        try:
            document = self._upload_validator.validate_upload(content, mime_type, filename)
        except ValidationError as e:
            await self._audit.log_upload_rejected(issues=e.details or [])
            raise

        return await self.process_file(
            document.content,
            document.mime_type.value,
            parse_categories(available_categories),
        )

    async def process_file(
        self,
        content: bytes,
        mime_type: Union[str, SupportedMimeType],
        available_categories: Sequence[str] = (),
    ) -> ExtractionResult:
        """
        Extract financial data from a file.

        Args:
            content: File bytes
            mime_type: application/pdf, image/jpeg or image/png
            available_categories: Category names the AI should prefer

        Returns:
            ExtractionResult

        Raises:
            ValidationError: Empty content or unsupported type
            DocumentParseError: The AI replied with something unparseable
            AIExtractionError: The AI returned no usable content
            AITimeoutError: A generation call exceeded its deadline
            AIServiceUnavailableError: AI not configured, strategies
                exhausted or retries ran out
            InternalServerError: Anything unclassified
        """
        correlation_id = create_correlation_id()
        categories = list(available_categories or [])
        mime = str(getattr(mime_type, "value", mime_type) or "").lower()

        logger.info(
            "document_processing_started",
            mime_type=mime,
            size_bytes=len(content or b""),
            categories=len(categories),
            correlation_id=str(correlation_id),
        )
        await self._audit.log_document_received(
            mime_type=mime,
            size_bytes=len(content or b""),
            categories_count=len(categories),
            correlation_id=correlation_id,
        )

        try:
            result = await self._run_pipeline(content, mime, categories, correlation_id)
            review = self._result_validator.review(result)
        except IngestionError as e:
            await self._audit.log_extraction_failed(
                error_code=e.code,
                error_message=e.message,
                correlation_id=correlation_id,
            )
            raise
        except Exception as e:
            logger.exception("document_processing_crashed", correlation_id=str(correlation_id))
            await self._audit.log_extraction_failed(
                error_code=InternalServerError.code,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise InternalServerError(
                "Ocorreu um erro inesperado ao processar o documento.",
                details={"original_error": str(e)},
            ) from e

        review_issues = [issue.model_dump() for issue in review.issues]
        if review_issues:
            logger.warning(
                "extraction_needs_review",
                issues=len(review_issues),
                fields=[issue.field for issue in review.issues],
                correlation_id=str(correlation_id),
            )

        await self._audit.log_extraction_completed(
            method=result.extraction_method.value,
            confidence=result.confidence,
            is_multi_transaction=result.is_multi_transaction,
            correlation_id=correlation_id,
            review_issues=review_issues,
        )
        return result

    async def _run_pipeline(
        self,
        content: bytes,
        mime: str,
        categories: list[str],
        correlation_id: UUID,
    ) -> ExtractionResult:
        if not content:
            raise ValidationError(
                "Nenhum arquivo foi enviado ou o arquivo está vazio.",
                details=[{"field": "file", "message": "Arquivo vazio"}],
            )
        if mime not in {m.value for m in SupportedMimeType}:
            raise ValidationError(
                "Tipo de arquivo não suportado. Envie PDF, JPEG ou PNG.",
                details=[{"field": "mimeType", "message": f"Tipo recebido: {mime}"}],
            )

        # Stage 1: free regex pass over the PDF text layer
        if mime == SupportedMimeType.PDF.value:
            regex_result = await self._extract_from_pdf(content)
            accepted = regex_result.confidence >= self._settings.confidence_threshold
            await self._audit.log_regex_extraction(
                confidence=regex_result.confidence,
                matched_patterns=regex_result.matched_patterns,
                accepted=accepted,
                correlation_id=correlation_id,
            )
            if accepted:
                return self._regex_to_result(regex_result)

        # Stage 2: paid AI extraction
        if not self._agent.is_available():
            raise AIServiceUnavailableError(
                "Serviço de IA não configurado. Configure a chave GEMINI_API_KEYS."
            )

        await self._audit.log_ai_extraction_started(
            mime_type=mime,
            correlation_id=correlation_id,
        )
        return await self._extract_with_ai_retry(content, mime, categories, correlation_id)

    async def _extract_from_pdf(self, content: bytes) -> RegexExtractionResult:
        """
        Run the regex stage on the PDF text layer.

        An unreadable PDF is not fatal: it yields confidence 0 so the AI
        gets a chance with the raw file.
        """
        try:
            text = await asyncio.to_thread(self._pdf_text_extractor, content)
        except Exception as e:
            logger.warning("pdf_text_extraction_failed", error=str(e))
            return RegexExtractionResult()

        return extract_with_regex(text)

    def _regex_to_result(self, regex_result: RegexExtractionResult) -> ExtractionResult:
        return ExtractionResult(
            merchant=regex_result.merchant or self._settings.unknown_merchant_label,
            date=regex_result.date or _utc_now_iso(),
            amount=regex_result.amount or 0.0,
            confidence=regex_result.confidence,
            extraction_method=ExtractionMethod.REGEX,
            raw_data=regex_result.model_dump(mode="json", by_alias=True),
        )

    async def _extract_with_ai_retry(
        self,
        content: bytes,
        mime: str,
        categories: list[str],
        correlation_id: UUID,
    ) -> ExtractionResult:
        """
        Call the agent, retrying transient failures with exponential backoff.

        Delays are base, 2*base, 4*base... between attempts. Failures that
        aren't transient (parse errors, timeouts, exhausted strategies)
        propagate on the first occurrence.
        """
        max_attempts = self._settings.max_retries

        async def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "ai_extraction_retry",
                attempt=retry_state.attempt_number,
                max_attempts=max_attempts,
                delay_seconds=delay,
                error=str(error),
            )
            await self._audit.log_retry_scheduled(
                attempt=retry_state.attempt_number,
                delay_seconds=delay,
                error_message=str(error),
                correlation_id=correlation_id,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=self._settings.base_delay_seconds, exp_base=2),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=before_sleep,
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._agent.extract_with_ai(
                        content,
                        mime,
                        categories,
                        correlation_id=correlation_id,
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                "ai_extraction_retries_exhausted",
                attempts=max_attempts,
                error=str(last_error),
            )
            raise AIServiceUnavailableError(
                "O serviço de IA está sobrecarregado. Tente novamente em alguns minutos.",
                details={"attempts": max_attempts, "last_error": str(last_error)[:500]},
            ) from last_error

        # Not reached: AsyncRetrying either returns, raises or raises RetryError
        raise InternalServerError("Fluxo de tentativas encerrado sem resultado.")


def create_ingestion_service(
    settings: Optional[Settings] = None,
    generator: Optional[MultimodalGenerator] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> IngestionService:
    """
    Factory function to create the service and its collaborators.

    Args:
        settings: Root settings. Defaults to the cached environment settings.
        generator: Model backend. Defaults to Gemini.
        audit_storage: Audit sink. Local logging only when None.

    Returns:
        IngestionService ready to process files
    """
    settings = settings or get_settings()
    gemini_settings = settings.gemini
    ingestion_settings = settings.ingestion
    app_settings = settings.app

    setup_logging(app_settings.log_level)

    audit_logger = AuditLogger(audit_storage)
    selector = AIStrategySelector.from_settings(gemini_settings)
    if not selector.is_available():
        logger.warning("ai_not_configured", hint="set GEMINI_API_KEYS")

    agent = DocumentExtractionAgent(
        selector=selector,
        generator=generator or GeminiGenerator(gemini_settings),
        settings=ingestion_settings,
        audit_logger=audit_logger,
    )

    return IngestionService(
        agent=agent,
        settings=ingestion_settings,
        audit_logger=audit_logger,
        upload_validator=UploadValidator(app_settings),
    )
