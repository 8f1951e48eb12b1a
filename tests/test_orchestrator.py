"""
Tests for the ingestion flow.

The model backend is scripted and the PDF text layer is canned, so these
exercise the real gate, retry loop and error contract end to end.
"""

import asyncio

import pytest

from finance_ingestion.agents import (
    AIStrategySelector,
    DocumentExtractionAgent,
    InlineDocument,
    MultimodalGenerator,
    StrategyConfig,
)
from finance_ingestion.audit import InMemoryAuditStorage
from finance_ingestion.config.settings import AppSettings, IngestionSettings, Settings
from finance_ingestion.errors import (
    AIServiceUnavailableError,
    AITimeoutError,
    DocumentParseError,
    InternalServerError,
    ValidationError,
)
from finance_ingestion.extraction import PDFTextError
from finance_ingestion.models import AuditEventType, AuditSeverity, ExtractionMethod
from finance_ingestion.orchestrator import IngestionService, create_ingestion_service

from conftest import (
    RECEIPT_TEXT,
    SINGLE_REPLY,
    STATEMENT_REPLY,
    QuotaExceeded,
    ScriptedGenerator,
    TransientUpstreamError,
    build_service,
)


class TestConfidenceGate:
    """The AI is only called when the regex stage isn't confident enough."""

    @pytest.mark.asyncio
    async def test_confident_pdf_skips_ai(self, ingestion_settings):
        service, generator = build_service([SINGLE_REPLY], ingestion_settings, pdf_text=RECEIPT_TEXT)

        result = await service.process_file(b"%PDF-1.4", "application/pdf")

        assert generator.call_count == 0
        assert result.extraction_method == ExtractionMethod.REGEX
        assert result.confidence == 0.95
        assert result.amount == 1234.56
        assert result.merchant == "SUPERMERCADO BOM PRECO LTDA"
        assert result.date == "2025-12-03T00:00:00.000Z"
        assert result.raw_data["cnpj"] == "12.345.678/0001-90"
        assert "currency" in result.raw_data["matchedPatterns"]

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive_and_fills_defaults(self, ingestion_settings):
        text = "cnpj 12.345.678/0001-90\nvalor R$ 100,00\nemissão 01/02/2025"
        service, generator = build_service([SINGLE_REPLY], ingestion_settings, pdf_text=text)

        result = await service.process_file(b"%PDF-1.4", "application/pdf")

        assert generator.call_count == 0
        assert result.confidence == 0.8
        assert result.merchant == "Não identificado"
        assert result.amount == 100.0

    @pytest.mark.asyncio
    async def test_missing_date_defaults_to_now(self):
        settings = IngestionSettings(confidence_threshold=0.5)
        text = "SUPERMERCADO CENTRAL\ntotal R$ 10,00"
        service, _ = build_service([SINGLE_REPLY], settings, pdf_text=text)

        result = await service.process_file(b"%PDF-1.4", "application/pdf")

        assert result.extraction_method == ExtractionMethod.REGEX
        assert result.date.endswith("Z")
        assert len(result.date) == len("2025-01-01T00:00:00.000Z")

    @pytest.mark.asyncio
    async def test_weak_pdf_goes_to_ai(self, ingestion_settings):
        service, generator = build_service(
            [SINGLE_REPLY], ingestion_settings, pdf_text="pago em 10/10/2024 valor R$ 50,00"
        )

        result = await service.process_file(b"%PDF-1.4", "application/pdf")

        assert generator.call_count == 1
        assert result.extraction_method == ExtractionMethod.AI
        assert result.amount == 42.9

    @pytest.mark.asyncio
    async def test_unreadable_pdf_goes_to_ai(self, ingestion_settings):
        service, generator = build_service(
            [STATEMENT_REPLY], ingestion_settings, pdf_text=PDFTextError("broken xref")
        )

        result = await service.process_file(b"not a pdf", "application/pdf")

        assert generator.call_count == 1
        assert result.is_multi_transaction is True
        assert generator.documents[0].mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_images_always_go_to_ai(self, ingestion_settings):
        service, generator = build_service([SINGLE_REPLY], ingestion_settings, pdf_text=RECEIPT_TEXT)

        result = await service.process_file(b"\x89PNG", "image/png", ["Alimentação"])

        assert generator.call_count == 1
        assert result.extraction_method == ExtractionMethod.AI
        assert "Alimentação" in generator.prompts[0]


class TestRetries:
    """Transient failures are retried with exponential backoff."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, ingestion_settings, recording_sleep, audit_logger, audit_storage):
        service, generator = build_service(
            [TransientUpstreamError(), TransientUpstreamError(), SINGLE_REPLY],
            ingestion_settings,
            audit_logger=audit_logger,
            sleep=recording_sleep,
        )

        result = await service.process_file(b"jpeg", "image/jpeg")

        assert result.amount == 42.9
        assert generator.call_count == 3
        assert recording_sleep.delays == [1.0, 2.0]

        event_types = [e.event_type for e in audit_storage.events]
        assert event_types.count(AuditEventType.RETRY_SCHEDULED) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, ingestion_settings, recording_sleep):
        service, generator = build_service(
            [TransientUpstreamError()], ingestion_settings, sleep=recording_sleep
        )

        with pytest.raises(AIServiceUnavailableError) as exc_info:
            await service.process_file(b"jpeg", "image/jpeg")

        assert generator.call_count == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_backoff_waits_real_time(self):
        settings = IngestionSettings(base_delay_seconds=0.05, max_retries=3)
        service, generator = build_service(
            [TransientUpstreamError(), TransientUpstreamError(), SINGLE_REPLY],
            settings,
            sleep=asyncio.sleep,
        )

        await service.process_file(b"jpeg", "image/jpeg")

        first_gap = generator.call_times[1] - generator.call_times[0]
        second_gap = generator.call_times[2] - generator.call_times[1]
        assert first_gap >= 0.045
        assert second_gap >= 0.09

    @pytest.mark.asyncio
    async def test_parse_error_is_not_retried(self, ingestion_settings, recording_sleep):
        service, generator = build_service(
            ["Desculpe, não consigo ler este documento."], ingestion_settings, sleep=recording_sleep
        )

        with pytest.raises(DocumentParseError):
            await service.process_file(b"jpeg", "image/jpeg")

        assert generator.call_count == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, recording_sleep):
        settings = IngestionSettings(request_timeout_seconds=0.05)
        service, generator = build_service(
            [SINGLE_REPLY], settings, sleep=recording_sleep, delay=1.0
        )

        with pytest.raises(AITimeoutError):
            await service.process_file(b"jpeg", "image/jpeg")

        assert generator.call_count == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_strategies_are_not_retried(self, ingestion_settings, recording_sleep):
        selector = AIStrategySelector(["key-a"], ["model-1", "model-2"])
        service, generator = build_service(
            [QuotaExceeded()], ingestion_settings, selector=selector, sleep=recording_sleep
        )

        with pytest.raises(AIServiceUnavailableError):
            await service.process_file(b"jpeg", "image/jpeg")

        assert generator.call_count == 2
        assert recording_sleep.delays == []


class TestErrorContract:
    """Classified errors pass through, everything else is wrapped."""

    @pytest.mark.asyncio
    async def test_ai_not_configured(self, ingestion_settings):
        service, generator = build_service(
            [SINGLE_REPLY], ingestion_settings, selector=AIStrategySelector([], ["model-1"])
        )

        with pytest.raises(AIServiceUnavailableError):
            await service.process_file(b"jpeg", "image/jpeg")

        assert generator.call_count == 0

    @pytest.mark.asyncio
    async def test_unclassified_error_is_wrapped(self, ingestion_settings, recording_sleep, audit_logger, audit_storage):
        service, generator = build_service(
            [KeyError("candidates")], ingestion_settings, audit_logger=audit_logger, sleep=recording_sleep
        )

        with pytest.raises(InternalServerError) as exc_info:
            await service.process_file(b"jpeg", "image/jpeg")

        assert exc_info.value.status_code == 500
        assert "candidates" in exc_info.value.details["original_error"]
        assert generator.call_count == 1

        failed = [e for e in audit_storage.events if e.event_type == AuditEventType.EXTRACTION_FAILED]
        assert failed[0].error_code == "INTERNAL_SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_unsupported_mime_type(self, ingestion_settings):
        service, generator = build_service([SINGLE_REPLY], ingestion_settings)

        with pytest.raises(ValidationError):
            await service.process_file(b"GIF89a", "image/gif")

        assert generator.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_content(self, ingestion_settings):
        service, _ = build_service([SINGLE_REPLY], ingestion_settings)

        with pytest.raises(ValidationError):
            await service.process_file(b"", "image/png")

    def test_error_envelope(self):
        envelope = AITimeoutError().to_dict()

        assert envelope["error"]["code"] == "AI_TIMEOUT"
        assert envelope["error"]["statusCode"] == 504


class TestUploads:
    """process_upload validates before extracting."""

    @pytest.mark.asyncio
    async def test_valid_upload_with_json_categories(self, ingestion_settings):
        service, generator = build_service([SINGLE_REPLY], ingestion_settings)

        result = await service.process_upload(
            b"\xff\xd8jpeg", "image/jpeg", '["Alimentação", "Transporte"]', filename="nota.jpg"
        )

        assert result.amount == 42.9
        assert "Categorias disponíveis: Alimentação, Transporte" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_rejected_upload_is_audited(self, ingestion_settings, audit_logger, audit_storage):
        service, generator = build_service([SINGLE_REPLY], ingestion_settings, audit_logger=audit_logger)

        with pytest.raises(ValidationError) as exc_info:
            await service.process_upload(b"hello", "text/plain")

        assert exc_info.value.details[0]["field"] == "mimeType"
        assert generator.call_count == 0
        assert audit_storage.events[-1].event_type == AuditEventType.UPLOAD_REJECTED

    @pytest.mark.asyncio
    async def test_oversized_upload(self, ingestion_settings):
        app_settings = AppSettings(max_upload_size_mb=1)
        service, _ = build_service([SINGLE_REPLY], ingestion_settings, app_settings=app_settings)

        with pytest.raises(ValidationError):
            await service.process_upload(b"x" * (1024 * 1024 + 1), "image/png")


class TestAuditTrail:
    """One correlation id ties all events of a document together."""

    @pytest.mark.asyncio
    async def test_regex_path_events(self, ingestion_settings, audit_logger, audit_storage):
        service, _ = build_service(
            [SINGLE_REPLY], ingestion_settings, audit_logger=audit_logger, pdf_text=RECEIPT_TEXT
        )

        await service.process_file(b"%PDF-1.4", "application/pdf")

        events = audit_storage.events
        assert [e.event_type for e in events] == [
            AuditEventType.DOCUMENT_RECEIVED,
            AuditEventType.REGEX_ACCEPTED,
            AuditEventType.EXTRACTION_COMPLETED,
        ]
        assert len({e.correlation_id for e in events}) == 1

        by_id = await audit_storage.get_events_by_correlation_id(events[0].correlation_id)
        assert len(by_id) == 3

        completed = events[-1]
        assert completed.severity == AuditSeverity.INFO
        assert completed.details["review_issues"] == []

    @pytest.mark.asyncio
    async def test_reply_without_amount_is_flagged_for_review(self, ingestion_settings, audit_logger, audit_storage):
        reply = (
            '{"merchant": "Padaria", "date": "2025-11-20T00:00:00.000Z", '
            '"category": "Alimentação", "items": null}'
        )
        service, _ = build_service([reply], ingestion_settings, audit_logger=audit_logger)

        result = await service.process_file(b"png", "image/png")

        assert result.amount == 0.0
        assert result.merchant == "Padaria"

        completed = audit_storage.events[-1]
        assert completed.event_type == AuditEventType.EXTRACTION_COMPLETED
        assert completed.severity == AuditSeverity.WARNING
        assert [i["field"] for i in completed.details["review_issues"]] == ["amount"]

    @pytest.mark.asyncio
    async def test_numeric_merchant_is_tolerated(self, ingestion_settings):
        service, _ = build_service(['{"merchant": 7, "amount": 5}'], ingestion_settings)

        result = await service.process_file(b"png", "image/png")

        assert result.merchant == "7"
        assert result.amount == 5.0


class _FirstStrategyOutOfQuota(MultimodalGenerator):
    """Fails on (0, 0) and succeeds elsewhere, slowly enough to overlap."""

    def __init__(self):
        self.calls: list[tuple[int, int]] = []

    async def generate(self, prompt: str, document: InlineDocument, strategy: StrategyConfig) -> str:
        self.calls.append(strategy.position)
        await asyncio.sleep(0.01)
        if strategy.position == (0, 0):
            raise QuotaExceeded()
        return SINGLE_REPLY


class TestSharedSelector:
    """Concurrent documents share one strategy selector."""

    @pytest.mark.asyncio
    async def test_concurrent_quota_failures_rotate_once(self, ingestion_settings, selector):

        generator = _FirstStrategyOutOfQuota()
        agent = DocumentExtractionAgent(selector, generator, ingestion_settings)
        service = IngestionService(agent, ingestion_settings)

        results = await asyncio.gather(*[
            service.process_file(b"png", "image/png") for _ in range(3)
        ])

        assert all(r.amount == 42.9 for r in results)
        assert selector.position == (0, 1)


class TestFactory:
    """create_ingestion_service wires everything from settings."""

    @pytest.mark.asyncio
    async def test_factory_with_injected_generator(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEYS", "k1,k2")
        monkeypatch.setenv("GEMINI_MODELS", "model-1")
        storage = InMemoryAuditStorage()
        generator = ScriptedGenerator([SINGLE_REPLY])

        service = create_ingestion_service(
            settings=Settings(), generator=generator, audit_storage=storage
        )
        result = await service.process_file(b"png", "image/png")

        assert result.amount == 42.9
        assert generator.calls[0].api_key == "k1"
        assert any(e.event_type == AuditEventType.EXTRACTION_COMPLETED for e in storage.events)
