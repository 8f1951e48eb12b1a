"""
Shared fixtures.

No test talks to a real model: generators are scripted fakes that replay
a list of replies (text or exceptions) and record every call.
"""

import asyncio
import json
import time
from typing import Any, Optional, Union

import pytest

from finance_ingestion.agents import (
    AIStrategySelector,
    DocumentExtractionAgent,
    InlineDocument,
    MultimodalGenerator,
    StrategyConfig,
)
from finance_ingestion.audit import AuditLogger, InMemoryAuditStorage
from finance_ingestion.config.settings import AppSettings, IngestionSettings
from finance_ingestion.orchestrator import IngestionService
from finance_ingestion.validation import UploadValidator


RECEIPT_TEXT = """SUPERMERCADO BOM PRECO LTDA
CNPJ 12.345.678/0001-90
Rua das Flores, 100
03/12/2025 14:32
ARROZ 5KG                R$ 25,90
FEIJAO 1KG               R$ 8,50
TOTAL                    R$ 1.234,56
"""

SINGLE_REPLY = json.dumps({
    "merchant": "Padaria Central",
    "date": "2025-11-20T00:00:00.000Z",
    "amount": "R$ 42,90",
    "category": "Alimentação",
    "items": [
        {"description": "Pão francês", "quantity": 10, "unitPrice": 0.9, "totalPrice": 9.0},
        {"description": "", "totalPrice": "33,90"},
    ],
})

STATEMENT_REPLY = json.dumps({
    "isMultiTransaction": True,
    "statementInfo": {
        "institution": "Nubank",
        "cardLastDigits": 1234,
        "dueDate": "2025-12-10T00:00:00.000Z",
        "totalAmount": "1.500,00",
    },
    "transactions": [
        {"merchant": "Uber", "date": "2025-11-02T00:00:00.000Z", "amount": 35.5},
        {
            "merchant": "Magazine Luiza",
            "date": "2025-11-05T00:00:00.000Z",
            "amount": "R$ 1.200,00",
            "installmentInfo": "Parcela 2 de 12",
        },
        {"merchant": "Estorno Uber", "amount": 35.5, "isRefund": True},
    ],
})


class QuotaExceeded(Exception):
    """What the provider raises when a key ran out of quota."""

    def __init__(self, message: str = "429 Resource has been exhausted (e.g. check quota)."):
        super().__init__(message)


class TransientUpstreamError(Exception):
    """A network-level failure carrying a symbolic code."""

    def __init__(self, message: str = "upstream connection dropped", code: str = "ECONNRESET"):
        super().__init__(message)
        self.code = code


Reply = Union[str, BaseException]


class ScriptedGenerator(MultimodalGenerator):
    """
    Replays scripted replies in order; the last one repeats once the
    script runs out.
    """

    def __init__(self, replies: list[Reply], delay: float = 0.0):
        self._replies = list(replies)
        self._delay = delay
        self.calls: list[StrategyConfig] = []
        self.call_times: list[float] = []
        self.prompts: list[str] = []
        self.documents: list[InlineDocument] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def generate(
        self,
        prompt: str,
        document: InlineDocument,
        strategy: StrategyConfig,
    ) -> str:
        index = min(len(self.calls), len(self._replies) - 1)
        self.calls.append(strategy)
        self.call_times.append(time.monotonic())
        self.prompts.append(prompt)
        self.documents.append(document)

        if self._delay:
            await asyncio.sleep(self._delay)

        reply = self._replies[index]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))


@pytest.fixture
def ingestion_settings() -> IngestionSettings:
    return IngestionSettings(
        confidence_threshold=0.8,
        max_retries=3,
        base_delay_seconds=1.0,
        request_timeout_seconds=90.0,
        max_rotation_attempts=15,
        ai_confidence=0.95,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        max_upload_size_mb=10,
        supported_mime_types="application/pdf,image/jpeg,image/png",
    )


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def selector() -> AIStrategySelector:
    return AIStrategySelector(["key-a", "key-b"], ["model-1", "model-2", "model-3"])


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


def build_service(
    replies: list[Reply],
    settings: IngestionSettings,
    audit_logger: Optional[AuditLogger] = None,
    selector: Optional[AIStrategySelector] = None,
    pdf_text: Any = "",
    sleep: Any = None,
    app_settings: Optional[AppSettings] = None,
    delay: float = 0.0,
) -> tuple[IngestionService, ScriptedGenerator]:
    """Wire a service around a scripted generator and a canned PDF text layer."""
    generator = ScriptedGenerator(replies, delay=delay)
    selector = selector or AIStrategySelector(["key-a"], ["model-1"])
    audit_logger = audit_logger or AuditLogger()

    agent = DocumentExtractionAgent(
        selector=selector,
        generator=generator,
        settings=settings,
        audit_logger=audit_logger,
    )

    def pdf_text_extractor(content: bytes) -> str:
        if isinstance(pdf_text, BaseException):
            raise pdf_text
        return pdf_text

    service = IngestionService(
        agent=agent,
        settings=settings,
        audit_logger=audit_logger,
        upload_validator=UploadValidator(app_settings or AppSettings()),
        pdf_text_extractor=pdf_text_extractor,
        sleep=sleep or RecordingSleep(),
    )
    return service, generator
