"""
Multimodal generation backends.

The agent only needs one capability: send a prompt plus one inline file
and get text back. MultimodalGenerator is that seam. GeminiGenerator is
the production implementation; tests plug in scripted fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import google.generativeai as genai
import structlog

from finance_ingestion.agents.strategy import StrategyConfig
from finance_ingestion.config.settings import GeminiSettings
from finance_ingestion.errors import AIExtractionError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InlineDocument:
    """The file sent alongside the prompt."""

    data: bytes = field(repr=False)
    mime_type: str

    def to_part(self) -> dict:
        """Blob part for the SDK, which base64-encodes the bytes on the wire."""
        return {"mime_type": self.mime_type, "data": self.data}


class MultimodalGenerator(ABC):
    """Sends (prompt, document) with a given strategy and returns the reply text."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        document: InlineDocument,
        strategy: StrategyConfig,
    ) -> str:
        """Return the raw model text. Provider errors propagate unchanged."""
        pass


class GeminiGenerator(MultimodalGenerator):
    """
    Gemini via google-generativeai.

    The SDK keeps the API key in module state, so it is reconfigured only
    when the strategy moves to a different key.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or GeminiSettings()
        self._configured_key: Optional[str] = None

    def _get_model(self, strategy: StrategyConfig) -> genai.GenerativeModel:
        if self._configured_key != strategy.api_key:
            genai.configure(api_key=strategy.api_key)
            self._configured_key = strategy.api_key
            logger.info("gemini_key_configured", key_index=strategy.key_index)

        return genai.GenerativeModel(
            model_name=strategy.model,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def generate(
        self,
        prompt: str,
        document: InlineDocument,
        strategy: StrategyConfig,
    ) -> str:
        model = self._get_model(strategy)
        response = await model.generate_content_async([prompt, document.to_part()])

        # .text raises ValueError when the reply was blocked or has no parts
        try:
            return response.text
        except ValueError as e:
            raise AIExtractionError(
                "A IA não retornou conteúdo para este documento.",
                details={"model": strategy.model, "reason": str(e)},
            ) from e
