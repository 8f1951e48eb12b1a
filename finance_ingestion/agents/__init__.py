"""AI extraction: strategy rotation, the model client and the agent."""

from finance_ingestion.agents.error_signals import (
    is_retryable_error,
    is_rotatable_error,
)
from finance_ingestion.agents.extraction_agent import (
    DocumentExtractionAgent,
    parse_ai_response,
    statement_total,
    strip_code_fences,
)
from finance_ingestion.agents.gemini_client import (
    GeminiGenerator,
    InlineDocument,
    MultimodalGenerator,
)
from finance_ingestion.agents.prompt import build_extraction_prompt
from finance_ingestion.agents.strategy import AIStrategySelector, StrategyConfig

__all__ = [
    "AIStrategySelector",
    "DocumentExtractionAgent",
    "GeminiGenerator",
    "InlineDocument",
    "MultimodalGenerator",
    "StrategyConfig",
    "build_extraction_prompt",
    "is_retryable_error",
    "is_rotatable_error",
    "parse_ai_response",
    "statement_total",
    "strip_code_fences",
]
