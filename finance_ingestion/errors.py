"""
Typed errors for the ingestion pipeline.

Each error is a terminal classification surfaced to the caller. The host
application turns them into HTTP responses with ``to_dict()``.

CRITICAL: Once an error is one of these kinds it is never downgraded or
re-wrapped on the way out of the orchestrator. Only unclassified exceptions
become ``InternalServerError``.
"""

from typing import Any, Optional


class IngestionError(Exception):
    """Base exception for ingestion errors."""

    status_code: int = 500
    code: str = "INGESTION_ERROR"
    default_message: str = "Erro ao processar o documento"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert to the error envelope returned to clients."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
                "details": self.details,
            }
        }


class ValidationError(IngestionError):
    """Uploaded file is missing or malformed."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Arquivo inválido"


class DocumentParseError(IngestionError):
    """The AI replied but the text could not be parsed into a known shape."""

    status_code = 400
    code = "DOCUMENT_PARSE_ERROR"
    default_message = "O documento não pôde ser lido"


class AIExtractionError(IngestionError):
    """The AI answered but no usable data could be extracted."""

    status_code = 422
    code = "AI_EXTRACTION_ERROR"
    default_message = "Não foi possível extrair dados do documento"


class AITimeoutError(IngestionError):
    """The generation call exceeded its deadline."""

    status_code = 504
    code = "AI_TIMEOUT"
    default_message = (
        "A análise do documento demorou muito. "
        "Tente com uma imagem menor ou mais simples."
    )


class AIServiceUnavailableError(IngestionError):
    """
    AI is not configured, every strategy is exhausted, or retries ran out.

    This is the pipeline's "give up, come back later" signal.
    """

    status_code = 503
    code = "AI_SERVICE_UNAVAILABLE"
    default_message = (
        "Serviço de IA temporariamente indisponível. "
        "Tente novamente em alguns minutos."
    )


class InternalServerError(IngestionError):
    """Catch-all wrapper for unclassified failures."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    default_message = "Erro interno do servidor"


# Errors that were already classified upstream and must pass through untouched
CLASSIFIED_ERRORS = (
    ValidationError,
    DocumentParseError,
    AIExtractionError,
    AITimeoutError,
    AIServiceUnavailableError,
)
