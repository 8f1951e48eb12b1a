"""
Core Data Models for Finance Ingestion

These models define the strict schemas for all data flowing out of the
ingestion pipeline. They are designed to:
1. Give callers one output contract regardless of extraction method
2. Absorb the loose shapes the AI returns (camelCase keys, string amounts)
3. Be serializable for API responses and logging

DESIGN DECISION: Field names are snake_case in Python and camelCase on the
wire. Every model accepts both through aliases, and responses are dumped
by alias so the frontend keeps its existing contract.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from finance_ingestion.models.amounts import (
    normalize_amount,
    normalize_optional_amount,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExtractionMethod(str, Enum):
    """How the data was extracted."""
    REGEX = "regex"  # Free, deterministic pattern matching
    AI = "ai"        # Paid multimodal model call


class SupportedMimeType(str, Enum):
    """
    File types the pipeline accepts.

    PDFs get the free regex stage first. Images always go to the AI.
    """
    PDF = "application/pdf"
    JPEG = "image/jpeg"
    PNG = "image/png"


class _WireModel(BaseModel):
    """Base for models exchanged with the AI and the frontend (camelCase)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def _scalar_to_text(v: Any) -> Any:
    """Models sometimes answer a text field with a bare number."""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


# =============================================================================
# LINE ITEMS AND STATEMENT ENTRIES
# =============================================================================

class TransactionItem(_WireModel):
    """A line item on a receipt or invoice."""

    description: str = Field(
        default="Item",
        max_length=500,
        description="Description of the line item"
    )
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: float = Field(
        default=0.0,
        description="Total price of the line"
    )

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "Item"
        return _scalar_to_text(v)

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def coerce_optional_numbers(cls, v: Any) -> Optional[float]:
        return normalize_optional_amount(v)

    @field_validator("total_price", mode="before")
    @classmethod
    def coerce_total(cls, v: Any) -> float:
        return normalize_amount(v)


class ExtractedTransaction(_WireModel):
    """
    One transaction line from a credit card statement.

    The amount is always a plain number after validation, never a
    currency-formatted string.
    """

    merchant: Optional[str] = None
    date: Optional[str] = Field(
        default=None,
        description="ISO 8601 date"
    )
    amount: float = 0.0
    category: Optional[str] = None
    description: Optional[str] = None
    installment_info: Optional[str] = Field(
        default=None,
        description='Free text, e.g. "Parcela 2 de 12"'
    )
    card_last_digits: Optional[str] = None
    is_refund: bool = Field(
        default=False,
        description="Refunds show up with a '+' sign on statements"
    )

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return normalize_amount(v)

    @field_validator(
        "merchant", "date", "category", "description", "installment_info",
        "card_last_digits", mode="before"
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_to_text(v)

    @field_validator("is_refund", mode="before")
    @classmethod
    def coerce_refund(cls, v: Any) -> bool:
        return v is True


class StatementInfo(_WireModel):
    """Issuer metadata of a credit card statement."""

    institution: Optional[str] = None
    card_last_digits: Optional[str] = None
    due_date: Optional[str] = None
    total_amount: Optional[float] = None
    credit_limit: Optional[float] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    holder_name: Optional[str] = None

    @field_validator("total_amount", "credit_limit", mode="before")
    @classmethod
    def coerce_amounts(cls, v: Any) -> Optional[float]:
        return normalize_optional_amount(v)

    @field_validator(
        "institution", "card_last_digits", "due_date", "period_start",
        "period_end", "holder_name", mode="before"
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_to_text(v)


# =============================================================================
# PIPELINE OUTPUT
# =============================================================================

class ExtractionResult(_WireModel):
    """
    The pipeline's unified output.

    Built once per processed file and immutable afterwards. This subsystem
    never persists it - the caller decides what to do with it.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    merchant: Optional[str] = None
    date: Optional[str] = Field(
        default=None,
        description="ISO 8601 date"
    )
    amount: float = 0.0
    category: Optional[str] = None
    items: list[TransactionItem] = Field(default_factory=list)
    confidence: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Confidence in the extraction (0-1)"
    )
    extraction_method: ExtractionMethod
    raw_data: Optional[dict[str, Any]] = Field(
        default=None,
        description="Debug payload"
    )

    # Multi-transaction (statement) fields
    is_multi_transaction: bool = False
    transactions: Optional[list[ExtractedTransaction]] = None
    statement_info: Optional[StatementInfo] = None

    def to_response_dict(self) -> dict:
        """Serialize with camelCase keys, dropping empty optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RegexExtractionResult(_WireModel):
    """
    Intermediate result of the regex stage.

    Lives only inside the orchestrator. It is translated into an
    ExtractionResult when its confidence clears the threshold.
    """

    merchant: Optional[str] = None
    date: Optional[str] = None
    amount: Optional[float] = None
    cnpj: Optional[str] = None
    boleto_code: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_patterns: list[str] = Field(default_factory=list)


# =============================================================================
# AI PAYLOADS - explicit tagged union of the two shapes the model may return
# =============================================================================

class SingleDocumentPayload(_WireModel):
    """A receipt, invoice or boleto: one transaction."""

    kind: Literal["single"] = "single"
    merchant: Optional[str] = None
    date: Optional[str] = None
    amount: float = Field(
        default=0.0,
        description="A missing, null or malformed value normalizes to 0"
    )
    category: Optional[str] = None
    items: Optional[list[TransactionItem]] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return normalize_amount(v)

    @field_validator("merchant", "date", "category", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_to_text(v)


class StatementPayload(_WireModel):
    """A credit card statement: many transactions plus issuer metadata."""

    kind: Literal["statement"] = "statement"
    is_multi_transaction: Literal[True]
    transactions: list[ExtractedTransaction]
    statement_info: Optional[StatementInfo] = None
    merchant: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None

    @field_validator("merchant", "date", "category", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _scalar_to_text(v)


AIPayload = Union[SingleDocumentPayload, StatementPayload]


def decode_ai_payload(data: Any) -> AIPayload:
    """
    Decode parsed model output into one of the two known shapes.

    The tag is ``isMultiTransaction``: exactly ``true`` selects the statement
    shape, any other object the single-document shape, whose fields are all
    optional. A non-object or a statement without a ``transactions`` list
    raises ``ValueError`` (pydantic's ValidationError is one).
    """
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    if data.get("isMultiTransaction", data.get("is_multi_transaction")) is True:
        return StatementPayload.model_validate(data)
    return SingleDocumentPayload.model_validate(data)


# =============================================================================
# UPLOADS AND VALIDATION
# =============================================================================

class UploadedDocument(BaseModel):
    """A file that passed upload validation."""

    upload_id: UUID = Field(default_factory=uuid4)
    received_at: datetime = Field(default_factory=_utcnow)
    content: bytes = Field(repr=False)
    mime_type: SupportedMimeType
    size_bytes: int = Field(ge=1)
    filename: Optional[str] = None


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of reviewing an extraction.

    Stage 1: Schema checks (values that can't be right)
    Stage 2: Semantic checks (values that look suspicious)
    """

    validated_at: datetime = Field(default_factory=_utcnow)
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
