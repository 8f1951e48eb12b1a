"""
Upload and Result Validation

DESIGN DECISION: Validation happens at the two edges of the pipeline.

UPLOAD VALIDATION (before extraction):
- File present and non-empty
- Supported MIME type
- Size within the configured limit
- This rejects bad input before any paid call is made

RESULT REVIEW (after extraction), in two stages:

STAGE 1 - SCHEMA:
- Values that cannot be right (negative totals, confidence out of bounds)

STAGE 2 - SEMANTIC:
- Values that look suspicious (missing merchant, future dates,
  statement total that doesn't match its transactions)

IMPORTANT: Review NEVER fixes anything. Results are immutable and issues
are reported for the human who confirms the transaction.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from finance_ingestion.config.settings import AppSettings
from finance_ingestion.errors import ValidationError
from finance_ingestion.models.extraction import (
    ExtractionResult,
    SupportedMimeType,
    UploadedDocument,
    ValidationIssue,
    ValidationResult,
)

logger = structlog.get_logger(__name__)

# Rounding noise tolerated between a statement total and its transactions
STATEMENT_TOTAL_TOLERANCE = 0.01


def parse_categories(raw: Any) -> list[str]:
    """
    Parse the caller's category names.

    Multipart forms send them as a JSON-encoded string, JSON bodies as a
    list. Anything malformed yields an empty list.
    """
    if raw is None or raw == "":
        return []

    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("categories_parse_failed", error=str(e))
            return []

    if not isinstance(value, (list, tuple)):
        logger.warning("categories_parse_failed", error=f"expected a list, got {type(value).__name__}")
        return []

    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UploadValidator:
    """Gatekeeper for files entering the pipeline."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or AppSettings()

    def validate_upload(
        self,
        content: Optional[bytes],
        mime_type: Optional[str],
        filename: Optional[str] = None,
    ) -> UploadedDocument:
        """
        Check an uploaded file.

        Raises:
            ValidationError: With details listing every {field, message}
        """
        issues: list[dict] = []
        normalized_type = (mime_type or "").split(";")[0].strip().lower()

        if not content:
            issues.append({
                "field": "file",
                "message": "Nenhum arquivo foi enviado ou o arquivo está vazio.",
            })

        allowed = set(self._settings.supported_mime_types_list)
        allowed &= {m.value for m in SupportedMimeType}
        if normalized_type not in allowed:
            issues.append({
                "field": "mimeType",
                "message": "Tipo de arquivo não suportado. Envie PDF, JPEG ou PNG.",
            })

        max_bytes = self._settings.max_upload_size_bytes
        if content and len(content) > max_bytes:
            issues.append({
                "field": "file",
                "message": (
                    f"Arquivo muito grande. O tamanho máximo é "
                    f"{self._settings.max_upload_size_mb}MB."
                ),
            })

        if issues:
            logger.warning("upload_rejected", issues=issues, filename=filename)
            raise ValidationError(details=issues)

        return UploadedDocument(
            content=content,
            mime_type=SupportedMimeType(normalized_type),
            size_bytes=len(content),
            filename=filename,
        )


class ResultValidator:
    """
    Reviews an ExtractionResult and reports what a human should check.

    IngestionService runs it on every result and attaches the issues to the
    extraction_completed audit event.

    Stage 2 is skipped when stage 1 finds errors: suspicious values are
    meaningless next to impossible ones.
    """

    def _validate_schema(
        self,
        result: ExtractionResult,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: values that cannot be right.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if result.amount < 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="O valor total não pode ser negativo",
                severity="error",
            ))

        if not 0.0 <= result.confidence <= 1.0:
            issues.append(ValidationIssue(
                field="confidence",
                issue_type="invalid_value",
                message=f"Confiança fora do intervalo 0-1 ({result.confidence})",
                severity="error",
            ))

        for index, item in enumerate(result.items):
            if item.total_price <= 0:
                issues.append(ValidationIssue(
                    field=f"items[{index}].totalPrice",
                    issue_type="invalid_value",
                    message=f"Item '{item.description}' sem valor positivo",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        result: ExtractionResult,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: values that look suspicious.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not result.merchant:
            issues.append(ValidationIssue(
                field="merchant",
                issue_type="missing",
                message="Estabelecimento não identificado",
                severity="warning",
            ))

        if not result.date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Data não identificada",
                severity="warning",
            ))
        else:
            issues.extend(self._check_date("date", result.date))

        if result.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message="Valor total zerado. O documento pode estar ilegível",
                severity="warning",
            ))

        if result.is_multi_transaction and result.transactions:
            issues.extend(self._check_statement(result))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_date(self, field: str, value: str) -> list[ValidationIssue]:
        parsed = _parse_iso(value)
        if parsed is None:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_format",
                message=f"Data em formato inesperado ({value})",
                severity="warning",
            )]

        # One day of slack for timezone differences
        if parsed > datetime.now(timezone.utc) + timedelta(days=1):
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"A data ({value[:10]}) está no futuro",
                severity="warning",
            )]
        return []

    def _check_statement(self, result: ExtractionResult) -> list[ValidationIssue]:
        issues = []
        info = result.statement_info

        if info and info.total_amount is not None:
            charges = sum(t.amount for t in result.transactions if not t.is_refund)
            refunds = sum(abs(t.amount) for t in result.transactions if t.is_refund)
            computed = round(charges - refunds, 2)
            if abs(info.total_amount - computed) > STATEMENT_TOTAL_TOLERANCE:
                issues.append(ValidationIssue(
                    field="statementInfo.totalAmount",
                    issue_type="inconsistent",
                    message=(
                        f"Total da fatura (R$ {info.total_amount:.2f}) difere da "
                        f"soma das transações (R$ {computed:.2f})"
                    ),
                    severity="warning",
                ))

        for index, transaction in enumerate(result.transactions):
            if transaction.date:
                issues.extend(
                    self._check_date(f"transactions[{index}].date", transaction.date)
                )

        return issues

    def review(self, result: ExtractionResult) -> ValidationResult:
        """
        Run both stages and collect every issue.

        Returns:
            ValidationResult; the reviewed result is left untouched
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(result)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(result)
            all_issues.extend(semantic_issues)

        logger.debug(
            "result_reviewed",
            schema_valid=schema_valid,
            issues=len(all_issues),
        )

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )
