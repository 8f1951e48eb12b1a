"""Deterministic (regex) extraction package."""

from finance_ingestion.extraction.patterns import (
    PATTERN_WEIGHTS,
    calculate_confidence,
    extract_with_regex,
    normalize_br_date,
    parse_brl_currency,
)
from finance_ingestion.extraction.pdf_text import PDFTextError, extract_pdf_text

__all__ = [
    "PATTERN_WEIGHTS",
    "PDFTextError",
    "calculate_confidence",
    "extract_pdf_text",
    "extract_with_regex",
    "normalize_br_date",
    "parse_brl_currency",
]
