"""Validation of uploads and extraction results."""

from finance_ingestion.validation.validator import (
    ResultValidator,
    UploadValidator,
    parse_categories,
)

__all__ = [
    "ResultValidator",
    "UploadValidator",
    "parse_categories",
]
