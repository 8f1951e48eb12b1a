"""
Regex Extraction for Brazilian Financial Documents

This is the zero-cost stage of the pipeline. It scans the text layer of a
PDF for patterns every Brazilian receipt, invoice or boleto tends to carry:
- CNPJ (company tax ID)
- Amounts in reais (R$ 1.234,56)
- Dates (DD/MM/YYYY or DD-MM-YYYY)
- Boleto "linha digitável" (47 digits)
- Merchant name (heuristic: uppercase line near the top)

Each pattern found adds a fixed weight to the confidence score. The
orchestrator trusts the result without calling the AI only when the score
clears its threshold.

Everything here is pure: no I/O, no state.
"""

import re
from datetime import date
from typing import Iterable, Optional

from finance_ingestion.models.extraction import RegexExtractionResult

CNPJ_PATTERN = re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}")
CURRENCY_PATTERN = re.compile(r"R\$\s*(\d{1,3}(?:\.\d{3})*(?:,\d{2}))")
DATE_PATTERN = re.compile(r"(\d{2})[/-](\d{2})[/-](\d{4})")
BOLETO_PATTERN = re.compile(
    r"\d{5}\.\d{5}\s\d{5}\.\d{6}\s\d{5}\.\d{6}\s\d\s\d{14}"
)
MERCHANT_PATTERN = re.compile(r"^([A-ZÀÁÂÃÉÊÍÓÔÕÚÇ\s]{5,})")

# Lines scanned for the merchant name
MERCHANT_SCAN_LINES = 10

# Currency dominates: the amount is the field users care most about
PATTERN_WEIGHTS = {
    "cnpj": 0.20,
    "currency": 0.40,
    "date": 0.20,
    "merchant": 0.15,
    "boleto": 0.05,
}


def parse_brl_currency(value: str) -> float:
    """
    Convert a Brazilian currency string into a float.

    "1.200,50" -> 1200.5
    """
    return float(value.replace(".", "").replace(",", "."))


def normalize_br_date(day: str, month: str, year: str) -> Optional[str]:
    """
    Convert Brazilian date parts into ISO 8601 at UTC midnight.

    ("03", "12", "2025") -> "2025-12-03T00:00:00.000Z"

    Returns None for dates that don't exist (e.g. 31/02).
    """
    try:
        parsed = date(int(year), int(month), int(day))
    except ValueError:
        return None
    return f"{parsed.isoformat()}T00:00:00.000Z"


def calculate_confidence(patterns: Iterable[str]) -> float:
    """
    Sum the weights of the matched patterns, capped at 1.0.

    Unknown pattern names weigh nothing. Rounded so that sums like
    0.2 + 0.4 + 0.2 compare cleanly against the threshold.
    """
    score = sum(PATTERN_WEIGHTS.get(p, 0.0) for p in set(patterns))
    return round(min(score, 1.0), 4)


def _find_date(text: str) -> Optional[str]:
    for match in DATE_PATTERN.finditer(text):
        day, month, year = match.groups()
        normalized = normalize_br_date(day, month, year)
        if normalized:
            return normalized
    return None


def _find_merchant(text: str) -> Optional[str]:
    for line in text.split("\n")[:MERCHANT_SCAN_LINES]:
        match = MERCHANT_PATTERN.match(line.strip())
        if match:
            return match.group(1).strip()
    return None


def extract_with_regex(text: str) -> RegexExtractionResult:
    """
    Apply the Brazilian financial patterns to extracted PDF text.

    Policies:
    - CNPJ, date, boleto: the first match wins
    - currency: the LARGEST amount wins (the total is usually the biggest
      number on a receipt)
    - merchant: first uppercase line within the first 10 lines

    No matches yields confidence 0 and every field None, which the caller
    must treat as "send to the AI".
    """
    matched: list[str] = []
    fields: dict = {}

    cnpj_match = CNPJ_PATTERN.search(text)
    if cnpj_match:
        fields["cnpj"] = cnpj_match.group(0)
        matched.append("cnpj")

    amounts = [parse_brl_currency(m.group(1)) for m in CURRENCY_PATTERN.finditer(text)]
    if amounts:
        fields["amount"] = max(amounts)
        matched.append("currency")

    iso_date = _find_date(text)
    if iso_date:
        fields["date"] = iso_date
        matched.append("date")

    boleto_match = BOLETO_PATTERN.search(text)
    if boleto_match:
        fields["boleto_code"] = re.sub(r"\s", "", boleto_match.group(0))
        matched.append("boleto")

    merchant = _find_merchant(text)
    if merchant:
        fields["merchant"] = merchant
        matched.append("merchant")

    return RegexExtractionResult(
        **fields,
        confidence=calculate_confidence(matched),
        matched_patterns=matched,
    )
