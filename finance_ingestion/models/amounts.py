"""
Amount coercion shared by the extraction models.

Model output is only *supposed* to carry plain numbers. In practice amounts
arrive as numbers, nulls, or currency-formatted strings ("R$ 1.200,50").
Everything is coerced to a plain float here.

IMPORTANT: A malformed amount becomes 0 instead of failing the document.
The user can edit a wrong amount; a lost document has to be uploaded again.
"""

import re
from typing import Any, Optional

_NON_NUMERIC = re.compile(r"[^\d.,]")


def normalize_amount(value: Any) -> float:
    """
    Coerce an amount of unknown shape into a plain float.

    - numbers pass through unchanged
    - None (or anything that is not a number or string) becomes 0
    - strings keep only digits, commas and dots, then the comma becomes
      the decimal point

    Never raises.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return 0.0

    cleaned = _NON_NUMERIC.sub("", value)
    if not cleaned:
        return 0.0

    # Both separators present: whichever comes last is the decimal mark
    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "")
        else:
            cleaned = cleaned.replace(",", "")
    cleaned = cleaned.replace(",", ".")

    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def normalize_optional_amount(value: Any) -> Optional[float]:
    """Like normalize_amount, but keeps None for fields that may be absent."""
    if value is None:
        return None
    return normalize_amount(value)
