"""
Classification of raw provider failures.

Two questions are asked about every exception the AI call raises:

1. Is it ROTATABLE? Quota exhausted, rate limited, model missing or
   overloaded. Trying another (key, model) pair may help right away.
2. Is it RETRYABLE? A transient network or server failure. Trying the
   same thing again after a short wait may help.

The provider SDK surfaces failures in several ways: string codes, numeric
HTTP statuses, gRPC status enums, OS errno values, or only a message. All
of them are normalized here so the agent and the orchestrator never poke
at provider exception internals.

CRITICAL: Errors the pipeline already classified (IngestionError) are
neither rotatable nor retryable. They pass through untouched.
"""

import errno
import socket
from typing import Optional

from finance_ingestion.errors import IngestionError


# Substrings of provider messages that mean "this key or model can't serve now"
ROTATABLE_MARKERS = ("429", "quota", "limit", "404", "503")

RETRYABLE_ERROR_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "INTERNAL",
    "EAI_AGAIN",
    "UNAVAILABLE",
    "DEADLINE_EXCEEDED",
    "RESOURCE_EXHAUSTED",
})

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "rate limit",
    "quota",
    "overloaded",
    "temporarily unavailable",
    "econnreset",
    "socket hang up",
)

# getaddrinfo failures that are worth another try
_RETRYABLE_GAI_ERRNOS = frozenset({socket.EAI_AGAIN, socket.EAI_NONAME})


def is_rotatable_error(exc: BaseException) -> bool:
    """Check whether switching to another key or model may fix the failure."""
    if isinstance(exc, IngestionError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in ROTATABLE_MARKERS)


def _error_code_name(exc: BaseException) -> Optional[str]:
    """Symbolic code of an exception, whatever attribute carries it."""
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code.upper()

    # google.api_core exceptions carry the gRPC enum next to the HTTP code
    grpc_code = getattr(exc, "grpc_status_code", None)
    if grpc_code is not None and getattr(grpc_code, "name", None):
        return grpc_code.name

    if isinstance(exc, socket.gaierror):
        if exc.errno in _RETRYABLE_GAI_ERRNOS:
            return "EAI_AGAIN" if exc.errno == socket.EAI_AGAIN else "ENOTFOUND"
        return None

    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno)

    return None


def _status_code(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return int(value)
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """
    Check whether the same request is worth repeating after a backoff.

    Checked in order: symbolic code, HTTP status, then message substrings.
    """
    if isinstance(exc, IngestionError):
        return False

    code_name = _error_code_name(exc)
    if code_name and code_name in RETRYABLE_ERROR_CODES:
        return True

    status = _status_code(exc)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True

    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)
