"""Redaction of sensitive headers and body fields before persistence."""

from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "x-api-key",
        "x-auth-token",
        "api-key",
        "access-token",
    }
)

SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "token",
        "secret",
        "ssn",
        "credit_card",
        "api_key",
        "private_key",
    }
)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Replace the values of sensitive headers with the redaction marker.

    Header names are matched case-insensitively; the original casing of the
    name is kept.
    """
    return {
        name: (REDACTED if name.lower() in SENSITIVE_HEADERS else value)
        for name, value in headers.items()
    }


def redact_fields(value: Any) -> Any:
    """Recursively replace sensitive fields in a decoded JSON value.

    Keys are matched case-insensitively. Arrays are walked element by
    element; everything else is returned unchanged.
    """
    if isinstance(value, Mapping):
        return {
            key: (
                REDACTED
                if isinstance(key, str) and key.lower() in SENSITIVE_FIELDS
                else redact_fields(item)
            )
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_fields(item) for item in value]
    return value
