"""Request path normalization and method validation."""

import re

_UUID_SEGMENT = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_OBJECT_ID_SEGMENT = re.compile(r"^[0-9a-f]{24}$", re.IGNORECASE)

VALID_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})


def _normalize_segment(segment: str) -> str:
    if segment.isascii() and segment.isdigit():
        return ":id"
    if _UUID_SEGMENT.match(segment):
        return ":uuid"
    if _OBJECT_ID_SEGMENT.match(segment):
        return ":objectId"
    return segment


def normalize_path(path: str) -> str:
    """Replace identifier segments of a path with placeholders.

    Numeric segments become ``:id``, UUIDs ``:uuid`` and 24-character hex
    strings ``:objectId``. Any query string is dropped.

    Example:
        >>> normalize_path("/api/users/123/orders")
        '/api/users/:id/orders'
    """
    path = path.split("?", 1)[0]
    return "/".join(_normalize_segment(segment) for segment in path.split("/"))


def is_valid_method(method: str) -> bool:
    """Return True for the HTTP methods the collector accepts."""
    return method.upper() in VALID_METHODS
