"""Structural fingerprinting of decoded JSON values.

The signature keeps keys and types and drops every concrete value, so two
responses with the same shape and different data share one fingerprint.

Example:
    Input:     {"id": 123, "name": "John", "tags": ["a", "b"]}
    Signature: {id:number,name:string,tags:[string]}

Arrays are treated as homogeneous: only the first element is inspected, so
``[1, "x"]`` and ``[1, 2]`` share the signature ``[number]``.
"""

import hashlib
import time
from collections.abc import Mapping
from typing import Any

from shapekeeper.core.models import FingerprintResult

MAX_DEPTH = 10
MAX_DEPTH_SENTINEL = "MAX_DEPTH"

# Soft budget; exceeding it is reported by callers, never enforced.
FINGERPRINT_BUDGET_MS = 2.0


def structure_signature(value: Any, depth: int = 0) -> str:
    """Reduce a JSON value to its type-and-shape signature.

    Args:
        value: Any JSON-decoded value.
        depth: Current nesting depth (used internally).

    Returns:
        Canonical signature string.

    Raises:
        TypeError: If value is not a JSON-decoded type.
    """
    if depth > MAX_DEPTH:
        return MAX_DEPTH_SENTINEL
    if value is None:
        return "null"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        return f"[{structure_signature(value[0], depth + 1)}]"
    if isinstance(value, Mapping):
        fields = ",".join(
            f"{key}:{structure_signature(value[key], depth + 1)}"
            for key in sorted(value)
        )
        return f"{{{fields}}}"
    raise TypeError(f"Cannot fingerprint value of type {type(value).__name__}")


def hash_signature(signature: str) -> str:
    """Return the SHA-256 hex digest of a signature."""
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()


def fingerprint(value: Any) -> FingerprintResult:
    """Compute the structural fingerprint of a JSON value.

    Args:
        value: Decoded JSON body (object, array, primitive or None).

    Returns:
        FingerprintResult with hash, signature and elapsed milliseconds.
    """
    start = time.perf_counter()
    signature = structure_signature(value)
    digest = hash_signature(signature)
    elapsed_ms = (time.perf_counter() - start) * 1000
    return FingerprintResult(hash=digest, signature=signature, elapsed_ms=elapsed_ms)


def exceeds_budget(
    result: FingerprintResult, budget_ms: float = FINGERPRINT_BUDGET_MS
) -> bool:
    """Return True if the fingerprint took longer than the soft budget."""
    return result.elapsed_ms > budget_ms
