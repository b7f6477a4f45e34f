"""Core domain models for shape fingerprints and retained samples."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FingerprintResult:
    """Structural fingerprint of a JSON value.

    Attributes:
        hash: SHA-256 hex digest of the signature.
        signature: Canonical type-and-shape signature (no values).
        elapsed_ms: Wall time spent computing the fingerprint.
    """

    hash: str
    signature: str
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class EndpointDescriptor:
    """Identity of an observed endpoint.

    Attributes:
        method: HTTP method, uppercase.
        path: Raw request path as last seen.
        normalized_path: Path with identifiers replaced by placeholders.
    """

    method: str
    path: str
    normalized_path: str


@dataclass(frozen=True)
class SamplePayload:
    """Redacted request/response data that becomes a sample."""

    response_body: Any
    request_headers: dict[str, str] = field(default_factory=dict)
    request_body: Any = None
    request_query: dict[str, Any] = field(default_factory=dict)
    response_headers: dict[str, str] = field(default_factory=dict)
    response_time_ms: float | None = None


@dataclass(frozen=True)
class Observation:
    """A single fingerprinted exchange handed to the retention coordinator.

    Attributes:
        endpoint: Endpoint identity.
        fingerprint: Structural fingerprint of the response body.
        status_code: HTTP response status code.
        payload: Redacted request/response data.
        timestamp: Unix timestamp of the capture.
    """

    endpoint: EndpointDescriptor
    fingerprint: FingerprintResult
    status_code: int
    payload: SamplePayload
    timestamp: float


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of processing one observation."""

    fingerprint_id: int
    is_new_shape: bool
    sample_retained: bool


@dataclass(frozen=True)
class CollectOutcome:
    """Result of collecting a captured exchange, for telemetry callers."""

    result: ProcessResult
    fingerprint_elapsed_ms: float


@dataclass(frozen=True)
class CapturedExchange:
    """Raw, unredacted request/response pair from the interception layer.

    Bodies may be bytes, str or already-decoded JSON values.
    """

    method: str
    path: str
    status_code: int
    response_body: Any
    request_headers: dict[str, str] = field(default_factory=dict)
    request_body: Any = None
    request_query: dict[str, Any] = field(default_factory=dict)
    response_headers: dict[str, str] = field(default_factory=dict)
    response_time_ms: float | None = None
    timestamp: float = 0.0


@dataclass(frozen=True)
class Endpoint:
    """Persisted endpoint record."""

    id: int
    method: str
    path: str
    normalized_path: str
    first_seen: float
    last_seen: float
    request_count: int
    metadata: str | None = None


@dataclass(frozen=True)
class Fingerprint:
    """Persisted fingerprint record, one per (endpoint, hash, status code)."""

    id: int
    endpoint_id: int
    fingerprint_hash: str
    status_code: int
    structure_signature: str
    first_seen: float
    last_seen: float
    occurrence_count: int
    sample_count: int


@dataclass(frozen=True)
class Sample:
    """Persisted request/response sample owned by a fingerprint."""

    id: int
    fingerprint_id: int
    captured_at: float
    response_body: Any
    request_headers: dict[str, str] = field(default_factory=dict)
    request_body: Any = None
    request_query: dict[str, Any] = field(default_factory=dict)
    response_headers: dict[str, str] = field(default_factory=dict)
    response_time_ms: float | None = None


@dataclass(frozen=True)
class CorpusStats:
    """Aggregate counts over the stored corpus."""

    total_endpoints: int = 0
    total_fingerprints: int = 0
    total_samples: int = 0
    total_requests: int = 0
