"""shapekeeper: structural fingerprinting and bounded retention of API samples."""

from shapekeeper.adapters.frameworks.asgi import ShapeCaptureMiddleware
from shapekeeper.adapters.storage.in_memory import InMemoryShapeRepository
from shapekeeper.adapters.storage.sqlite import SQLiteShapeRepository
from shapekeeper.config import Settings
from shapekeeper.core.collector import ShapeCollector
from shapekeeper.core.dispatch import DispatchStats, ObservationDispatcher
from shapekeeper.core.exceptions import (
    ConfigurationError,
    RepositoryError,
    ShapekeeperError,
    UnknownFingerprintError,
)
from shapekeeper.core.fingerprint import fingerprint, structure_signature
from shapekeeper.core.models import (
    CapturedExchange,
    CollectOutcome,
    CorpusStats,
    Endpoint,
    EndpointDescriptor,
    Fingerprint,
    FingerprintResult,
    Observation,
    ProcessResult,
    Sample,
    SamplePayload,
)
from shapekeeper.core.paths import normalize_path
from shapekeeper.core.ports import CorpusQueryPort, ShapeRepositoryPort
from shapekeeper.core.redaction import REDACTED, redact_fields, redact_headers
from shapekeeper.core.retention import RetentionCoordinator, RetentionStrategy

__all__ = [
    "REDACTED",
    "CapturedExchange",
    "CollectOutcome",
    "ConfigurationError",
    "CorpusQueryPort",
    "CorpusStats",
    "DispatchStats",
    "Endpoint",
    "EndpointDescriptor",
    "Fingerprint",
    "FingerprintResult",
    "InMemoryShapeRepository",
    "Observation",
    "ObservationDispatcher",
    "ProcessResult",
    "RepositoryError",
    "RetentionCoordinator",
    "RetentionStrategy",
    "SQLiteShapeRepository",
    "Sample",
    "SamplePayload",
    "Settings",
    "ShapeCaptureMiddleware",
    "ShapeCollector",
    "ShapeRepositoryPort",
    "ShapekeeperError",
    "UnknownFingerprintError",
    "fingerprint",
    "normalize_path",
    "redact_fields",
    "redact_headers",
    "structure_signature",
]
