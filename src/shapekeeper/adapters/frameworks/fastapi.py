"""FastAPI adapter for the collector service.

Remote capture proxies post pre-fingerprinted exchanges to ``/api/collect``;
the stored corpus is read back through ``/api/stats`` and the per-fingerprint
NDJSON sample export.
"""

import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, FastAPI, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shapekeeper.adapters.storage.sqlite import SQLiteShapeRepository
from shapekeeper.config import Settings
from shapekeeper.core.collector import ShapeCollector
from shapekeeper.core.encoding.ndjson import encode_samples
from shapekeeper.core.exceptions import ShapekeeperError
from shapekeeper.core.models import (
    EndpointDescriptor,
    FingerprintResult,
    Observation,
    SamplePayload,
)
from shapekeeper.core.paths import normalize_path
from shapekeeper.core.ports import CorpusQueryPort
from shapekeeper.core.redaction import redact_fields, redact_headers
from shapekeeper.core.retention import RetentionCoordinator

logger = logging.getLogger(__name__)

_REQUIRED_SECTIONS = ("fingerprint", "endpoint", "response")

# Node delivers repeated headers such as set-cookie as arrays.
WireHeaders = dict[str, str | list[str]]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FingerprintIn(_WireModel):
    hash: str
    signature: str
    calculation_time_ms: float = Field(default=0.0, alias="calculationTimeMs")


class EndpointIn(_WireModel):
    method: str
    path: str
    normalized_path: str | None = Field(default=None, alias="normalizedPath")


class RequestIn(_WireModel):
    headers: WireHeaders = Field(default_factory=dict)
    body: Any = None
    query: dict[str, Any] = Field(default_factory=dict)


class ResponseIn(_WireModel):
    status_code: int = Field(alias="statusCode")
    headers: WireHeaders = Field(default_factory=dict)
    body: Any = None
    response_time_ms: float | None = Field(default=None, alias="responseTimeMs")


class CollectRequest(_WireModel):
    """Wire format posted by capture proxies."""

    fingerprint: FingerprintIn
    endpoint: EndpointIn
    request: RequestIn = Field(default_factory=RequestIn)
    response: ResponseIn
    timestamp: float | datetime | None = None

    def to_observation(self) -> Observation:
        """Convert to a redacted Observation."""
        method = self.endpoint.method.upper()
        return Observation(
            endpoint=EndpointDescriptor(
                method=method,
                path=self.endpoint.path,
                normalized_path=self.endpoint.normalized_path
                or normalize_path(self.endpoint.path),
            ),
            fingerprint=FingerprintResult(
                hash=self.fingerprint.hash,
                signature=self.fingerprint.signature,
                elapsed_ms=self.fingerprint.calculation_time_ms,
            ),
            status_code=self.response.status_code,
            payload=SamplePayload(
                request_headers=redact_headers(_join_headers(self.request.headers)),
                request_body=redact_fields(self.request.body),
                request_query=dict(self.request.query),
                response_headers=redact_headers(_join_headers(self.response.headers)),
                response_body=redact_fields(self.response.body),
                response_time_ms=self.response.response_time_ms,
            ),
            timestamp=_unix_seconds(self.timestamp),
        )


def _join_headers(headers: Mapping[str, str | list[str]]) -> dict[str, str]:
    """Flatten repeated header values with a comma, as the ASGI capture does."""
    return {
        name: ", ".join(value) if isinstance(value, list) else value
        for name, value in headers.items()
    }


def _unix_seconds(timestamp: float | datetime | None) -> float:
    if isinstance(timestamp, datetime):
        return timestamp.timestamp()
    return timestamp or time.time()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


def create_collector_router(
    collector: ShapeCollector,
    corpus: CorpusQueryPort,
) -> APIRouter:
    """Create a FastAPI router with the collector endpoints.

    Args:
        collector: Collector whose coordinator records observations.
        corpus: Read side of the repository.

    Returns:
        APIRouter with /health, /api/collect, /api/stats and
        /api/fingerprints/{fingerprint_id}/samples configured.
    """
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Return service liveness."""
        return {"status": "ok", "service": "shapekeeper-collector"}

    @router.post("/api/collect", response_model=None)
    async def collect(
        payload: Any = Body(...),
    ) -> dict[str, Any] | JSONResponse:
        """Record one pre-fingerprinted exchange."""
        if not isinstance(payload, dict):
            return _error(400, "Invalid request: body must be a JSON object")
        if any(section not in payload for section in _REQUIRED_SECTIONS):
            return _error(400, "Invalid request: missing required fields")
        try:
            request = CollectRequest.model_validate(payload)
        except ValidationError as exc:
            return _error(400, f"Invalid request: {exc.error_count()} invalid fields")

        observation = request.to_observation()
        collector.check_budget(
            observation.endpoint.method,
            observation.endpoint.path,
            observation.fingerprint,
        )
        try:
            result = await collector.coordinator.process(observation)
        except ShapekeeperError as exc:
            logger.exception("Error processing collect request")
            return _error(500, str(exc))
        collector.report(observation, result.is_new_shape)

        return {
            "success": True,
            "fingerprintId": result.fingerprint_id,
            "isNewFingerprint": result.is_new_shape,
            "sampleSaved": result.sample_retained,
        }

    @router.get("/api/stats")
    async def stats() -> dict[str, int]:
        """Return aggregate corpus counts."""
        return asdict(await corpus.stats())

    @router.get("/api/fingerprints/{fingerprint_id}/samples", response_model=None)
    async def samples(fingerprint_id: int) -> Response:
        """Return the samples of a fingerprint in NDJSON format."""
        if await corpus.get_fingerprint(fingerprint_id) is None:
            return _error(404, f"Unknown fingerprint id: {fingerprint_id}")
        body = encode_samples(await corpus.list_samples(fingerprint_id))
        return Response(content=body, media_type="application/x-ndjson")

    return router


def create_collector_app(settings: Settings | None = None) -> FastAPI:
    """Create the collector FastAPI application backed by SQLite.

    Args:
        settings: Configuration; read from the environment when omitted.

    Returns:
        FastAPI app that closes its repository on shutdown.
    """
    settings = settings or Settings.from_env()
    repository = SQLiteShapeRepository(
        settings.database_path, timeout=settings.db_timeout_seconds
    )
    coordinator = RetentionCoordinator(
        repository,
        max_samples_per_fingerprint=settings.max_samples_per_fingerprint,
        strategy=settings.retention_strategy,
    )
    collector = ShapeCollector(
        coordinator, fingerprint_budget_ms=settings.fingerprint_budget_ms
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Collector ready: database=%s max_samples=%d strategy=%s",
            settings.database_path,
            settings.max_samples_per_fingerprint,
            settings.retention_strategy.value,
        )
        yield
        await repository.close()

    app = FastAPI(title="shapekeeper collector", lifespan=lifespan)
    app.include_router(create_collector_router(collector, repository))
    return app
