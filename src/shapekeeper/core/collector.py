"""Turns captured exchanges into observations and records them."""

import json
import logging
import time
from typing import Any

from shapekeeper.core.fingerprint import (
    FINGERPRINT_BUDGET_MS,
    exceeds_budget,
    fingerprint,
)
from shapekeeper.core.models import (
    CapturedExchange,
    CollectOutcome,
    EndpointDescriptor,
    FingerprintResult,
    Observation,
    SamplePayload,
)
from shapekeeper.core.paths import is_valid_method, normalize_path
from shapekeeper.core.redaction import redact_fields, redact_headers
from shapekeeper.core.retention import RetentionCoordinator

logger = logging.getLogger(__name__)

_NOT_JSON = object()


def _decode_json(body: Any) -> Any:
    """Decode a body into a JSON value, or return the _NOT_JSON marker."""
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return _NOT_JSON
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return _NOT_JSON
    return body


def decode_response_body(body: Any) -> dict[str, Any] | list[Any] | None:
    """Decode a response body that can be fingerprinted.

    Returns:
        The decoded object or array, or None for non-JSON bodies and for
        JSON primitives.
    """
    decoded = _decode_json(body)
    if isinstance(decoded, (dict, list)):
        return decoded
    return None


def decode_request_body(body: Any) -> Any:
    """Decode a request body for storage; non-JSON text is kept as a string."""
    if body is None or body == b"" or body == "":
        return None
    decoded = _decode_json(body)
    if decoded is _NOT_JSON:
        if isinstance(body, (bytes, bytearray)):
            return body.decode("utf-8", errors="replace")
        return body
    return decoded


def build_observation(
    exchange: CapturedExchange,
    response_body: dict[str, Any] | list[Any],
    result: FingerprintResult,
) -> Observation:
    """Assemble a redacted observation from a captured exchange."""
    method = exchange.method.upper()
    payload = SamplePayload(
        request_headers=redact_headers(exchange.request_headers),
        request_body=redact_fields(decode_request_body(exchange.request_body)),
        request_query=dict(exchange.request_query),
        response_headers=redact_headers(exchange.response_headers),
        response_body=redact_fields(response_body),
        response_time_ms=exchange.response_time_ms,
    )
    return Observation(
        endpoint=EndpointDescriptor(
            method=method,
            path=exchange.path,
            normalized_path=normalize_path(exchange.path),
        ),
        fingerprint=result,
        status_code=exchange.status_code,
        payload=payload,
        timestamp=exchange.timestamp or time.time(),
    )


class ShapeCollector:
    """Fingerprints captured exchanges and hands them to a coordinator.

    Bodies that are not JSON objects or arrays are expected traffic and are
    dropped without error. Repository failures propagate to the caller.
    """

    def __init__(
        self,
        coordinator: RetentionCoordinator,
        fingerprint_budget_ms: float = FINGERPRINT_BUDGET_MS,
    ) -> None:
        self.coordinator = coordinator
        self.fingerprint_budget_ms = fingerprint_budget_ms

    async def collect(self, exchange: CapturedExchange) -> CollectOutcome | None:
        """Record one captured exchange.

        Args:
            exchange: Raw capture from the interception layer.

        Returns:
            CollectOutcome, or None if the exchange was not eligible.
        """
        if not is_valid_method(exchange.method):
            logger.debug("Skipping unsupported method %s", exchange.method)
            return None

        response_body = decode_response_body(exchange.response_body)
        if response_body is None:
            logger.debug(
                "Skipping non-JSON response for %s %s", exchange.method, exchange.path
            )
            return None

        # Fingerprint the raw body: redaction may change a field's type.
        result = fingerprint(response_body)
        self.check_budget(exchange.method, exchange.path, result)

        observation = build_observation(exchange, response_body, result)
        process_result = await self.coordinator.process(observation)
        self.report(observation, process_result.is_new_shape)
        return CollectOutcome(
            result=process_result, fingerprint_elapsed_ms=result.elapsed_ms
        )

    def check_budget(self, method: str, path: str, result: FingerprintResult) -> None:
        """Log a warning when fingerprinting exceeded the soft budget."""
        if exceeds_budget(result, self.fingerprint_budget_ms):
            logger.warning(
                "Slow fingerprint: %s %s took %.2fms (budget %.2fms)",
                method,
                path,
                result.elapsed_ms,
                self.fingerprint_budget_ms,
            )

    @staticmethod
    def report(observation: Observation, is_new_shape: bool) -> None:
        if is_new_shape:
            logger.info(
                "New fingerprint: %s %s [%d]",
                observation.endpoint.method,
                observation.endpoint.path,
                observation.status_code,
            )
