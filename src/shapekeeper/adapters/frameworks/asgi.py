"""ASGI middleware that captures traffic for shape fingerprinting.

The middleware sits in front of any ASGI application (or a reverse proxy
implemented as one), records the request and response as they stream
through, and hands a CapturedExchange to an ObservationDispatcher once the
response has been sent. The wrapped application's response is never
delayed or altered.
"""

import fnmatch
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any
from urllib.parse import parse_qs

from shapekeeper.config import Settings
from shapekeeper.core.dispatch import ObservationDispatcher
from shapekeeper.core.models import CapturedExchange

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

DEFAULT_MAX_BODY_BYTES = 1024 * 1024


def _parse_query_params(scope: Scope) -> dict[str, str | list[str]]:
    """Parse query string from ASGI scope into a parameter dictionary.

    Args:
        scope: ASGI scope dictionary containing request metadata.

    Returns:
        Dictionary mapping parameter names to a value, or to a list of values
        for repeated parameters. Empty dict if query_string is missing.
    """
    query_string = scope.get("query_string", b"").decode(errors="replace")
    parsed = parse_qs(query_string, keep_blank_values=True)
    return {
        name: values[0] if len(values) == 1 else values
        for name, values in parsed.items()
    }


def _decode_headers(raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    """Decode ASGI header pairs, joining repeated headers with a comma."""
    headers: dict[str, str] = {}
    for name, value in raw_headers:
        key = name.decode("latin-1")
        text = value.decode("latin-1")
        headers[key] = f"{headers[key]}, {text}" if key in headers else text
    return headers


def _is_json_content_type(headers: list[tuple[bytes, bytes]]) -> bool:
    """Return True unless the response declares a non-JSON content type."""
    for name, value in headers:
        if name.lower() == b"content-type":
            return b"json" in value.lower()
    return True


class ShapeCaptureMiddleware:
    """ASGI middleware that submits captured exchanges to a dispatcher.

    Example:
        ```python
        dispatcher = ObservationDispatcher(collector.collect)
        app = ShapeCaptureMiddleware(app, dispatcher, exclude_paths=["/health"])
        ```
    """

    def __init__(
        self,
        app: ASGIApp,
        dispatcher: ObservationDispatcher[CapturedExchange],
        exclude_paths: list[str] | None = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            dispatcher: Receives one CapturedExchange per eligible response.
            exclude_paths: Paths never captured. Supports exact matches and
                          wildcard patterns (e.g., "/internal/*").
            max_body_bytes: Exchanges whose request or response body exceeds
                           this size are not captured.
        """
        self.app = app
        self.dispatcher = dispatcher
        self.exclude_paths = exclude_paths or []
        self.max_body_bytes = max_body_bytes

    @classmethod
    def from_settings(
        cls,
        app: ASGIApp,
        dispatcher: ObservationDispatcher[CapturedExchange],
        settings: Settings,
        exclude_paths: list[str] | None = None,
    ) -> "ShapeCaptureMiddleware":
        """Build the middleware with the body size limit from settings."""
        return cls(
            app,
            dispatcher,
            exclude_paths=exclude_paths,
            max_body_bytes=settings.max_body_bytes,
        )

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        captured: dict[str, Any] = {
            "status": None,
            "headers": [],
            "request_body": bytearray(),
            "response_body": bytearray(),
            "skip": False,
        }

        async def wrapped_receive() -> dict[str, Any]:
            message = await receive()
            if message["type"] == "http.request" and not captured["skip"]:
                self._append(captured, "request_body", message.get("body", b""))
            return message

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                captured["headers"] = list(message.get("headers", []))
                if not _is_json_content_type(captured["headers"]):
                    captured["skip"] = True
            elif message["type"] == "http.response.body" and not captured["skip"]:
                self._append(captured, "response_body", message.get("body", b""))
            await send(message)

        await self.app(scope, wrapped_receive, wrapped_send)

        if captured["skip"] or captured["status"] is None:
            return
        duration_ms = (time.perf_counter() - start_time) * 1000
        try:
            self.dispatcher.submit(self._build_exchange(scope, captured, duration_ms))
        except Exception:
            logger.exception(
                "Failed to capture %s %s", scope.get("method"), scope.get("path")
            )

    def _append(self, captured: dict[str, Any], key: str, chunk: bytes) -> None:
        buffer: bytearray = captured[key]
        if len(buffer) + len(chunk) > self.max_body_bytes:
            captured["skip"] = True
            buffer.clear()
            return
        buffer.extend(chunk)

    @staticmethod
    def _build_exchange(
        scope: Scope, captured: dict[str, Any], duration_ms: float
    ) -> CapturedExchange:
        return CapturedExchange(
            method=scope["method"],
            path=scope["path"],
            status_code=captured["status"],
            request_headers=_decode_headers(scope.get("headers", [])),
            request_body=bytes(captured["request_body"]) or None,
            request_query=_parse_query_params(scope),
            response_headers=_decode_headers(captured["headers"]),
            response_body=bytes(captured["response_body"]),
            response_time_ms=duration_ms,
            timestamp=time.time(),
        )
