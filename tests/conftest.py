"""Shared test fixtures for all test modules."""

import json
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from shapekeeper.adapters.frameworks.asgi import Receive, Scope, Send
from shapekeeper.adapters.storage.in_memory import InMemoryShapeRepository
from shapekeeper.adapters.storage.sqlite import SQLiteShapeRepository
from shapekeeper.core.fingerprint import fingerprint
from shapekeeper.core.models import (
    EndpointDescriptor,
    Observation,
    SamplePayload,
)
from shapekeeper.core.paths import normalize_path


@pytest.fixture
def shapes_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for shape storage tests."""
    return str(tmp_path / "shapes.db")


# === Storage Fixtures ===


@pytest.fixture
def memory_repository() -> InMemoryShapeRepository:
    """Fixture providing an empty in-memory repository."""
    return InMemoryShapeRepository()


@pytest.fixture
async def sqlite_repository() -> AsyncGenerator[SQLiteShapeRepository, None]:
    """Fixture providing an in-memory SQLite repository, closed afterwards."""
    repository = SQLiteShapeRepository(":memory:")
    yield repository
    await repository.close()


@pytest.fixture
async def sqlite_file_repository(
    shapes_db_path: str,
) -> AsyncGenerator[SQLiteShapeRepository, None]:
    """Fixture providing a file-backed SQLite repository."""
    repository = SQLiteShapeRepository(shapes_db_path)
    yield repository
    await repository.close()


# === Observation Fixtures ===


@pytest.fixture
def make_observation() -> Callable[..., Observation]:
    """Factory fixture for creating observations of a response body.

    Usage:
        def test_something(make_observation):
            observation = make_observation({"id": 1}, path="/users/1")
    """

    def _make(
        body: Any,
        method: str = "GET",
        path: str = "/api/users/1",
        status_code: int = 200,
        timestamp: float = 1_700_000_000.0,
        request_headers: dict[str, str] | None = None,
    ) -> Observation:
        return Observation(
            endpoint=EndpointDescriptor(
                method=method, path=path, normalized_path=normalize_path(path)
            ),
            fingerprint=fingerprint(body),
            status_code=status_code,
            payload=SamplePayload(
                response_body=body, request_headers=request_headers or {}
            ),
            timestamp=timestamp,
        )

    return _make


# === ASGI Test Fixtures ===


@pytest.fixture
def json_asgi_app():
    """ASGI app fixture that returns a fixed JSON object.

    Used in tests to replace repeated inline ASGI app definitions.
    """
    body = json.dumps({"id": 1, "name": "Ada", "active": True}).encode()

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI app that drains the request and returns JSON."""
        message = await receive()
        while message.get("more_body"):
            message = await receive()
        await send(
            {
                "type": "http.response.start",
                "status": 200,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts.

    Used in tests to create scope dicts with customizable method/path.
    """

    def _scope(
        method: str = "GET",
        path: str = "/test",
        query_string: bytes = b"",
        headers: list[tuple[bytes, bytes]] | None = None,
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": query_string,
            "headers": headers or [],
        }

    return _scope


@pytest.fixture
def asgi_receive():
    """Factory fixture for a receive callable delivering one request body."""

    def _receive(body: bytes = b"") -> Receive:
        async def receive() -> dict[str, Any]:
            return {"type": "http.request", "body": body, "more_body": False}

        return receive

    return _receive


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture.

    Returns a tuple of (send_func, responses_list) for recording ASGI messages.
    """

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        """Capture ASGI messages."""
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/health")
    """

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
