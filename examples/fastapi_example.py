"""Example FastAPI application with shape capture.

Run with:
    uvicorn examples.fastapi_example:app --reload

Every JSON response served by this app is fingerprinted in the background
and stored in shapekeeper.db (override with SHAPEKEEPER_DATABASE_PATH).
Requests to /health are not captured.

Try:
    curl localhost:8000/users/1
    curl localhost:8000/users/2          # same shape, deduplicated
    curl localhost:8000/users/3?full=1   # extra field, new fingerprint
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from shapekeeper import (
    ObservationDispatcher,
    RetentionCoordinator,
    Settings,
    ShapeCaptureMiddleware,
    ShapeCollector,
    SQLiteShapeRepository,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

settings = Settings.from_env()

# Create storage and the capture pipeline
repository = SQLiteShapeRepository(
    settings.database_path, timeout=settings.db_timeout_seconds
)
collector = ShapeCollector(
    RetentionCoordinator(
        repository,
        max_samples_per_fingerprint=settings.max_samples_per_fingerprint,
        strategy=settings.retention_strategy,
    ),
    fingerprint_budget_ms=settings.fingerprint_budget_ms,
)
dispatcher = ObservationDispatcher(
    collector.collect,
    max_queue_size=settings.queue_max_size,
    process_timeout=settings.process_timeout_seconds,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await dispatcher.start()
    yield
    await dispatcher.stop()
    await repository.close()
    logging.getLogger(__name__).info("Capture stats: %s", dispatcher.stats)


# Create FastAPI app
app = FastAPI(title="Shape Capture Example", lifespan=lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/users/{user_id}")
async def get_user(user_id: int, full: bool = False) -> dict[str, Any]:
    """Return a user; ?full=1 adds a nested profile, changing the shape."""
    user: dict[str, Any] = {"id": user_id, "name": f"user-{user_id}"}
    if full:
        user["profile"] = {"email": f"user{user_id}@example.com", "roles": ["admin"]}
    return user


# Wrap the app so capture sees every response
app = ShapeCaptureMiddleware.from_settings(
    app, dispatcher, settings, exclude_paths=["/health"]
)
