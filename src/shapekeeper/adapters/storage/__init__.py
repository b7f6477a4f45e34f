"""Storage adapters implementing core ports."""

from shapekeeper.adapters.storage.in_memory import InMemoryShapeRepository
from shapekeeper.adapters.storage.sqlite import SQLiteShapeRepository

__all__ = [
    "InMemoryShapeRepository",
    "SQLiteShapeRepository",
]
