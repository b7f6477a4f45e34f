"""SQLite storage adapter for endpoints, fingerprints and samples."""

import json
import sqlite3
import time
from typing import Any

import aiosqlite

from shapekeeper.adapters.storage.sqlite_base import (
    DEFAULT_DB_TIMEOUT_SECONDS,
    SQLiteStorageBase,
    _safe_json_loads,
)
from shapekeeper.core.exceptions import UnknownFingerprintError
from shapekeeper.core.models import (
    CorpusStats,
    Endpoint,
    Fingerprint,
    Sample,
    SamplePayload,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS endpoints (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    method TEXT NOT NULL,
    path TEXT NOT NULL,
    normalized_path TEXT NOT NULL,
    first_seen REAL NOT NULL,
    last_seen REAL NOT NULL,
    request_count INTEGER NOT NULL DEFAULT 1,
    metadata TEXT,
    UNIQUE (method, normalized_path)
);

CREATE TABLE IF NOT EXISTS fingerprints (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    endpoint_id INTEGER NOT NULL REFERENCES endpoints(id),
    fingerprint_hash TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    structure_signature TEXT NOT NULL,
    first_seen REAL NOT NULL,
    last_seen REAL NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 1,
    sample_count INTEGER NOT NULL DEFAULT 0,
    UNIQUE (endpoint_id, fingerprint_hash, status_code),
    CHECK (sample_count >= 0 AND sample_count <= occurrence_count)
);
CREATE INDEX IF NOT EXISTS idx_fingerprints_endpoint ON fingerprints(endpoint_id);

CREATE TABLE IF NOT EXISTS samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fingerprint_id INTEGER NOT NULL REFERENCES fingerprints(id) ON DELETE CASCADE,
    captured_at REAL NOT NULL,
    request_headers TEXT NOT NULL DEFAULT '{}',
    request_body TEXT,
    request_query TEXT NOT NULL DEFAULT '{}',
    response_headers TEXT NOT NULL DEFAULT '{}',
    response_body TEXT NOT NULL,
    response_time_ms REAL
);
CREATE INDEX IF NOT EXISTS idx_samples_fingerprint_captured
    ON samples(fingerprint_id, captured_at);
"""

_UPSERT_ENDPOINT = """
INSERT INTO endpoints (
    method, path, normalized_path, first_seen, last_seen, request_count, metadata
)
VALUES (?, ?, ?, ?, ?, 1, ?)
ON CONFLICT (method, normalized_path) DO UPDATE SET
    path = excluded.path,
    last_seen = excluded.last_seen,
    request_count = endpoints.request_count + 1,
    metadata = COALESCE(excluded.metadata, endpoints.metadata)
RETURNING id
"""

_FINGERPRINT_COLUMNS = """
id, endpoint_id, fingerprint_hash, status_code, structure_signature,
first_seen, last_seen, occurrence_count, sample_count
"""

_SELECT_FINGERPRINT_BY_KEY = f"""
SELECT {_FINGERPRINT_COLUMNS}
FROM fingerprints
WHERE endpoint_id = ? AND fingerprint_hash = ? AND status_code = ?
"""

_SELECT_FINGERPRINT_BY_ID = f"""
SELECT {_FINGERPRINT_COLUMNS} FROM fingerprints WHERE id = ?
"""

_SELECT_FINGERPRINTS_BY_ENDPOINT = f"""
SELECT {_FINGERPRINT_COLUMNS}
FROM fingerprints
WHERE endpoint_id = ?
ORDER BY first_seen ASC, id ASC
"""

_INSERT_FINGERPRINT = """
INSERT INTO fingerprints (
    endpoint_id, fingerprint_hash, status_code, structure_signature,
    first_seen, last_seen, occurrence_count, sample_count
)
VALUES (?, ?, ?, ?, ?, ?, 1, 0)
ON CONFLICT (endpoint_id, fingerprint_hash, status_code) DO NOTHING
RETURNING id
"""

_SELECT_FINGERPRINT_ID_BY_KEY = """
SELECT id FROM fingerprints
WHERE endpoint_id = ? AND fingerprint_hash = ? AND status_code = ?
"""

_INCREMENT_OCCURRENCE = """
UPDATE fingerprints
SET occurrence_count = occurrence_count + 1, last_seen = ?
WHERE id = ?
"""

_SELECT_SAMPLE_COUNT = """
SELECT sample_count FROM fingerprints WHERE id = ?
"""

# Bounded increment: matches no row once the cap is reached.
_RESERVE_SAMPLE_SLOT = """
UPDATE fingerprints
SET sample_count = sample_count + 1
WHERE id = ? AND sample_count < ?
"""

_INSERT_SAMPLE = """
INSERT INTO samples (
    fingerprint_id, captured_at, request_headers, request_body, request_query,
    response_headers, response_body, response_time_ms
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

_DELETE_OLDEST_SAMPLE = """
DELETE FROM samples
WHERE id = (
    SELECT id FROM samples
    WHERE fingerprint_id = ?
    ORDER BY captured_at ASC, id ASC
    LIMIT 1
)
"""

_DECREMENT_SAMPLE_COUNT = """
UPDATE fingerprints SET sample_count = sample_count - 1 WHERE id = ?
"""

_SELECT_ENDPOINT = """
SELECT id, method, path, normalized_path, first_seen, last_seen,
       request_count, metadata
FROM endpoints
WHERE method = ? AND normalized_path = ?
"""

_SELECT_SAMPLES = """
SELECT id, fingerprint_id, captured_at, request_headers, request_body,
       request_query, response_headers, response_body, response_time_ms
FROM samples
WHERE fingerprint_id = ?
ORDER BY captured_at ASC, id ASC
"""

_SELECT_STATS = """
SELECT
    (SELECT COUNT(*) FROM endpoints),
    (SELECT COUNT(*) FROM fingerprints),
    (SELECT COUNT(*) FROM samples),
    (SELECT COALESCE(SUM(occurrence_count), 0) FROM fingerprints)
"""


def _fingerprint_from_row(row: sqlite3.Row | aiosqlite.Row) -> Fingerprint:
    return Fingerprint(
        id=row[0],
        endpoint_id=row[1],
        fingerprint_hash=row[2],
        status_code=row[3],
        structure_signature=row[4],
        first_seen=row[5],
        last_seen=row[6],
        occurrence_count=row[7],
        sample_count=row[8],
    )


def _sample_from_row(row: sqlite3.Row | aiosqlite.Row) -> Sample:
    return Sample(
        id=row[0],
        fingerprint_id=row[1],
        captured_at=row[2],
        request_headers=_safe_json_loads(row[3], {}),
        request_body=_safe_json_loads(row[4]),
        request_query=_safe_json_loads(row[5], {}),
        response_headers=_safe_json_loads(row[6], {}),
        response_body=_safe_json_loads(row[7]),
        response_time_ms=row[8],
    )


def _sample_to_row(
    fingerprint_id: int, payload: SamplePayload, captured_at: float
) -> tuple[Any, ...]:
    return (
        fingerprint_id,
        captured_at,
        json.dumps(payload.request_headers),
        json.dumps(payload.request_body) if payload.request_body is not None else None,
        json.dumps(payload.request_query),
        json.dumps(payload.response_headers),
        json.dumps(payload.response_body),
        payload.response_time_ms,
    )


class SQLiteShapeRepository(SQLiteStorageBase):
    """SQLite implementation of ShapeRepositoryPort and CorpusQueryPort.

    Uses aiosqlite for non-blocking async operations and WAL mode for
    concurrent readers. Fingerprint creation relies on the unique
    (endpoint_id, fingerprint_hash, status_code) constraint, and sample
    insertion reserves a slot with a conditional UPDATE in the same
    transaction, so the cap holds without trusting an earlier read.

    For :memory: databases, a persistent connection is maintained since
    in-memory databases are connection-scoped in SQLite.
    """

    def __init__(
        self, db_path: str, timeout: float = DEFAULT_DB_TIMEOUT_SECONDS
    ) -> None:
        super().__init__(db_path, _SCHEMA, timeout)

    async def upsert_endpoint(
        self,
        method: str,
        path: str,
        normalized_path: str,
        metadata: str | None = None,
    ) -> int:
        """Create or refresh the endpoint for (method, normalized_path)."""
        now = time.time()
        async with self.async_transaction() as db:
            async with db.execute(
                _UPSERT_ENDPOINT, (method, path, normalized_path, now, now, metadata)
            ) as cursor:
                row = await cursor.fetchone()
        assert row is not None
        return int(row[0])

    async def find_fingerprint(
        self, endpoint_id: int, fingerprint_hash: str, status_code: int
    ) -> Fingerprint | None:
        """Look up a fingerprint by its full key."""
        async with self.async_connection() as db:
            async with db.execute(
                _SELECT_FINGERPRINT_BY_KEY, (endpoint_id, fingerprint_hash, status_code)
            ) as cursor:
                row = await cursor.fetchone()
        return _fingerprint_from_row(row) if row else None

    async def create_fingerprint(
        self,
        endpoint_id: int,
        fingerprint_hash: str,
        status_code: int,
        structure_signature: str,
    ) -> tuple[int, bool]:
        """Create a fingerprint unless the key already exists."""
        now = time.time()
        key = (endpoint_id, fingerprint_hash, status_code)
        async with self.async_transaction() as db:
            async with db.execute(
                _INSERT_FINGERPRINT, (*key, structure_signature, now, now)
            ) as cursor:
                row = await cursor.fetchone()
            if row is not None:
                return int(row[0]), True
            async with db.execute(_SELECT_FINGERPRINT_ID_BY_KEY, key) as cursor:
                row = await cursor.fetchone()
        assert row is not None
        return int(row[0]), False

    async def increment_fingerprint_occurrence(self, fingerprint_id: int) -> None:
        """Increment occurrence_count and refresh last_seen."""
        async with self.async_transaction() as db:
            cursor = await db.execute(
                _INCREMENT_OCCURRENCE, (time.time(), fingerprint_id)
            )
            if cursor.rowcount == 0:
                raise UnknownFingerprintError(fingerprint_id)

    async def get_sample_count(self, fingerprint_id: int) -> int:
        """Return the number of samples retained for a fingerprint."""
        async with self.async_connection() as db:
            async with db.execute(_SELECT_SAMPLE_COUNT, (fingerprint_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise UnknownFingerprintError(fingerprint_id)
        return int(row[0])

    async def create_sample(
        self,
        fingerprint_id: int,
        payload: SamplePayload,
        max_samples: int,
        captured_at: float | None = None,
    ) -> int | None:
        """Insert a sample if the fingerprint is below max_samples."""
        captured_at = captured_at if captured_at is not None else time.time()
        async with self.async_transaction() as db:
            cursor = await db.execute(
                _RESERVE_SAMPLE_SLOT, (fingerprint_id, max_samples)
            )
            if cursor.rowcount == 0:
                async with db.execute(
                    _SELECT_SAMPLE_COUNT, (fingerprint_id,)
                ) as check:
                    if await check.fetchone() is None:
                        raise UnknownFingerprintError(fingerprint_id)
                return None
            cursor = await db.execute(
                _INSERT_SAMPLE, _sample_to_row(fingerprint_id, payload, captured_at)
            )
            sample_id = cursor.lastrowid
        return sample_id

    async def delete_oldest_sample(self, fingerprint_id: int) -> bool:
        """Delete the oldest sample of a fingerprint and decrement its count."""
        async with self.async_transaction() as db:
            cursor = await db.execute(_DELETE_OLDEST_SAMPLE, (fingerprint_id,))
            if cursor.rowcount == 0:
                return False
            await db.execute(_DECREMENT_SAMPLE_COUNT, (fingerprint_id,))
        return True

    # --- Query side ---

    async def get_endpoint(self, method: str, normalized_path: str) -> Endpoint | None:
        """Return the endpoint for (method, normalized_path), if any."""
        async with self.async_connection() as db:
            async with db.execute(
                _SELECT_ENDPOINT, (method, normalized_path)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return Endpoint(
            id=row[0],
            method=row[1],
            path=row[2],
            normalized_path=row[3],
            first_seen=row[4],
            last_seen=row[5],
            request_count=row[6],
            metadata=row[7],
        )

    async def get_fingerprint(self, fingerprint_id: int) -> Fingerprint | None:
        """Return a fingerprint by id, if any."""
        async with self.async_connection() as db:
            async with db.execute(
                _SELECT_FINGERPRINT_BY_ID, (fingerprint_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return _fingerprint_from_row(row) if row else None

    async def list_fingerprints(self, endpoint_id: int) -> list[Fingerprint]:
        """Return all fingerprints of an endpoint, oldest first."""
        async with self.async_connection() as db:
            async with db.execute(
                _SELECT_FINGERPRINTS_BY_ENDPOINT, (endpoint_id,)
            ) as cursor:
                return [_fingerprint_from_row(row) async for row in cursor]

    async def list_samples(self, fingerprint_id: int) -> list[Sample]:
        """Return the samples of a fingerprint, oldest first."""
        async with self.async_connection() as db:
            async with db.execute(_SELECT_SAMPLES, (fingerprint_id,)) as cursor:
                return [_sample_from_row(row) async for row in cursor]

    async def stats(self) -> CorpusStats:
        """Return aggregate counts over the corpus."""
        async with self.async_connection() as db:
            async with db.execute(_SELECT_STATS) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return CorpusStats()
        return CorpusStats(
            total_endpoints=row[0],
            total_fingerprints=row[1],
            total_samples=row[2],
            total_requests=row[3],
        )
