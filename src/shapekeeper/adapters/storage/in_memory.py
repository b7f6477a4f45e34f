"""In-memory storage adapter for endpoints, fingerprints and samples."""

import time
from dataclasses import replace

from shapekeeper.core.exceptions import UnknownFingerprintError
from shapekeeper.core.models import (
    CorpusStats,
    Endpoint,
    Fingerprint,
    Sample,
    SamplePayload,
)


class InMemoryShapeRepository:
    """In-memory implementation of ShapeRepositoryPort and CorpusQueryPort.

    Stores records in dicts. Suitable for testing and short-lived
    processes where persistence is not required.

    No method awaits between reading and writing state, so every operation
    is atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._endpoints: dict[int, Endpoint] = {}
        self._endpoint_keys: dict[tuple[str, str], int] = {}
        self._fingerprints: dict[int, Fingerprint] = {}
        self._fingerprint_keys: dict[tuple[int, str, int], int] = {}
        self._samples: dict[int, Sample] = {}
        self._next_endpoint_id = 1
        self._next_fingerprint_id = 1
        self._next_sample_id = 1

    def _require_fingerprint(self, fingerprint_id: int) -> Fingerprint:
        fingerprint = self._fingerprints.get(fingerprint_id)
        if fingerprint is None:
            raise UnknownFingerprintError(fingerprint_id)
        return fingerprint

    async def upsert_endpoint(
        self,
        method: str,
        path: str,
        normalized_path: str,
        metadata: str | None = None,
    ) -> int:
        """Create or refresh the endpoint for (method, normalized_path)."""
        now = time.time()
        endpoint_id = self._endpoint_keys.get((method, normalized_path))
        if endpoint_id is None:
            endpoint_id = self._next_endpoint_id
            self._next_endpoint_id += 1
            self._endpoint_keys[(method, normalized_path)] = endpoint_id
            self._endpoints[endpoint_id] = Endpoint(
                id=endpoint_id,
                method=method,
                path=path,
                normalized_path=normalized_path,
                first_seen=now,
                last_seen=now,
                request_count=1,
                metadata=metadata,
            )
            return endpoint_id

        endpoint = self._endpoints[endpoint_id]
        self._endpoints[endpoint_id] = replace(
            endpoint,
            path=path,
            last_seen=now,
            request_count=endpoint.request_count + 1,
            metadata=metadata if metadata is not None else endpoint.metadata,
        )
        return endpoint_id

    async def find_fingerprint(
        self, endpoint_id: int, fingerprint_hash: str, status_code: int
    ) -> Fingerprint | None:
        """Look up a fingerprint by its full key."""
        fingerprint_id = self._fingerprint_keys.get(
            (endpoint_id, fingerprint_hash, status_code)
        )
        if fingerprint_id is None:
            return None
        return self._fingerprints[fingerprint_id]

    async def create_fingerprint(
        self,
        endpoint_id: int,
        fingerprint_hash: str,
        status_code: int,
        structure_signature: str,
    ) -> tuple[int, bool]:
        """Create a fingerprint unless the key already exists."""
        key = (endpoint_id, fingerprint_hash, status_code)
        existing = self._fingerprint_keys.get(key)
        if existing is not None:
            return existing, False

        now = time.time()
        fingerprint_id = self._next_fingerprint_id
        self._next_fingerprint_id += 1
        self._fingerprint_keys[key] = fingerprint_id
        self._fingerprints[fingerprint_id] = Fingerprint(
            id=fingerprint_id,
            endpoint_id=endpoint_id,
            fingerprint_hash=fingerprint_hash,
            status_code=status_code,
            structure_signature=structure_signature,
            first_seen=now,
            last_seen=now,
            occurrence_count=1,
            sample_count=0,
        )
        return fingerprint_id, True

    async def increment_fingerprint_occurrence(self, fingerprint_id: int) -> None:
        """Increment occurrence_count and refresh last_seen."""
        fingerprint = self._require_fingerprint(fingerprint_id)
        self._fingerprints[fingerprint_id] = replace(
            fingerprint,
            occurrence_count=fingerprint.occurrence_count + 1,
            last_seen=time.time(),
        )

    async def get_sample_count(self, fingerprint_id: int) -> int:
        """Return the number of samples retained for a fingerprint."""
        return self._require_fingerprint(fingerprint_id).sample_count

    async def create_sample(
        self,
        fingerprint_id: int,
        payload: SamplePayload,
        max_samples: int,
        captured_at: float | None = None,
    ) -> int | None:
        """Insert a sample if the fingerprint is below max_samples."""
        fingerprint = self._require_fingerprint(fingerprint_id)
        if fingerprint.sample_count >= max_samples:
            return None

        sample_id = self._next_sample_id
        self._next_sample_id += 1
        self._samples[sample_id] = Sample(
            id=sample_id,
            fingerprint_id=fingerprint_id,
            captured_at=captured_at if captured_at is not None else time.time(),
            request_headers=dict(payload.request_headers),
            request_body=payload.request_body,
            request_query=dict(payload.request_query),
            response_headers=dict(payload.response_headers),
            response_body=payload.response_body,
            response_time_ms=payload.response_time_ms,
        )
        self._fingerprints[fingerprint_id] = replace(
            fingerprint, sample_count=fingerprint.sample_count + 1
        )
        return sample_id

    async def delete_oldest_sample(self, fingerprint_id: int) -> bool:
        """Delete the oldest sample of a fingerprint and decrement its count."""
        fingerprint = self._require_fingerprint(fingerprint_id)
        owned = self._owned_samples(fingerprint_id)
        if not owned:
            return False
        oldest = min(owned, key=lambda s: (s.captured_at, s.id))
        del self._samples[oldest.id]
        self._fingerprints[fingerprint_id] = replace(
            fingerprint, sample_count=fingerprint.sample_count - 1
        )
        return True

    def _owned_samples(self, fingerprint_id: int) -> list[Sample]:
        return [s for s in self._samples.values() if s.fingerprint_id == fingerprint_id]

    # --- Query side ---

    async def get_endpoint(self, method: str, normalized_path: str) -> Endpoint | None:
        """Return the endpoint for (method, normalized_path), if any."""
        endpoint_id = self._endpoint_keys.get((method, normalized_path))
        return self._endpoints.get(endpoint_id) if endpoint_id is not None else None

    async def get_fingerprint(self, fingerprint_id: int) -> Fingerprint | None:
        """Return a fingerprint by id, if any."""
        return self._fingerprints.get(fingerprint_id)

    async def list_fingerprints(self, endpoint_id: int) -> list[Fingerprint]:
        """Return all fingerprints of an endpoint, oldest first."""
        return [f for f in self._fingerprints.values() if f.endpoint_id == endpoint_id]

    async def list_samples(self, fingerprint_id: int) -> list[Sample]:
        """Return the samples of a fingerprint, oldest first."""
        owned = self._owned_samples(fingerprint_id)
        return sorted(owned, key=lambda s: (s.captured_at, s.id))

    async def stats(self) -> CorpusStats:
        """Return aggregate counts over the corpus."""
        return CorpusStats(
            total_endpoints=len(self._endpoints),
            total_fingerprints=len(self._fingerprints),
            total_samples=len(self._samples),
            total_requests=sum(f.occurrence_count for f in self._fingerprints.values()),
        )
