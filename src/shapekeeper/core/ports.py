"""Port interfaces for storage adapters.

These protocols define the contracts that storage adapters must implement.
The core domain depends only on these interfaces, not concrete implementations.
"""

from typing import Protocol, runtime_checkable

from shapekeeper.core.models import (
    CorpusStats,
    Endpoint,
    Fingerprint,
    Sample,
    SamplePayload,
)


@runtime_checkable
class ShapeRepositoryPort(Protocol):
    """Port for the write side used by the retention coordinator.

    Adapters must make two operations safe under concurrent callers:
    ``create_fingerprint`` is first-writer-wins on the
    (endpoint, hash, status code) key, and ``create_sample`` is an atomic
    bounded increment that inserts nothing once the cap is reached.

    Examples: InMemoryShapeRepository, SQLiteShapeRepository.
    """

    async def upsert_endpoint(
        self,
        method: str,
        path: str,
        normalized_path: str,
        metadata: str | None = None,
    ) -> int:
        """Create or refresh the endpoint for (method, normalized_path).

        Returns:
            Stable endpoint id.
        """
        ...

    async def find_fingerprint(
        self, endpoint_id: int, fingerprint_hash: str, status_code: int
    ) -> Fingerprint | None:
        """Look up a fingerprint by its full key."""
        ...

    async def create_fingerprint(
        self,
        endpoint_id: int,
        fingerprint_hash: str,
        status_code: int,
        structure_signature: str,
    ) -> tuple[int, bool]:
        """Create a fingerprint with occurrence_count=1 and sample_count=0.

        Returns:
            Tuple of (fingerprint id, created). ``created`` is False when a
            row with the same key already existed; that row is left untouched.
        """
        ...

    async def increment_fingerprint_occurrence(self, fingerprint_id: int) -> None:
        """Increment occurrence_count and refresh last_seen."""
        ...

    async def get_sample_count(self, fingerprint_id: int) -> int:
        """Return the number of samples retained for a fingerprint."""
        ...

    async def create_sample(
        self,
        fingerprint_id: int,
        payload: SamplePayload,
        max_samples: int,
        captured_at: float | None = None,
    ) -> int | None:
        """Insert a sample if the fingerprint holds fewer than max_samples.

        The sample_count check, the counter increment and the insert happen
        atomically.

        Returns:
            New sample id, or None when the cap was already reached.
        """
        ...

    async def delete_oldest_sample(self, fingerprint_id: int) -> bool:
        """Delete the oldest sample and decrement sample_count.

        Returns:
            True if a sample was deleted.
        """
        ...


@runtime_checkable
class CorpusQueryPort(Protocol):
    """Port for reading back the stored corpus."""

    async def get_endpoint(self, method: str, normalized_path: str) -> Endpoint | None:
        """Return the endpoint for (method, normalized_path), if any."""
        ...

    async def get_fingerprint(self, fingerprint_id: int) -> Fingerprint | None:
        """Return a fingerprint by id, if any."""
        ...

    async def list_fingerprints(self, endpoint_id: int) -> list[Fingerprint]:
        """Return all fingerprints of an endpoint, oldest first."""
        ...

    async def list_samples(self, fingerprint_id: int) -> list[Sample]:
        """Return the samples of a fingerprint, oldest first."""
        ...

    async def stats(self) -> CorpusStats:
        """Return aggregate counts over the corpus."""
        ...
