"""Bounded-retention deduplication of observed response shapes.

Each shape key (endpoint, structural hash, status code) moves through:

    UNSEEN --observe--> SEEN(count=1) --observe--> ... --> SEEN(count=cap)

Every observation increments the occurrence counter. Samples are retained
until the per-fingerprint cap is reached; after that the configured
strategy decides whether the new sample is dropped or replaces the oldest.
Shapes never return to UNSEEN.
"""

from enum import Enum

from shapekeeper.core.models import Observation, ProcessResult
from shapekeeper.core.ports import ShapeRepositoryPort

DEFAULT_MAX_SAMPLES_PER_FINGERPRINT = 50


class RetentionStrategy(str, Enum):
    """What to do with a sample once its fingerprint is at the cap."""

    DROP_NEW = "drop-new"
    EVICT_OLDEST = "evict-oldest"


class RetentionCoordinator:
    """Decides, per observation, whether to register a shape and keep a sample.

    The coordinator holds no state of its own; all state lives in the
    injected repository. It does not log: callers receive a ProcessResult
    and decide what to report.

    Repository errors propagate unchanged and abort the observation. Endpoint
    upserts and occurrence increments may already have been applied when
    that happens; sample insertion is not idempotent, so callers must not
    blindly retry.
    """

    def __init__(
        self,
        repository: ShapeRepositoryPort,
        max_samples_per_fingerprint: int = DEFAULT_MAX_SAMPLES_PER_FINGERPRINT,
        strategy: RetentionStrategy = RetentionStrategy.DROP_NEW,
    ) -> None:
        """Initialize the coordinator.

        Args:
            repository: Storage adapter implementing ShapeRepositoryPort.
            max_samples_per_fingerprint: Cap on retained samples per shape.
            strategy: Behaviour once the cap is reached.

        Raises:
            ValueError: If max_samples_per_fingerprint is less than 1.
        """
        if max_samples_per_fingerprint < 1:
            raise ValueError(
                "max_samples_per_fingerprint must be at least 1, "
                f"got {max_samples_per_fingerprint}"
            )
        self.repository = repository
        self.max_samples_per_fingerprint = max_samples_per_fingerprint
        self.strategy = RetentionStrategy(strategy)

    async def process(self, observation: Observation) -> ProcessResult:
        """Record one observation.

        Args:
            observation: Fingerprinted, redacted exchange.

        Returns:
            ProcessResult with the fingerprint id and the two decisions.
        """
        endpoint = observation.endpoint
        endpoint_id = await self.repository.upsert_endpoint(
            endpoint.method, endpoint.path, endpoint.normalized_path
        )

        existing = await self.repository.find_fingerprint(
            endpoint_id, observation.fingerprint.hash, observation.status_code
        )
        if existing is not None:
            retained = await self._observe_known(existing.id, observation)
            return ProcessResult(
                fingerprint_id=existing.id, is_new_shape=False, sample_retained=retained
            )

        fingerprint_id, created = await self.repository.create_fingerprint(
            endpoint_id,
            observation.fingerprint.hash,
            observation.status_code,
            observation.fingerprint.signature,
        )
        if not created:
            # Another writer registered the same key between lookup and insert.
            retained = await self._observe_known(fingerprint_id, observation)
            return ProcessResult(
                fingerprint_id=fingerprint_id,
                is_new_shape=False,
                sample_retained=retained,
            )

        sample_id = await self._insert_sample(fingerprint_id, observation)
        return ProcessResult(
            fingerprint_id=fingerprint_id,
            is_new_shape=True,
            sample_retained=sample_id is not None,
        )

    async def _observe_known(
        self, fingerprint_id: int, observation: Observation
    ) -> bool:
        await self.repository.increment_fingerprint_occurrence(fingerprint_id)

        sample_count = await self.repository.get_sample_count(fingerprint_id)
        if sample_count < self.max_samples_per_fingerprint:
            return await self._insert_sample(fingerprint_id, observation) is not None

        if self.strategy is RetentionStrategy.EVICT_OLDEST:
            await self.repository.delete_oldest_sample(fingerprint_id)
            return await self._insert_sample(fingerprint_id, observation) is not None

        return False

    async def _insert_sample(
        self, fingerprint_id: int, observation: Observation
    ) -> int | None:
        # The count read above is advisory; the bounded insert is authoritative.
        return await self.repository.create_sample(
            fingerprint_id,
            observation.payload,
            self.max_samples_per_fingerprint,
            captured_at=observation.timestamp,
        )
