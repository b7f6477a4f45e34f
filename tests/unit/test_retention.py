"""Tests for the retention coordinator."""

import pytest

from shapekeeper.adapters.storage.in_memory import InMemoryShapeRepository
from shapekeeper.core.exceptions import RepositoryError
from shapekeeper.core.retention import RetentionCoordinator, RetentionStrategy

pytestmark = [pytest.mark.tier(1), pytest.mark.core]


class RacingRepository(InMemoryShapeRepository):
    """Repository where another writer registers every shape first.

    find_fingerprint always misses, so the coordinator reaches
    create_fingerprint for keys that already exist.
    """

    async def find_fingerprint(self, endpoint_id, fingerprint_hash, status_code):
        return None


class FailingRepository(InMemoryShapeRepository):
    """Repository whose sample inserts always fail."""

    async def create_sample(self, *args, **kwargs):
        raise RepositoryError("disk full")


class TestRetentionCoordinator:
    """Tests for RetentionCoordinator.process."""

    async def test_first_observation_registers_new_shape(
        self, memory_repository, make_observation
    ) -> None:
        """A never-seen shape is created with one retained sample."""
        coordinator = RetentionCoordinator(memory_repository)

        result = await coordinator.process(make_observation({"id": 1}))

        assert result.is_new_shape is True
        assert result.sample_retained is True
        stored = await memory_repository.get_fingerprint(result.fingerprint_id)
        assert stored.occurrence_count == 1
        assert stored.sample_count == 1

    async def test_repeat_shape_is_not_new(
        self, memory_repository, make_observation
    ) -> None:
        """A second observation with the same shape reuses the fingerprint."""
        coordinator = RetentionCoordinator(memory_repository)

        first = await coordinator.process(make_observation({"id": 1}))
        second = await coordinator.process(make_observation({"id": 2}))

        assert second.fingerprint_id == first.fingerprint_id
        assert second.is_new_shape is False
        assert second.sample_retained is True
        stored = await memory_repository.get_fingerprint(first.fingerprint_id)
        assert stored.occurrence_count == 2

    async def test_cap_bounds_retained_samples(
        self, memory_repository, make_observation
    ) -> None:
        """With M observations and cap N < M, exactly N samples are kept."""
        coordinator = RetentionCoordinator(
            memory_repository, max_samples_per_fingerprint=3
        )

        results = [
            await coordinator.process(make_observation({"id": i}, timestamp=i))
            for i in range(7)
        ]

        assert [r.sample_retained for r in results] == [True] * 3 + [False] * 4
        fingerprint_id = results[0].fingerprint_id
        stored = await memory_repository.get_fingerprint(fingerprint_id)
        assert stored.occurrence_count == 7
        assert stored.sample_count == 3
        samples = await memory_repository.list_samples(fingerprint_id)
        assert [s.response_body["id"] for s in samples] == [0, 1, 2]

    async def test_evict_oldest_keeps_newest_samples(
        self, memory_repository, make_observation
    ) -> None:
        """With evict-oldest, the newest N samples are kept."""
        coordinator = RetentionCoordinator(
            memory_repository,
            max_samples_per_fingerprint=2,
            strategy=RetentionStrategy.EVICT_OLDEST,
        )

        results = [
            await coordinator.process(make_observation({"id": i}, timestamp=i))
            for i in range(5)
        ]

        assert all(r.sample_retained for r in results)
        samples = await memory_repository.list_samples(results[0].fingerprint_id)
        assert [s.response_body["id"] for s in samples] == [3, 4]
        stored = await memory_repository.get_fingerprint(results[0].fingerprint_id)
        assert stored.sample_count == 2
        assert stored.occurrence_count == 5

    async def test_strategy_accepts_string_value(self, memory_repository) -> None:
        """Strategies may be given by their configuration value."""
        coordinator = RetentionCoordinator(memory_repository, strategy="evict-oldest")

        assert coordinator.strategy is RetentionStrategy.EVICT_OLDEST

    async def test_status_code_is_part_of_shape_key(
        self, memory_repository, make_observation
    ) -> None:
        """The same body under another status code is a new shape."""
        coordinator = RetentionCoordinator(memory_repository)

        ok = await coordinator.process(make_observation({"id": 1}, status_code=200))
        created = await coordinator.process(
            make_observation({"id": 1}, status_code=201)
        )

        assert created.is_new_shape is True
        assert created.fingerprint_id != ok.fingerprint_id

    async def test_endpoints_are_keyed_by_normalized_path(
        self, memory_repository, make_observation
    ) -> None:
        """Paths differing only by identifier share an endpoint and shape."""
        coordinator = RetentionCoordinator(memory_repository)

        first = await coordinator.process(
            make_observation({"id": 1}, path="/api/users/1")
        )
        second = await coordinator.process(
            make_observation({"id": 2}, path="/api/users/2")
        )

        assert second.fingerprint_id == first.fingerprint_id
        endpoint = await memory_repository.get_endpoint("GET", "/api/users/:id")
        assert endpoint.request_count == 2
        assert endpoint.path == "/api/users/2"

    async def test_lost_creation_race_counts_as_repeat(self, make_observation) -> None:
        """When another writer created the shape first, it is not new."""
        repository = RacingRepository()
        coordinator = RetentionCoordinator(repository)

        first = await coordinator.process(make_observation({"id": 1}))
        second = await coordinator.process(make_observation({"id": 2}))

        assert first.is_new_shape is True
        assert second.is_new_shape is False
        assert second.fingerprint_id == first.fingerprint_id
        stored = await repository.get_fingerprint(first.fingerprint_id)
        assert stored.occurrence_count == 2
        assert stored.sample_count == 2

    async def test_repository_errors_propagate(self, make_observation) -> None:
        """Storage failures abort the observation and reach the caller."""
        coordinator = RetentionCoordinator(FailingRepository())

        with pytest.raises(RepositoryError, match="disk full"):
            await coordinator.process(make_observation({"id": 1}))

    @pytest.mark.parametrize("cap", [0, -1])
    def test_rejects_cap_below_one(self, memory_repository, cap) -> None:
        """A cap below one is a configuration error."""
        with pytest.raises(ValueError, match="at least 1"):
            RetentionCoordinator(memory_repository, max_samples_per_fingerprint=cap)
