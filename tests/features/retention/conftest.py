"""BDD step definitions for retention features."""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from shapekeeper.adapters.storage.in_memory import InMemoryShapeRepository
from shapekeeper.core.fingerprint import fingerprint
from shapekeeper.core.models import (
    EndpointDescriptor,
    Observation,
    ProcessResult,
    SamplePayload,
)
from shapekeeper.core.paths import normalize_path
from shapekeeper.core.retention import RetentionCoordinator, RetentionStrategy


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


@dataclass
class RetentionScenarioContext:
    """Shared state between steps in a retention scenario."""

    repository: InMemoryShapeRepository = field(
        default_factory=InMemoryShapeRepository
    )
    coordinator: RetentionCoordinator | None = None
    results: list[ProcessResult] = field(default_factory=list)
    clock: float = 1_700_000_000.0

    def observe(self, method: str, path: str, status: int, body: Any) -> None:
        assert self.coordinator is not None, "retention cap step missing"
        self.clock += 1.0
        observation = Observation(
            endpoint=EndpointDescriptor(
                method=method, path=path, normalized_path=normalize_path(path)
            ),
            fingerprint=fingerprint(body),
            status_code=status,
            payload=SamplePayload(response_body=body),
            timestamp=self.clock,
        )
        self.results.append(run_async(self.coordinator.process(observation)))


@pytest.fixture
def ctx() -> RetentionScenarioContext:
    """Fresh scenario context for each test."""
    return RetentionScenarioContext()


# === Background Steps ===


@given("an in-memory shape repository")
def step_repository(ctx: RetentionScenarioContext) -> None:
    ctx.repository = InMemoryShapeRepository()


@given(parsers.parse('a retention cap of {cap:d} samples with strategy "{strategy}"'))
def step_coordinator(ctx: RetentionScenarioContext, cap: int, strategy: str) -> None:
    ctx.coordinator = RetentionCoordinator(
        ctx.repository,
        max_samples_per_fingerprint=cap,
        strategy=RetentionStrategy(strategy),
    )


# === Observation Steps ===


@when(
    parsers.parse('a {status:d} response {body} is observed for {method} "{path}"')
)
def step_observe(
    ctx: RetentionScenarioContext, status: int, body: str, method: str, path: str
) -> None:
    ctx.observe(method, path, status, json.loads(body))


@when(parsers.parse("{n:d} responses of the same shape are observed"))
def step_observe_many(ctx: RetentionScenarioContext, n: int) -> None:
    for i in range(n):
        ctx.observe("GET", f"/api/items/{i}", 200, {"number": i})


# === Assertions ===


@then("the last observation should be a new shape")
def step_is_new(ctx: RetentionScenarioContext) -> None:
    assert ctx.results[-1].is_new_shape is True


@then("the last observation should not be a new shape")
def step_is_not_new(ctx: RetentionScenarioContext) -> None:
    assert ctx.results[-1].is_new_shape is False


@then("the last observation should have retained a sample")
def step_retained(ctx: RetentionScenarioContext) -> None:
    assert ctx.results[-1].sample_retained is True


@then(
    parsers.parse(
        "the corpus should hold {n:d} fingerprint with {occurrences:d} "
        "occurrences and {samples:d} samples"
    )
)
def step_single_fingerprint(
    ctx: RetentionScenarioContext, n: int, occurrences: int, samples: int
) -> None:
    stats = run_async(ctx.repository.stats())
    assert stats.total_fingerprints == n
    fingerprint_id = ctx.results[-1].fingerprint_id
    stored = run_async(ctx.repository.get_fingerprint(fingerprint_id))
    assert stored.occurrence_count == occurrences
    assert stored.sample_count == samples
    assert stats.total_samples == samples


@then(parsers.parse("the corpus should hold {n:d} fingerprints"))
def step_fingerprint_count(ctx: RetentionScenarioContext, n: int) -> None:
    assert run_async(ctx.repository.stats()).total_fingerprints == n


@then(parsers.parse("the retained samples should be numbers {numbers}"))
def step_retained_numbers(ctx: RetentionScenarioContext, numbers: str) -> None:
    expected = [int(n) for n in numbers.split(",")]
    samples = run_async(ctx.repository.list_samples(ctx.results[-1].fingerprint_id))
    assert [s.response_body["number"] for s in samples] == expected
