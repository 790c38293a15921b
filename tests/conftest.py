"""Shared fixtures: fresh context-local state and instant backoff sleeps."""

from __future__ import annotations

from typing import Any

import pytest

from cqrs_ddd_pubsub import retry
from cqrs_ddd_pubsub.adapters import TestingAdapter
from cqrs_ddd_pubsub.config import PubSubConfig, set_config
from cqrs_ddd_pubsub.correlation import set_context_vars
from cqrs_ddd_pubsub.producer import ProducerRegistry, set_producer_registry
from cqrs_ddd_pubsub.telemetry import TelemetryRegistry, set_telemetry_registry


@pytest.fixture(autouse=True)
def _fresh_context() -> None:
    set_config(PubSubConfig())
    set_telemetry_registry(TelemetryRegistry())
    set_producer_registry(ProducerRegistry())
    set_context_vars(correlation_id=None, causation_id=None, user=None)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record backoff sleeps (in seconds) instead of waiting."""
    recorded: list[float] = []

    async def _fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    monkeypatch.setattr(retry, "_sleep", _fake_sleep)
    return recorded


@pytest.fixture
def adapter() -> TestingAdapter:
    return TestingAdapter()


class TelemetryRecorder:
    """Telemetry handler collecting ``(event, measurements, metadata)``."""

    def __init__(self) -> None:
        self.events: list[tuple[tuple[str, ...], dict[str, Any], dict[str, Any]]] = []

    def __call__(
        self,
        event: tuple[str, ...],
        measurements: dict[str, Any],
        metadata: dict[str, Any],
        config: Any,
    ) -> None:
        self.events.append((event, measurements, metadata))

    def named(self, suffix: str) -> list[tuple[dict[str, Any], dict[str, Any]]]:
        return [(m, md) for e, m, md in self.events if e[-1] == suffix]


@pytest.fixture
def telemetry() -> tuple[TelemetryRegistry, TelemetryRecorder]:
    from cqrs_ddd_pubsub.telemetry import PUBLISH_EVENTS

    registry = TelemetryRegistry()
    recorder = TelemetryRecorder()
    registry.attach("recorder", PUBLISH_EVENTS, recorder)
    return registry, recorder
