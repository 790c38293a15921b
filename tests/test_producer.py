from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from cqrs_ddd_pubsub.adapters import TestingAdapter
from cqrs_ddd_pubsub.adapters.google import GoogleMockAdapter
from cqrs_ddd_pubsub.config import configure
from cqrs_ddd_pubsub.exceptions import (
    ConfigurationError,
    PayloadEncodingError,
    ProducerNotFoundError,
)
from cqrs_ddd_pubsub.message import Message
from cqrs_ddd_pubsub.producer import (
    Producer,
    ProducerConfig,
    ProducerRegistry,
    get_producer_registry,
    publish,
)
from cqrs_ddd_pubsub.result import Result
from cqrs_ddd_pubsub.schema_spec import SchemaSpec
from cqrs_ddd_pubsub.telemetry import TelemetryRegistry


class FlakyAdapter(TestingAdapter):
    """Fails the first ``failures`` publish attempts, then succeeds."""

    def __init__(self, failures: int, error: Any = "unavailable") -> None:
        super().__init__()
        self.failures = failures
        self.error = error
        self.calls = 0

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        self.calls += 1
        if self.calls <= self.failures:
            return Result.failure(self.error)
        return await super().publish(topic, message)


def _config(adapter: Any, **overrides: Any) -> ProducerConfig:
    params: dict[str, Any] = {
        "name": "account-opened",
        "topic": "accounts-opened",
        "schema_spec": SchemaSpec.json(),
        "adapter": adapter,
        "service": "accounts",
    }
    params.update(overrides)
    return ProducerConfig.new(**params)


# ── ProducerConfig ───────────────────────────────────────────────


def test_config_takes_adapter_and_service_from_configuration() -> None:
    adapter = TestingAdapter()
    configure(adapter=adapter, service="accounts")

    config = ProducerConfig.new(name="p", topic="t", schema_spec=SchemaSpec.json())

    assert config.adapter is adapter
    assert config.service == "accounts"
    assert config.max_retry_duration == 0


def test_config_without_adapter_fails() -> None:
    with pytest.raises(ConfigurationError):
        ProducerConfig.new(name="p", topic="t", schema_spec=SchemaSpec.json())


def test_config_validates_fields() -> None:
    with pytest.raises(ValidationError):
        ProducerConfig.new(topic="t", schema_spec=SchemaSpec.json(), adapter=TestingAdapter())
    with pytest.raises(ValidationError):
        _config(TestingAdapter(), max_retry_duration=-1)
    with pytest.raises(ValidationError):
        _config(object())


# ── Publishing ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_publish_single_message_stamps_metadata() -> None:
    adapter = TestingAdapter()
    producer = Producer(_config(adapter))
    message = Message.new(data={"account_id": "123"})

    result = await producer.publish(message)

    published = result.unwrap()
    assert isinstance(published, Message)
    assert published.is_published
    assert published.metadata.event_id
    assert published.metadata.adapter_event_id
    assert published.metadata.topic == "accounts-opened"
    assert published.metadata.service == "accounts"
    assert published.metadata.schema_spec == SchemaSpec.json()
    assert published.metadata.correlation_id == message.metadata.correlation_id
    assert not message.is_published
    adapter.assert_published(1, topic="accounts-opened")


@pytest.mark.asyncio
async def test_publish_list_returns_list() -> None:
    producer = Producer(_config(TestingAdapter()))
    messages = [Message.new(data={"n": n}) for n in range(3)]

    published = (await producer.publish(messages)).unwrap()

    assert [m.data for m in published] == [{"n": 0}, {"n": 1}, {"n": 2}]
    assert all(m.is_published for m in published)


@pytest.mark.asyncio
async def test_publish_rejects_empty_and_foreign_input() -> None:
    producer = Producer(_config(TestingAdapter()))

    with pytest.raises(ValueError):
        await producer.publish([])
    with pytest.raises(TypeError):
        await producer.publish([Message.new(), {"not": "a message"}])  # type: ignore[list-item]
    with pytest.raises(TypeError):
        await producer.publish({"not": "a message"})  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_single_message_through_sequential_mock_emits_one_end_event(
    telemetry: tuple[TelemetryRegistry, Any],
) -> None:
    registry, recorder = telemetry
    producer = Producer(_config(GoogleMockAdapter()), telemetry=registry)

    await producer.publish(Message.new(data={"account_id": "123"}))

    (_, end_meta), = recorder.named("end")
    assert len(end_meta["messages"]) == 1
    assert end_meta["messages"][0].metadata.event_id is not None


# ── Retries ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_zero_budget_makes_exactly_one_attempt(
    telemetry: tuple[TelemetryRegistry, Any],
    sleeps: list[float],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=100)
    message = Message.new()

    result = await Producer(_config(adapter), telemetry=registry).publish(message)

    assert adapter.calls == 1
    assert result.error == "unavailable"
    assert sleeps == []
    assert recorder.named("retry") == []
    (_, failure_meta), = recorder.named("failure")
    assert failure_meta["error"] == "unavailable"
    assert recorder.named("end") == []


@pytest.mark.asyncio
async def test_retries_until_success_within_budget(
    telemetry: tuple[TelemetryRegistry, Any],
    sleeps: list[float],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=1)
    producer = Producer(_config(adapter, max_retry_duration=15), telemetry=registry)

    result = await producer.publish(Message.new())

    assert result.is_ok
    assert adapter.calls == 2
    assert sleeps == [0.01]
    assert len(recorder.named("start")) == 1
    assert recorder.named("retry") == []
    assert recorder.named("failure") == []
    assert len(recorder.named("end")) == 1


@pytest.mark.asyncio
async def test_budget_boundary_stops_before_exceeding(
    telemetry: tuple[TelemetryRegistry, Any],
    sleeps: list[float],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=100)
    producer = Producer(_config(adapter, max_retry_duration=15), telemetry=registry)

    result = await producer.publish(Message.new())

    # 0 + 10 <= 15 allows a second attempt; 10 + 20 > 15 stops the third
    assert adapter.calls == 2
    assert result.is_error
    assert sleeps == [0.01]
    (_, retry_meta), = recorder.named("retry")
    assert retry_meta["total_delay"] == 0
    assert len(recorder.named("failure")) == 1


@pytest.mark.asyncio
async def test_each_delayed_failure_emits_a_retry_event(
    telemetry: tuple[TelemetryRegistry, Any],
    sleeps: list[float],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=100)
    producer = Producer(_config(adapter, max_retry_duration=35), telemetry=registry)

    await producer.publish(Message.new())

    assert adapter.calls == 3
    assert sleeps == [0.01, 0.02]
    assert [meta["total_delay"] for _, meta in recorder.named("retry")] == [0, 10]
    assert len(recorder.named("start")) == 1
    assert len(recorder.named("failure")) == 1


@pytest.mark.asyncio
async def test_failure_returns_last_error_untouched() -> None:
    errors = iter(["first", "second"])
    adapter = MagicMock(spec=TestingAdapter)
    adapter.publish = AsyncMock(side_effect=lambda *_: Result.failure(next(errors)))
    producer = Producer(_config(adapter, max_retry_duration=10))
    message = Message.new()

    result = await producer.publish(message)

    assert result.error == "second"
    assert adapter.publish.await_count == 2


@pytest.mark.asyncio
async def test_adapter_exceptions_become_failures_and_are_retried() -> None:
    adapter = MagicMock(spec=TestingAdapter)
    boom = ConnectionError("reset")
    adapter.publish = AsyncMock(side_effect=[boom, Result.success("published")])
    producer = Producer(_config(adapter, max_retry_duration=10))

    result = await producer.publish(Message.new())

    assert result.value == "published"
    assert adapter.publish.await_count == 2


@pytest.mark.asyncio
async def test_unencodable_message_fails_without_calling_adapter(
    telemetry: tuple[TelemetryRegistry, Any],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=0)
    producer = Producer(_config(adapter, max_retry_duration=1000), telemetry=registry)

    result = await producer.publish([Message.new(data={"a": 1}), Message.new(data=object())])

    assert adapter.calls == 0
    assert isinstance(result.error, PayloadEncodingError)
    assert recorder.named("retry") == []
    (_, failure_meta), = recorder.named("failure")
    assert len(failure_meta["messages"]) == 2
    assert failure_meta["error"] is result.error


@pytest.mark.asyncio
async def test_adapter_errors_are_retried_whatever_their_type(
    telemetry: tuple[TelemetryRegistry, Any],
) -> None:
    registry, recorder = telemetry
    adapter = FlakyAdapter(failures=2, error=PayloadEncodingError("rejected by broker"))
    producer = Producer(_config(adapter, max_retry_duration=1000), telemetry=registry)

    result = await producer.publish(Message.new(data={"a": 1}))

    assert result.is_ok
    assert adapter.calls == 3
    assert len(recorder.named("failure")) == 0


# ── Registry and module-level publish ───────────────────────────


def test_registry_register_get_unregister() -> None:
    registry = ProducerRegistry()
    producer = registry.register(_config(TestingAdapter()))

    assert "account-opened" in registry
    assert registry.get("account-opened") is producer
    with pytest.raises(ConfigurationError):
        registry.register(_config(TestingAdapter()))
    assert registry.unregister("account-opened") is True
    assert registry.unregister("account-opened") is False
    with pytest.raises(ProducerNotFoundError):
        registry.get("account-opened")


@pytest.mark.asyncio
async def test_publish_by_name_uses_default_registry() -> None:
    adapter = TestingAdapter()
    get_producer_registry().register(_config(adapter))

    result = await publish("account-opened", Message.new(data={"a": 1}))

    assert result.is_ok
    adapter.assert_published(1)


@pytest.mark.asyncio
async def test_publish_accepts_config_or_producer() -> None:
    adapter = TestingAdapter()
    config = _config(adapter)

    await publish(config, Message.new())
    await publish(Producer(config), [Message.new(), Message.new()])

    adapter.assert_published(3)


@pytest.mark.asyncio
async def test_publish_unknown_name_raises() -> None:
    with pytest.raises(ProducerNotFoundError):
        await publish("missing", Message.new(), registry=ProducerRegistry())
