"""Producer — publish messages to a topic with retry and telemetry.

Configure a producer once at startup and publish through it by name::

    registry = get_producer_registry()
    registry.register(
        ProducerConfig.new(
            name="account-opened",
            topic="accounts-opened",
            schema_spec=SchemaSpec.json(),
            max_retry_duration=500,
        )
    )

    result = await publish("account-opened", Message.new(data={"id": "123"}))
    if result.is_ok:
        published = result.value

A publish either returns the published message(s) or the adapter's last error
untouched. Messages that cannot be encoded fail before the adapter is called.
Every adapter failure is retried with an exponential backoff (0, 10, 20, 40 ...
ms) until the next delay would push the accumulated delay past
``max_retry_duration``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from contextvars import ContextVar
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import PubSubConfig, get_config
from .exceptions import ConfigurationError, ProducerNotFoundError
from .message import Message
from .ports.adapter import IPubSubAdapter
from .result import Result
from .retry import ExponentialBackoff
from .schema_spec import SchemaSpec
from .telemetry import (
    TelemetryRegistry,
    get_telemetry_registry,
    publish_end,
    publish_failure,
    publish_retry,
    publish_start,
)

logger = logging.getLogger("cqrs_ddd.pubsub.producer")

class ProducerConfig(BaseModel):
    """Immutable configuration of a producer.

    Attributes:
        name: Name the producer is registered and resolved by.
        topic: Topic the producer publishes to.
        schema_spec: How the producer's messages are encoded.
        adapter: Transport adapter; defaults to the configured adapter.
        service: Service stamped on messages; defaults to the configured one.
        max_retry_duration: Retry budget in milliseconds (0 disables retries).
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    name: str
    topic: str
    schema_spec: SchemaSpec
    adapter: IPubSubAdapter
    service: str | None = None
    max_retry_duration: int = Field(default=0, ge=0)

    @classmethod
    def new(cls, *, config: PubSubConfig | None = None, **params: Any) -> ProducerConfig:
        """Create a config, filling ``adapter`` and ``service`` from *config*."""
        defaults = config or get_config()
        if params.get("adapter") is None:
            params["adapter"] = defaults.adapter
        if params.get("service") is None:
            params["service"] = defaults.service
        params.setdefault("max_retry_duration", 0)
        if params["adapter"] is None:
            raise ConfigurationError(
                f"Producer {params.get('name')!r} has no adapter and none is configured"
            )
        return cls(**params)


class Producer:
    """Publishes messages through the configured adapter.

    A producer holds no mutable state; concurrent ``publish`` calls are
    independent of each other.
    """

    def __init__(
        self,
        config: ProducerConfig,
        *,
        telemetry: TelemetryRegistry | None = None,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._config = config
        self._telemetry = telemetry
        self._backoff = backoff or ExponentialBackoff()

    @property
    def config(self) -> ProducerConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def topic(self) -> str:
        return self._config.topic

    async def publish(self, messages: Message | Sequence[Message]) -> Result[Any]:
        """Publish a single message or a list of messages.

        Returns the published message (or list) on success and the last
        adapter error on failure.
        """
        single = isinstance(messages, Message)
        batch = self._as_batch(messages)
        registry = self._telemetry or get_telemetry_registry()
        topic = self._config.topic

        start = publish_start(topic, batch, registry)
        stamped = [self._stamp(message) for message in batch]
        invalid = self._check_encodable(stamped)
        if invalid is not None:
            publish_failure(topic, stamped, invalid.error, registry)
            return invalid
        payload: Message | list[Message] = stamped[0] if single else stamped

        result = await self._publish_with_retry(payload, stamped, registry)
        if result.is_ok:
            published = [result.value] if single else list(result.value)
            publish_end(start, topic, published, registry)
        return result

    # ── Retry engine ─────────────────────────────────────────────

    async def _publish_with_retry(
        self,
        payload: Message | list[Message],
        messages: list[Message],
        registry: TelemetryRegistry,
    ) -> Result[Any]:
        topic = self._config.topic
        budget = self._config.max_retry_duration
        last_result: Result[Any] | None = None
        accumulated_delay = 0

        for delay in self._backoff.delays():
            if last_result is not None and accumulated_delay + delay > budget:
                logger.warning(
                    "Giving up publishing %d message(s) to %s after %d ms of retries",
                    len(messages),
                    topic,
                    accumulated_delay,
                )
                publish_failure(topic, messages, last_result.error, registry)
                return last_result

            await self._backoff.wait(delay)
            result = await self._attempt(payload)
            if result.is_ok:
                return result

            logger.debug(
                "Publish attempt to %s failed after %d ms delay: %r",
                topic,
                delay,
                result.error,
            )
            if self._backoff.is_retry(delay):
                publish_retry(topic, messages, accumulated_delay, registry)
            last_result = result
            accumulated_delay += delay

        raise AssertionError("unreachable: backoff schedule is infinite")

    async def _attempt(self, payload: Message | list[Message]) -> Result[Any]:
        try:
            return await self._config.adapter.publish(self._config.topic, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Adapter %s raised while publishing to %s",
                type(self._config.adapter).__name__,
                self._config.topic,
                exc_info=exc,
            )
            return Result.failure(exc)

    # ── Helpers ──────────────────────────────────────────────────

    def _check_encodable(self, messages: list[Message]) -> Result[Any] | None:
        """Return the first encoding failure, if any message cannot be encoded."""
        for message in messages:
            encoded = message.encode()
            if not encoded.is_ok:
                logger.warning(
                    "Message for %s cannot be encoded and was not published: %s",
                    self._config.topic,
                    encoded.error,
                )
                return Result.failure(encoded.error)
        return None

    def _stamp(self, message: Message) -> Message:
        return (
            message.put_meta("schema_spec", self._config.schema_spec)
            .put_meta("service", self._config.service)
            .put_meta("topic", self._config.topic)
        )

    @staticmethod
    def _as_batch(messages: Message | Sequence[Message]) -> list[Message]:
        if isinstance(messages, Message):
            return [messages]
        if isinstance(messages, (str, bytes, Mapping)) or not isinstance(
            messages, Sequence
        ):
            raise TypeError(
                f"Expected a Message or a list of messages, got {type(messages).__name__}"
            )
        batch = list(messages)
        if not batch:
            raise ValueError("Cannot publish an empty list of messages")
        for item in batch:
            if not isinstance(item, Message):
                raise TypeError(f"Expected Message, got {type(item).__name__}")
        return batch


class ProducerRegistry:
    """Registry of producers resolved by name at publish time.

    Usage::

        registry = ProducerRegistry()
        registry.register(ProducerConfig.new(name="orders", topic="orders",
                                             schema_spec=SchemaSpec.json()))
        await registry.get("orders").publish(message)
    """

    def __init__(self) -> None:
        self._producers: dict[str, Producer] = {}

    def register(
        self,
        config: ProducerConfig,
        *,
        telemetry: TelemetryRegistry | None = None,
        backoff: ExponentialBackoff | None = None,
    ) -> Producer:
        """Create and register a producer for *config*."""
        if config.name in self._producers:
            raise ConfigurationError(f"Producer {config.name!r} is already registered")
        producer = Producer(config, telemetry=telemetry, backoff=backoff)
        self._producers[config.name] = producer
        logger.debug("Registered producer %s for topic %s", config.name, config.topic)
        return producer

    def get(self, name: str) -> Producer:
        """Look up a producer by name."""
        try:
            return self._producers[name]
        except KeyError:
            raise ProducerNotFoundError(name) from None

    def unregister(self, name: str) -> bool:
        """Remove a producer. Returns ``False`` if it was not registered."""
        return self._producers.pop(name, None) is not None

    def names(self) -> list[str]:
        return list(self._producers)

    def clear(self) -> None:
        self._producers.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._producers


_producer_registry_var: ContextVar[ProducerRegistry | None] = ContextVar(
    "producer_registry", default=None
)


def get_producer_registry() -> ProducerRegistry:
    """Get the producer registry for the current context."""
    registry = _producer_registry_var.get()
    if registry is None:
        registry = ProducerRegistry()
        _producer_registry_var.set(registry)
    return registry


def set_producer_registry(registry: ProducerRegistry) -> None:
    """Set a custom producer registry in the current context."""
    _producer_registry_var.set(registry)


def resolve_producer(
    producer: Producer | ProducerConfig | str,
    *,
    registry: ProducerRegistry | None = None,
    telemetry: TelemetryRegistry | None = None,
) -> Producer:
    """Turn a producer handle (instance, config or name) into a ``Producer``."""
    if isinstance(producer, Producer):
        return producer
    if isinstance(producer, ProducerConfig):
        return Producer(producer, telemetry=telemetry)
    return (registry or get_producer_registry()).get(producer)


async def publish(
    producer: Producer | ProducerConfig | str,
    messages: Message | Sequence[Message],
    *,
    registry: ProducerRegistry | None = None,
    telemetry: TelemetryRegistry | None = None,
) -> Result[Any]:
    """Publish *messages* through the producer identified by *producer*."""
    resolved = resolve_producer(producer, registry=registry, telemetry=telemetry)
    return await resolved.publish(messages)
