"""Telemetry — fire-and-forget events around publishing.

Events (``measurements`` / ``metadata``):

* ``("pubsub", "publish", "start")`` - ``{system_time, monotonic_time}`` /
  ``{messages, topic}``; once per publish call.
* ``("pubsub", "publish", "end")`` - ``{duration}`` in milliseconds /
  ``{messages, topic}`` with the published messages; only on success.
* ``("pubsub", "publish", "retry")`` - ``{}`` /
  ``{topic, messages, total_delay}``; every failed attempt after the first.
* ``("pubsub", "publish", "failure")`` - ``{}`` /
  ``{topic, messages, error}``; once when publishing gives up.

Handlers are attached to a ``TelemetryRegistry``::

    def report(event, measurements, metadata, config):
        ...

    get_telemetry_registry().attach("report", [PUBLISH_END], report)

A handler that raises is logged and never fails the publish it observes.
"""

from __future__ import annotations

import json
import logging
import time
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Protocol

from .exceptions import TelemetryHandlerExistsError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .message import Message

logger = logging.getLogger("cqrs_ddd.pubsub.telemetry")

EventName = tuple[str, ...]

PUBLISH_START: EventName = ("pubsub", "publish", "start")
PUBLISH_END: EventName = ("pubsub", "publish", "end")
PUBLISH_RETRY: EventName = ("pubsub", "publish", "retry")
PUBLISH_FAILURE: EventName = ("pubsub", "publish", "failure")

PUBLISH_EVENTS: list[EventName] = [
    PUBLISH_START,
    PUBLISH_END,
    PUBLISH_RETRY,
    PUBLISH_FAILURE,
]


class TelemetryHandler(Protocol):
    """Callable invoked synchronously for each matching event."""

    def __call__(
        self,
        event: EventName,
        measurements: dict[str, Any],
        metadata: dict[str, Any],
        config: Any,
    ) -> None: ...


class HandlerRegistration:
    """An attached handler and the events it listens to."""

    def __init__(
        self,
        handler_id: str,
        event_names: list[EventName],
        handler: TelemetryHandler,
        config: Any = None,
    ) -> None:
        self.handler_id = handler_id
        self.event_names = event_names
        self.handler = handler
        self.config = config

    def matches(self, event: EventName) -> bool:
        return event in self.event_names


class TelemetryRegistry:
    """Registry of telemetry handlers keyed by handler id."""

    def __init__(self) -> None:
        self._registrations: dict[str, HandlerRegistration] = {}

    def attach(
        self,
        handler_id: str,
        event_names: Iterable[EventName],
        handler: TelemetryHandler,
        config: Any = None,
    ) -> HandlerRegistration:
        """Attach *handler* to *event_names* under a unique *handler_id*."""
        if handler_id in self._registrations:
            raise TelemetryHandlerExistsError(handler_id)
        registration = HandlerRegistration(
            handler_id,
            [tuple(name) for name in event_names],
            handler,
            config,
        )
        self._registrations[handler_id] = registration
        return registration

    def detach(self, handler_id: str) -> bool:
        """Detach a handler. Returns ``False`` if it was not attached."""
        return self._registrations.pop(handler_id, None) is not None

    def handlers_for(self, event: EventName) -> list[HandlerRegistration]:
        return [r for r in self._registrations.values() if r.matches(event)]

    def execute(
        self,
        event: EventName,
        measurements: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        """Invoke every handler attached to *event*.

        Handler errors are logged instead of propagated.
        """
        for registration in self.handlers_for(event):
            try:
                registration.handler(
                    event, measurements, metadata, registration.config
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Telemetry handler %r failed on %s: %s",
                    registration.handler_id,
                    ".".join(event),
                    exc,
                    exc_info=exc,
                )

    def clear(self) -> None:
        """Detach all handlers."""
        self._registrations.clear()


_telemetry_registry_var: ContextVar[TelemetryRegistry | None] = ContextVar(
    "telemetry_registry", default=None
)


def get_telemetry_registry() -> TelemetryRegistry:
    """Get the telemetry registry for the current context.

    Creates a fresh ``TelemetryRegistry`` on first access within each context.
    """
    registry = _telemetry_registry_var.get()
    if registry is None:
        registry = TelemetryRegistry()
        _telemetry_registry_var.set(registry)
    return registry


def set_telemetry_registry(registry: TelemetryRegistry) -> None:
    """Set a custom telemetry registry in the current context."""
    _telemetry_registry_var.set(registry)


# ── Emitters ─────────────────────────────────────────────────────


def _as_list(messages: Message | list[Message]) -> list[Message]:
    return messages if isinstance(messages, list) else [messages]


def _require_list(messages: Any) -> list[Message]:
    if not isinstance(messages, list):
        raise TypeError(
            f"messages must be a list of messages, got {type(messages).__name__}"
        )
    return messages


def publish_start(
    topic: str,
    messages: list[Message],
    registry: TelemetryRegistry | None = None,
) -> dict[str, int]:
    """Emit the start event and return its measurements.

    *messages* is always a list, even for a single message. The returned
    measurements are handed to ``publish_end`` to compute the duration.
    """
    messages = _require_list(messages)
    measurements = {
        "system_time": time.time_ns(),
        "monotonic_time": time.monotonic_ns(),
    }
    (registry or get_telemetry_registry()).execute(
        PUBLISH_START, dict(measurements), {"messages": messages, "topic": topic}
    )
    return measurements


def publish_end(
    start: dict[str, int],
    topic: str,
    published_messages: list[Message],
    registry: TelemetryRegistry | None = None,
) -> None:
    """Emit the end event with the duration since *start* in milliseconds."""
    published_messages = _require_list(published_messages)
    duration = (time.monotonic_ns() - start["monotonic_time"]) // 1_000_000
    (registry or get_telemetry_registry()).execute(
        PUBLISH_END,
        {"duration": duration},
        {"messages": published_messages, "topic": topic},
    )


def publish_failure(
    topic: str,
    messages: Message | list[Message],
    error: Any,
    registry: TelemetryRegistry | None = None,
) -> None:
    """Emit the failure event for messages an adapter could not publish."""
    (registry or get_telemetry_registry()).execute(
        PUBLISH_FAILURE,
        {},
        {"topic": topic, "messages": _as_list(messages), "error": error},
    )


def publish_retry(
    topic: str,
    messages: Message | list[Message],
    total_delay: int,
    registry: TelemetryRegistry | None = None,
) -> None:
    """Emit the retry event with the delay accumulated so far (ms)."""
    (registry or get_telemetry_registry()).execute(
        PUBLISH_RETRY,
        {},
        {"topic": topic, "messages": _as_list(messages), "total_delay": total_delay},
    )


# ── Logging handler ──────────────────────────────────────────────


class LoggingTelemetryHandler:
    """Emits one JSON log entry per telemetry event."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logging.getLogger("cqrs_ddd.pubsub.events")

    def __call__(
        self,
        event: EventName,
        measurements: dict[str, Any],
        metadata: dict[str, Any],
        config: Any,
    ) -> None:
        messages = metadata.get("messages") or []
        entry: dict[str, Any] = {
            "event": ".".join(event),
            "topic": metadata.get("topic"),
            "count": len(messages),
            "correlation_ids": sorted(
                {m.metadata.correlation_id for m in messages if m.metadata.correlation_id}
            ),
        }
        if "duration" in measurements:
            entry["duration_ms"] = measurements["duration"]
        if "total_delay" in metadata:
            entry["total_delay_ms"] = metadata["total_delay"]
        if "error" in metadata:
            entry["error"] = repr(metadata["error"])
        level = logging.WARNING if event == PUBLISH_FAILURE else logging.INFO
        self._log.log(level, json.dumps(entry))


def attach_default_logger(
    registry: TelemetryRegistry | None = None,
    *,
    handler_id: str = "cqrs-ddd-pubsub-default-logger",
    log: logging.Logger | None = None,
) -> HandlerRegistration:
    """Log every publish event through ``LoggingTelemetryHandler``."""
    return (registry or get_telemetry_registry()).attach(
        handler_id, PUBLISH_EVENTS, LoggingTelemetryHandler(log)
    )
