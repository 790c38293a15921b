from __future__ import annotations

import json
import logging
from typing import Any
from unittest.mock import MagicMock

import pytest

from cqrs_ddd_pubsub.exceptions import TelemetryHandlerExistsError
from cqrs_ddd_pubsub.message import Message
from cqrs_ddd_pubsub.telemetry import (
    PUBLISH_END,
    PUBLISH_FAILURE,
    PUBLISH_RETRY,
    PUBLISH_START,
    TelemetryRegistry,
    attach_default_logger,
    get_telemetry_registry,
    publish_end,
    publish_failure,
    publish_retry,
    publish_start,
    set_telemetry_registry,
)


def test_attach_and_execute_passes_config() -> None:
    registry = TelemetryRegistry()
    handler = MagicMock()
    registry.attach("h", [PUBLISH_START], handler, config={"k": "v"})

    registry.execute(PUBLISH_START, {"a": 1}, {"b": 2})
    registry.execute(PUBLISH_END, {}, {})

    handler.assert_called_once_with(PUBLISH_START, {"a": 1}, {"b": 2}, {"k": "v"})


def test_duplicate_handler_id_is_rejected() -> None:
    registry = TelemetryRegistry()
    registry.attach("h", [PUBLISH_START], MagicMock())

    with pytest.raises(TelemetryHandlerExistsError):
        registry.attach("h", [PUBLISH_END], MagicMock())


def test_detach() -> None:
    registry = TelemetryRegistry()
    handler = MagicMock()
    registry.attach("h", [PUBLISH_START], handler)

    assert registry.detach("h") is True
    assert registry.detach("h") is False
    registry.execute(PUBLISH_START, {}, {})
    handler.assert_not_called()


def test_failing_handler_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    registry = TelemetryRegistry()
    healthy = MagicMock()
    registry.attach("broken", [PUBLISH_START], MagicMock(side_effect=RuntimeError("boom")))
    registry.attach("healthy", [PUBLISH_START], healthy)

    with caplog.at_level(logging.WARNING, logger="cqrs_ddd.pubsub.telemetry"):
        registry.execute(PUBLISH_START, {}, {})

    healthy.assert_called_once()
    assert "broken" in caplog.text


def test_default_registry_is_context_local() -> None:
    custom = TelemetryRegistry()
    set_telemetry_registry(custom)

    assert get_telemetry_registry() is custom


def test_publish_start_and_end(
    telemetry: tuple[TelemetryRegistry, Any],
) -> None:
    registry, recorder = telemetry
    messages = [Message.new()]

    start = publish_start("t", messages, registry)
    publish_end(start, "t", messages, registry)

    assert set(start) == {"system_time", "monotonic_time"}
    (start_measurements, start_meta), = recorder.named("start")
    assert start_measurements == start
    assert start_meta == {"messages": messages, "topic": "t"}
    (end_measurements, end_meta), = recorder.named("end")
    assert end_measurements["duration"] >= 0
    assert end_meta == {"messages": messages, "topic": "t"}


def test_start_and_end_require_lists() -> None:
    with pytest.raises(TypeError):
        publish_start("t", Message.new())  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        publish_end({"monotonic_time": 0}, "t", Message.new())  # type: ignore[arg-type]


def test_failure_and_retry_wrap_single_messages(
    telemetry: tuple[TelemetryRegistry, Any],
) -> None:
    registry, recorder = telemetry
    message = Message.new()
    error = RuntimeError("down")

    publish_failure("t", message, error, registry)
    publish_retry("t", message, 30, registry)

    assert recorder.named("failure") == [
        ({}, {"topic": "t", "messages": [message], "error": error})
    ]
    assert recorder.named("retry") == [
        ({}, {"topic": "t", "messages": [message], "total_delay": 30})
    ]


def test_default_logger_writes_json_lines(caplog: pytest.LogCaptureFixture) -> None:
    registry = TelemetryRegistry()
    attach_default_logger(registry)
    message = Message.new(metadata={"correlation_id": "corr-1"})

    with caplog.at_level(logging.INFO, logger="cqrs_ddd.pubsub.events"):
        registry.execute(
            PUBLISH_RETRY, {}, {"topic": "t", "messages": [message], "total_delay": 10}
        )
        registry.execute(PUBLISH_FAILURE, {}, {"topic": "t", "messages": [message], "error": "x"})

    retry_record, failure_record = caplog.records
    assert json.loads(retry_record.getMessage()) == {
        "event": "pubsub.publish.retry",
        "topic": "t",
        "count": 1,
        "correlation_ids": ["corr-1"],
        "total_delay_ms": 10,
    }
    assert failure_record.levelno == logging.WARNING
    assert json.loads(failure_record.getMessage())["error"] == "'x'"
