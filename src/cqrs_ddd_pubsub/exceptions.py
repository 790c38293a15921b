"""Exceptions for cqrs-ddd-pubsub."""

from __future__ import annotations

from typing import Any


class PubSubError(Exception):
    """Root exception for the pub/sub client layer."""


class ConfigurationError(PubSubError):
    """Raised when a producer or consumer cannot be configured."""


class UnknownMetadataFieldError(PubSubError, KeyError):
    """Raised when metadata is built or updated with unrecognised field names."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = sorted(fields)
        super().__init__(f"Unknown metadata field(s): {', '.join(self.fields)}")

    def __str__(self) -> str:
        return str(self.args[0])


# ── Schema Exceptions ───────────────────────────────────────────────


class SchemaError(PubSubError):
    """Base class for payload encoding/decoding failures."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class PayloadEncodingError(SchemaError):
    """Raised (or returned) when a payload cannot be encoded for its schema."""


class PayloadDecodingError(SchemaError):
    """Raised (or returned) when bytes cannot be decoded for their schema."""


class MissingSchemaSpecError(PubSubError):
    """Returned when a message without a schema spec is encoded.

    Schema specs are attached by producers; an unclaimed message has none.
    """

    def __init__(self) -> None:
        super().__init__("Message metadata carries no schema spec")


# ── Producer / Adapter Exceptions ──────────────────────────────────


class ProducerNotFoundError(PubSubError, LookupError):
    """Raised when a producer name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No producer registered under name {name!r}")

    def __str__(self) -> str:
        return str(self.args[0])


class AdapterError(PubSubError):
    """Base class for errors produced by transport adapters."""


class PublishRequestError(AdapterError):
    """A transport rejected a publish request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TelemetryHandlerExistsError(PubSubError):
    """Raised when attaching a telemetry handler with an id already in use."""

    def __init__(self, handler_id: str) -> None:
        self.handler_id = handler_id
        super().__init__(f"Telemetry handler {handler_id!r} is already attached")


class ResultError(PubSubError):
    """Raised by ``Result.unwrap()`` when the carried error is not an exception."""

    def __init__(self, error: Any) -> None:
        self.error = error
        super().__init__(f"Result failed with {error!r}")
