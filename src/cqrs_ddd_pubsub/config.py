"""PubSubConfig — configure once at startup, pass everywhere."""

from __future__ import annotations

import json
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .ports.adapter import IPubSubAdapter


@runtime_checkable
class JsonCodec(Protocol):
    """Protocol for the JSON library used by ``SchemaSpec.json()`` payloads."""

    def dumps(self, obj: Any) -> bytes:
        """Serialize *obj* to JSON bytes."""
        ...

    def loads(self, data: bytes | str) -> Any:
        """Parse JSON bytes into Python values."""
        ...


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class StdlibJsonCodec:
    """Default codec built on the standard library ``json`` module."""

    def dumps(self, obj: Any) -> bytes:
        return json.dumps(obj, default=_json_serializer).encode("utf-8")

    def loads(self, data: bytes | str) -> Any:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        return json.loads(data)


@dataclass(frozen=True)
class PubSubConfig:
    """Process-wide defaults for producers, consumers and messages.

    Attributes:
        adapter: Default transport adapter for producers and consumers.
        service: Service name stamped on every published message.
        json_codec: Codec used by JSON schema specs and metadata flattening.
        metadata_hook: Zero-argument callable returning metadata defaults
            (e.g. the authenticated user); applied below caller overrides.
    """

    adapter: IPubSubAdapter | None = None
    service: str | None = None
    json_codec: JsonCodec = field(default_factory=StdlibJsonCodec)
    metadata_hook: Callable[[], Mapping[str, Any]] | None = None


_config_var: ContextVar[PubSubConfig | None] = ContextVar(
    "pubsub_config", default=None
)


def get_config() -> PubSubConfig:
    """Get the configuration for the current context.

    Falls back to a default ``PubSubConfig`` (no adapter, stdlib JSON) when
    nothing has been configured.
    """
    config = _config_var.get()
    if config is None:
        config = PubSubConfig()
        _config_var.set(config)
    return config


def set_config(config: PubSubConfig) -> None:
    """Install *config* as the configuration for the current context."""
    _config_var.set(config)


def configure(**changes: Any) -> PubSubConfig:
    """Update selected fields of the current configuration and install it.

    Usage::

        configure(adapter=GoogleAdapter(client), service="accounts")
    """
    config = replace(get_config(), **changes)
    set_config(config)
    return config
