"""Message — business data paired with correlation metadata.

Messages are packages of data transmitted between contexts. They typically
represent business events that other contexts react to, often by producing
messages of their own. ``data`` carries the business information; ``metadata``
records how the message came to be.

Message workflows
-----------------

The first message of a workflow is created with ``Message.new``::

    account_opened = Message.new(data={"account_id": "123", "first_name": "Bob"})
    await publish("account-opened", account_opened)

A context reacting to it follows the previous message, which correlates the
two events::

    rep_assigned = (
        account_opened.follow(include=["account_id", "first_name"])
        .put("rep_name", "Tony")
    )
    await publish("rep-assigned", rep_assigned)

Every message in the chain shares the ``correlation_id`` of the first one, and
each message's ``causation_id`` is the ``event_id`` of the message it
followed, so a whole workflow can be fetched and ordered after the fact.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from .exceptions import MissingSchemaSpecError
from .metadata import Metadata, utc_now
from .result import Result

if TYPE_CHECKING:
    from .config import JsonCodec, PubSubConfig


@dataclass(frozen=True)
class EncodedMessage:
    """A message ready for a transport: payload bytes and flat metadata."""

    data: bytes
    metadata: dict[str, str | None]


def _normalize_key(key: Any) -> str:
    if isinstance(key, Enum):
        return str(key.value)
    return str(key)


def _as_mapping(data: Any) -> Mapping[Any, Any]:
    if isinstance(data, Mapping):
        return data
    if hasattr(data, "model_dump"):
        return dict(data.model_dump())
    if data is None:
        return {}
    raise TypeError(
        f"Cannot copy fields from data of type {type(data).__name__}"
    )


def _copy_data(
    data: Any,
    include: Iterable[Any] | None,
    exclude: Iterable[Any] | None,
) -> dict[str, Any]:
    if exclude is None and include is None:
        return {}
    source = {_normalize_key(k): v for k, v in _as_mapping(data).items()}
    if exclude is not None:
        dropped = {_normalize_key(k) for k in exclude}
        return {k: v for k, v in source.items() if k not in dropped}
    if include is not None:
        wanted = [_normalize_key(k) for k in include]
        return {k: source[k] for k in wanted if k in source}
    return {}


class Message(BaseModel):
    """Immutable message; every update returns a new instance.

    Create messages with ``Message.new()`` or ``Message.follow()`` rather than
    the constructor.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    data: Any
    metadata: Metadata

    @classmethod
    def new(
        cls,
        data: Any = None,
        metadata: Metadata | Mapping[str, Any] | None = None,
        *,
        config: PubSubConfig | None = None,
    ) -> Message:
        """Create a new message.

        Args:
            data: Data to seed the message with; defaults to ``{}``.
            metadata: A ``Metadata`` instance, or overrides merged into
                freshly generated metadata.
            config: Configuration supplying the metadata hook.
        """
        if not isinstance(metadata, Metadata):
            metadata = Metadata.new(metadata, config=config)
        return cls(data={} if data is None else data, metadata=metadata)

    def follow(
        self,
        *,
        include: Iterable[Any] | None = None,
        exclude: Iterable[Any] | None = None,
    ) -> Message:
        """Create a message caused by this one.

        Args:
            include: Data fields to copy into the new message.
            exclude: Data fields to leave out; every other field is copied.
                Takes precedence over *include*.

        Without either option the new message starts with empty data.
        """
        return type(self)(
            data=_copy_data(self.data, include, exclude),
            metadata=self.metadata.follow(),
        )

    # ── Data updates ─────────────────────────────────────────────

    def put(self, key: Any, value: Any) -> Message:
        """Return a copy with ``data[key] = value``."""
        data = dict(_as_mapping(self.data))
        data[key] = value
        return self.update_data(data)

    def merge(self, values: Mapping[Any, Any]) -> Message:
        """Return a copy with *values* merged over the existing data."""
        return self.update_data({**_as_mapping(self.data), **values})

    def update_data(self, new_data: Any) -> Message:
        """Return a copy with replaced data.

        *new_data* may be the new value or a callable receiving the current
        data and returning the new value.
        """
        if callable(new_data) and not isinstance(new_data, type):
            updater: Callable[[Any], Any] = new_data
            new_data = updater(self.data)
        return type(self)(data=new_data, metadata=self.metadata)

    # ── Metadata updates ─────────────────────────────────────────

    def put_meta(self, key: str, value: Any) -> Message:
        """Return a copy with one metadata field replaced.

        Reserved for producers and adapters decorating derived information.
        """
        return type(self)(data=self.data, metadata=self.metadata.put(key, value))

    def mark_published(
        self,
        event_id: str,
        *,
        published_at: datetime | None = None,
        adapter_event_id: str | None = None,
    ) -> Message:
        """Return a copy carrying publish-time metadata.

        ``event_id`` and ``published_at`` are always set together.
        """
        params = self.metadata._as_params()
        params.update(
            event_id=event_id,
            adapter_event_id=adapter_event_id or event_id,
            published_at=published_at or utc_now(),
        )
        return type(self)(data=self.data, metadata=Metadata(**params))

    @property
    def is_published(self) -> bool:
        return self.metadata.is_published

    # ── Encoding ─────────────────────────────────────────────────

    def encode(self, codec: JsonCodec | None = None) -> Result[EncodedMessage]:
        """Encode data and metadata into a transport-ready form.

        Fails with ``MissingSchemaSpecError`` until a producer has attached a
        schema spec.
        """
        spec = self.metadata.schema_spec
        if spec is None:
            return Result.failure(MissingSchemaSpecError())
        encoded = spec.encode(self.data, codec)
        if not encoded.is_ok:
            return Result.failure(encoded.error)
        return Result.success(
            EncodedMessage(
                data=encoded.value,  # type: ignore[arg-type]
                metadata=self.metadata.to_encodable(),
            )
        )

    @classmethod
    def decode(
        cls,
        data: bytes,
        attributes: Metadata | Mapping[str, Any],
        codec: JsonCodec | None = None,
    ) -> Result[Message]:
        """Rebuild a message from payload bytes and its (encodable) metadata."""
        metadata = (
            attributes
            if isinstance(attributes, Metadata)
            else Metadata.from_encodable(attributes)
        )
        if metadata.schema_spec is None:
            return Result.failure(MissingSchemaSpecError())
        decoded = metadata.schema_spec.decode(data, codec)
        if not decoded.is_ok:
            return Result.failure(decoded.error)
        return Result.success(cls(data=decoded.value, metadata=metadata))
