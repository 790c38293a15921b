"""Metadata — the correlation envelope attached to every message.

Fields:

* ``event_id`` - unique id of the event, assigned at publish time.
  Unpublished messages carry none.
* ``adapter_event_id`` - id assigned by the transport adapter; may differ from
  ``event_id`` where a transport keeps its own ids.
* ``created_at`` - UTC timestamp of when the metadata was created.
* ``published_at`` - UTC timestamp of the publish, set with ``event_id``.
* ``correlation_id`` - shared by every message of one workflow. Given this id
  every event that happened in a given action can be retrieved.
* ``causation_id`` - ``event_id`` of the message that caused this one. The
  first event of a workflow has none; the others can be ordered by it.
* ``topic`` / ``service`` / ``schema_spec`` - stamped by the producer at
  publish time.
* ``user`` - optional identity propagated for audit.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, model_validator

from .config import get_config
from .correlation import generate_correlation_id
from .exceptions import UnknownMetadataFieldError
from .schema_spec import SchemaSpec

if TYPE_CHECKING:
    from .config import PubSubConfig

# UserInfo field -> flattened attribute key
USER_ENCODABLE_KEYS: dict[str, str] = {
    "user_id": "user_id",
    "account_id": "user_account_id",
    "bank_account_id": "user_bank_account_id",
    "firebase_uid": "user_firebase_uid",
    "user_email": "user_email",
}

_SCALAR_FIELDS = (
    "event_id",
    "adapter_event_id",
    "correlation_id",
    "causation_id",
    "topic",
    "service",
)
_DATE_FIELDS = ("created_at", "published_at")

_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting datetimes unchanged.

    A trailing ``Z`` is accepted and sub-second precision is normalised to
    microseconds (extra digits are truncated, missing digits padded).
    """
    if isinstance(value, datetime):
        return value
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(
        lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1
    )
    return datetime.fromisoformat(text)


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class UserInfo(BaseModel):
    """Identity of the user on whose behalf a message was created."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str | None = None
    account_id: str | None = None
    bank_account_id: str | None = None
    firebase_uid: str | None = None
    user_email: str | None = None


class Metadata(BaseModel):
    """Immutable correlation metadata of a message.

    Build it with ``Metadata.new()`` or ``Metadata.follow()``; application
    code should rarely need to touch metadata directly.

    Metadata is either unpublished (no ``event_id``, no ``published_at``) or
    published (both set); anything in between is rejected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: str | None = None
    adapter_event_id: str | None = None
    created_at: datetime | None = None
    published_at: datetime | None = None
    correlation_id: str | None = None
    causation_id: str | None = None
    topic: str | None = None
    service: str | None = None
    schema_spec: SchemaSpec | None = None
    user: UserInfo | None = None

    @model_validator(mode="after")
    def _check_publish_phase(self) -> Metadata:
        if (self.event_id is None) != (self.published_at is None):
            raise ValueError("event_id and published_at must be set together")
        return self

    @classmethod
    def new(
        cls,
        overrides: Mapping[str, Any] | None = None,
        *,
        config: PubSubConfig | None = None,
    ) -> Metadata:
        """Create metadata with defaults applied.

        Precedence, lowest first: library defaults (fresh ``correlation_id``,
        ``created_at`` now, no ``causation_id``), the configured metadata
        hook, then *overrides*. Unknown keys raise
        ``UnknownMetadataFieldError``.
        """
        params: dict[str, Any] = {
            "correlation_id": generate_correlation_id(),
            "created_at": utc_now(),
            "causation_id": None,
        }
        hook = (config or get_config()).metadata_hook
        if hook is not None:
            params.update(cls._check_fields(hook()))
        if overrides:
            params.update(cls._check_fields(overrides))
        return cls(**params)

    def follow(self) -> Metadata:
        """Derive the metadata of a message caused by this one.

        Only the correlation is carried over; fields unique to the previous
        message (topic, service, schema, ids) are not copied.
        """
        return type(self)(
            created_at=utc_now(),
            correlation_id=self.correlation_id,
            causation_id=self.event_id,
        )

    def put(self, key: str, value: Any) -> Metadata:
        """Return a copy with *key* set to *value*."""
        self._check_fields({key: value})
        params = self._as_params()
        params[key] = value
        return type(self)(**params)

    @property
    def is_published(self) -> bool:
        return self.event_id is not None and self.published_at is not None

    # ── Encodable projection ─────────────────────────────────────

    def to_encodable(self) -> dict[str, str | None]:
        """Flatten into a single-level map of strings.

        Most pub/sub systems do not support nested attributes; the schema spec
        becomes ``schema_type``/``schema_encoder`` and the user is flattened
        into ``user_*`` keys.
        """
        encodable: dict[str, str | None] = {
            name: getattr(self, name) for name in _SCALAR_FIELDS
        }
        for name in _DATE_FIELDS:
            encodable[name] = _format_timestamp(getattr(self, name))
        if self.schema_spec is not None:
            encodable["schema_type"] = self.schema_spec.type.value
            encoder_path = self.schema_spec.encoder_path
            if encoder_path is not None:
                encodable["schema_encoder"] = encoder_path
        if self.user is not None:
            for field_name, key in USER_ENCODABLE_KEYS.items():
                encodable[key] = getattr(self.user, field_name)
        return encodable

    @classmethod
    def from_encodable(cls, encodable: Mapping[str, Any]) -> Metadata:
        """Rebuild metadata from ``to_encodable()`` output.

        Some adapters parse dates themselves, so date fields may arrive as
        ``datetime`` or ISO strings. Unrecognised keys are ignored.
        """
        params: dict[str, Any] = {
            name: encodable[name] for name in _SCALAR_FIELDS if name in encodable
        }
        for name in _DATE_FIELDS:
            value = encodable.get(name)
            if value is not None:
                params[name] = parse_timestamp(value)

        schema_type = encodable.get("schema_type")
        if schema_type:
            params["schema_spec"] = SchemaSpec.from_encodable(
                schema_type, encodable.get("schema_encoder")
            )

        user_values = {
            field_name: encodable[key]
            for field_name, key in USER_ENCODABLE_KEYS.items()
            if encodable.get(key) is not None
        }
        if user_values:
            params["user"] = UserInfo(**user_values)

        return cls(**params)

    # ── Helpers ──────────────────────────────────────────────────

    def _as_params(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in type(self).model_fields}

    @classmethod
    def _check_fields(cls, params: Mapping[str, Any]) -> Mapping[str, Any]:
        unknown = [str(key) for key in params if key not in cls.model_fields]
        if unknown:
            raise UnknownMetadataFieldError(unknown)
        return params
