"""GoogleAdapter — ``IPubSubAdapter`` for Google Cloud Pub/Sub.

Docs: https://cloud.google.com/pubsub/docs

Cloud Pub/Sub calls message metadata *attributes*. Attributes are a flat map
of strings, so metadata is published in its encodable form with empty values
dropped; ``unpack`` recovers them (plus the transport-assigned id and publish
time) from the inbound message.

Usage::

    client = GooglePubSubClient("my-project", token_provider=fetch_token)
    configure(adapter=GoogleAdapter(client), service="accounts")
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ...config import PubSubConfig, get_config
from ...exceptions import PublishRequestError
from ...message import Message
from ...metadata import Metadata, parse_timestamp
from ...pipeline import PipelineMessage
from ...ports.adapter import IPubSubAdapter
from ...result import Result

if TYPE_CHECKING:
    from ...pipeline import Acknowledger, BatchMode
    from .client import GooglePubSubClient

logger = logging.getLogger("cqrs_ddd.pubsub.google")

# Attributes carried by an inbound Cloud Pub/Sub message.
ATTRIBUTE_KEYS: tuple[str, ...] = (
    "correlation_id",
    "causation_id",
    "created_at",
    "event_id",
    "topic",
    "service",
    "schema_type",
    "schema_encoder",
    "user_id",
    "user_account_id",
    "user_bank_account_id",
    "user_firebase_uid",
    "user_email",
)


def trim_none_values(attributes: Mapping[str, Any]) -> dict[str, Any]:
    """Drop empty attributes; Cloud Pub/Sub rejects null attribute values."""
    return {key: value for key, value in attributes.items() if value is not None}


def set_published_meta(message: Message, message_id: Any) -> Message:
    """Decorate *message* with the id Cloud Pub/Sub assigned to it."""
    return message.mark_published(str(message_id))


class GoogleAdapter(IPubSubAdapter):
    """Publishes through ``GooglePubSubClient`` and unpacks pulled messages."""

    def __init__(
        self,
        client: GooglePubSubClient | None = None,
        *,
        config: PubSubConfig | None = None,
    ) -> None:
        self._client = client
        self._config = config

    @property
    def client(self) -> GooglePubSubClient:
        if self._client is None:
            raise RuntimeError(f"{type(self).__name__} has no GooglePubSubClient")
        return self._client

    # ── Outbound ─────────────────────────────────────────────────

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        messages = message if isinstance(message, list) else [message]
        wire_messages = []
        for item in messages:
            encoded = self.to_wire(item)
            if not encoded.is_ok:
                return encoded
            wire_messages.append(encoded.value)

        response = await self.client.publish(topic, wire_messages)
        if not response.is_ok:
            return response

        message_ids = response.value or []
        if len(message_ids) != len(messages):
            logger.warning(
                "Publish to %s returned %d id(s) for %d message(s)",
                topic,
                len(message_ids),
                len(messages),
            )
            return Result.failure(
                PublishRequestError(
                    f"Publish to {topic!r} returned {len(message_ids)} message id(s) "
                    f"for {len(messages)} message(s)",
                    body=message_ids,
                )
            )
        published = [
            set_published_meta(item, message_id)
            for item, message_id in zip(messages, message_ids)
        ]
        logger.debug("Published %d message(s) to %s", len(published), topic)
        if isinstance(message, list):
            return Result.success(published)
        return Result.success(published[0])

    def to_wire(self, message: Message) -> Result[dict[str, Any]]:
        """Encode *message* into ``{"data": <base64>, "attributes": {...}}``."""
        encoded = message.encode(self._codec())
        if not encoded.is_ok:
            return Result.failure(encoded.error)
        return Result.success(
            {
                "data": base64.b64encode(encoded.value.data).decode("ascii"),
                "attributes": trim_none_values(encoded.value.metadata),
            }
        )

    # ── Inbound ──────────────────────────────────────────────────

    def unpack(self, pipeline_message: PipelineMessage) -> Message:
        metadata = self.unpack_metadata(pipeline_message)
        return Message.decode(pipeline_message.data, metadata, self._codec()).unwrap()

    def unpack_metadata(self, pipeline_message: PipelineMessage) -> Metadata:
        """Build metadata from ``{"messageId", "publishTime", "attributes"}``.

        Cloud Pub/Sub reports publish times with millisecond precision; they
        are normalised to microseconds like every other timestamp.
        """
        raw: Mapping[str, Any] = pipeline_message.metadata or {}
        params: dict[str, Any] = dict(raw.get("attributes") or {})

        message_id = raw.get("messageId")
        if message_id is not None:
            params["adapter_event_id"] = str(message_id)

        # A message id only identifies the event once it carries a publish time.
        publish_time = raw.get("publishTime")
        if publish_time is not None:
            params["published_at"] = parse_timestamp(publish_time)
            if not params.get("event_id") and message_id is not None:
                params["event_id"] = str(message_id)
        return Metadata.from_encodable(params)

    def pack(
        self,
        acknowledger: Acknowledger,
        batch_mode: BatchMode,
        message: Message,
    ) -> PipelineMessage:
        encoded = message.encode(self._codec()).unwrap()
        attributes = {
            key: encoded.metadata[key] for key in ATTRIBUTE_KEYS if key in encoded.metadata
        }
        return PipelineMessage(
            data=encoded.data,
            metadata={
                "messageId": message.metadata.adapter_event_id,
                "publishTime": message.metadata.published_at,
                "attributes": attributes,
            },
            acknowledger=acknowledger,
            batch_mode=batch_mode,
        )

    def producer_options(self, **opts: Any) -> dict[str, Any]:
        """Options for a pull subscription.

        Only ``subscription`` is required; a missing one raises ``KeyError``.
        """
        subscription = opts.pop("subscription")
        return {
            "module": "cloud_pubsub",
            "subscription": self.client.subscription_path(subscription),
            "token_provider": self.client.token_provider,
            **opts,
        }

    def _codec(self) -> Any:
        return (self._config or get_config()).json_codec
