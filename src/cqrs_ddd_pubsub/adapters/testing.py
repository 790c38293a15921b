"""TestingAdapter — in-memory adapter with assertion helpers for tests."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from ..message import Message
from ..metadata import Metadata, utc_now
from ..pipeline import PipelineMessage
from ..ports.adapter import IPubSubAdapter
from ..result import Result
from ..schema_spec import SchemaSpec

if TYPE_CHECKING:
    from ..pipeline import Acknowledger, BatchMode


class TestingAdapter(IPubSubAdapter):
    """Adapter that never leaves the process.

    Published messages receive uuid ``event_id``/``adapter_event_id`` values
    and are recorded; ``get_published()`` and ``assert_published()`` support
    test assertions.
    """

    __test__ = False  # not a pytest test class

    def __init__(self) -> None:
        self._published: list[tuple[str, Message]] = []

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        if isinstance(message, list):
            published = [self._publish_one(topic, m) for m in message]
            return Result.success(published)
        return Result.success(self._publish_one(topic, message))

    def _publish_one(self, topic: str, message: Message) -> Message:
        published = message.mark_published(
            str(uuid.uuid4()),
            adapter_event_id=str(uuid.uuid4()),
        )
        self._published.append((topic, published))
        return published

    def unpack(self, pipeline_message: PipelineMessage) -> Message:
        return Message(
            data=pipeline_message.data,
            metadata=self.unpack_metadata(pipeline_message),
        )

    def unpack_metadata(self, pipeline_message: PipelineMessage) -> Metadata:
        """Return the packed metadata, or fabricated published metadata."""
        metadata = pipeline_message.metadata
        if isinstance(metadata, Metadata) and metadata.is_published:
            return metadata
        if isinstance(metadata, Metadata):
            return metadata.model_copy(
                update={
                    "event_id": metadata.event_id or str(uuid.uuid4()),
                    "adapter_event_id": metadata.adapter_event_id or str(uuid.uuid4()),
                    "published_at": metadata.published_at or utc_now(),
                }
            )
        now = utc_now()
        return Metadata.new(
            {
                "event_id": str(uuid.uuid4()),
                "adapter_event_id": str(uuid.uuid4()),
                "created_at": now,
                "published_at": now,
                "topic": "a-topic",
                "service": "testing",
                "schema_spec": SchemaSpec.json(),
            }
        )

    def pack(
        self,
        acknowledger: Acknowledger,
        batch_mode: BatchMode,
        message: Message,
    ) -> PipelineMessage:
        return PipelineMessage(
            data=message.data,
            metadata=message.metadata,
            acknowledger=acknowledger,
            batch_mode=batch_mode,
        )

    def producer_options(self, **opts: Any) -> dict[str, Any]:
        return {"module": "dummy", "options": dict(opts)}

    # ── Assertion helpers ────────────────────────────────────────

    def get_published(self) -> list[tuple[str, Message]]:
        """Return all (topic, message) published so far."""
        return list(self._published)

    def assert_published(self, count: int = 1, topic: str | None = None) -> None:
        """Assert that exactly *count* messages were published.

        Optionally restrict to a specific topic. Raises AssertionError if not met.
        """
        published = self._published
        if topic is not None:
            published = [(t, m) for t, m in published if t == topic]
        assert len(published) == count, (
            f"Expected {count} published message(s)"
            f"{'' if topic is None else f' on {topic!r}'}, got {len(published)}. "
            f"Topics: {[t for t, _ in self._published]}"
        )

    def clear(self) -> None:
        self._published.clear()
