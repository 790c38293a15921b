"""Consumer — adapter-aware glue between a batch pipeline and a message handler."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import PubSubConfig, get_config
from .correlation import correlation_scope
from .exceptions import ConfigurationError
from .pipeline import BatchMode, CallerAcknowledger, InMemoryPipeline

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from .message import Message
    from .metadata import Metadata
    from .pipeline import PipelineMessage
    from .ports.adapter import IPubSubAdapter
    from .ports.pipeline import IBatchPipeline

    MessageHandler = Callable[[Message], Awaitable[Any]]

logger = logging.getLogger("cqrs_ddd.pubsub.consumer")


class Consumer:
    """Receives transport-native messages and hands ``Message`` values to a handler.

    Usage::

        async def on_account_opened(message: Message) -> None:
            ...

        consumer = Consumer.build(on_account_opened, adapter=GoogleAdapter(client))
        await consumer.start()

    In tests, push messages through the pipeline and await the outcome::

        ack = await consumer.test_message(Message.new(data={"id": "1"}))
        successful, failed = await ack.wait(timeout=1)
    """

    def __init__(
        self,
        adapter: IPubSubAdapter,
        handler: MessageHandler,
        pipeline: IBatchPipeline | None = None,
    ) -> None:
        self._adapter = adapter
        self._handler = handler
        if pipeline is None:
            pipeline = InMemoryPipeline(self.handle, name=getattr(handler, "__name__", "consumer"))
        self._pipeline = pipeline

    @classmethod
    def build(
        cls,
        handler: MessageHandler,
        *,
        adapter: IPubSubAdapter | None = None,
        pipeline: IBatchPipeline | None = None,
        config: PubSubConfig | None = None,
    ) -> Consumer:
        """Create a consumer, taking the adapter from *config* when not given."""
        adapter = adapter or (config or get_config()).adapter
        if adapter is None:
            raise ConfigurationError("Consumer has no adapter and none is configured")
        return cls(adapter, handler, pipeline)

    @property
    def adapter(self) -> IPubSubAdapter:
        return self._adapter

    @property
    def pipeline(self) -> IBatchPipeline:
        return self._pipeline

    # ── Translation ──────────────────────────────────────────────

    def unpack(self, pipeline_message: PipelineMessage) -> Message:
        return self._adapter.unpack(pipeline_message)

    def unpack_metadata(self, pipeline_message: PipelineMessage) -> Metadata:
        return self._adapter.unpack_metadata(pipeline_message)

    def producer_options(self, **opts: Any) -> dict[str, Any]:
        """Options for the pipeline's inbound stage (see the adapter)."""
        return self._adapter.producer_options(**opts)

    # ── Processing ───────────────────────────────────────────────

    async def handle(self, pipeline_message: PipelineMessage) -> Any:
        """Unpack *pipeline_message* and call the handler.

        The message's correlation is installed while the handler runs, so
        messages created by the handler follow it. The previous correlation
        is restored afterwards. Handler errors propagate to the pipeline,
        which reports the message as failed.
        """
        message = self.unpack(pipeline_message)
        metadata = message.metadata
        logger.debug(
            "Handling message %s from %s",
            metadata.event_id,
            metadata.topic,
        )
        with correlation_scope(
            metadata.correlation_id, metadata.event_id, metadata.user
        ):
            return await self._handler(message)

    async def start(self) -> None:
        await self._pipeline.start()
        logger.info("Consumer started")

    async def stop(self) -> None:
        await self._pipeline.stop()
        logger.info("Consumer stopped")

    # ── Test helpers ─────────────────────────────────────────────

    async def test_message(self, message: Message) -> CallerAcknowledger:
        """Push one message through the pipeline, acknowledged on its own."""
        acknowledger = CallerAcknowledger()
        pipeline_message = self._adapter.pack(acknowledger, BatchMode.FLUSH, message)
        await self._pipeline.push_messages([pipeline_message])
        return acknowledger

    async def test_batch(self, messages: Sequence[Message]) -> CallerAcknowledger:
        """Push *messages* through the pipeline as one bulk batch."""
        acknowledger = CallerAcknowledger(expected=len(messages))
        batch = [
            self._adapter.pack(acknowledger, BatchMode.BULK, message)
            for message in messages
        ]
        await self._pipeline.push_messages(batch)
        return acknowledger
