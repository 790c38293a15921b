from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, overload, runtime_checkable

if TYPE_CHECKING:
    from ..message import Message
    from ..metadata import Metadata
    from ..pipeline import Acknowledger, BatchMode, PipelineMessage
    from ..result import Result


@runtime_checkable
class IPubSubAdapter(Protocol):
    """
    Port for a pub/sub transport (Google Cloud Pub/Sub, in-memory, …).

    Adapters own network I/O and the transport's wire shape. Producers hand
    them messages already stamped with topic, service and schema spec.
    """

    @overload
    async def publish(self, topic: str, message: Message) -> Result[Message]: ...

    @overload
    async def publish(
        self, topic: str, message: list[Message]
    ) -> Result[list[Message]]: ...

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        """
        Publish one message or a list of messages to *topic*.

        On success each message is returned decorated with ``event_id``,
        ``adapter_event_id`` and ``published_at``. Failures are returned as
        ``Result.failure`` with an adapter-defined error.
        """
        ...

    def unpack(self, pipeline_message: PipelineMessage) -> Message:
        """Convert a transport-native inbound message into a ``Message``."""
        ...

    def unpack_metadata(self, pipeline_message: PipelineMessage) -> Metadata:
        """Metadata-only variant of ``unpack``."""
        ...

    def pack(
        self,
        acknowledger: Acknowledger,
        batch_mode: BatchMode,
        message: Message,
    ) -> PipelineMessage:
        """Inverse of ``unpack``; used to push test messages into a pipeline."""
        ...

    def producer_options(self, **opts: Any) -> dict[str, Any]:
        """
        Options for the batch pipeline's inbound producer stage.

        Required keys depend on the transport (e.g. ``subscription``);
        a missing required key raises ``KeyError``.
        """
        ...
