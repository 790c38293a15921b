from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..pipeline import PipelineMessage


@runtime_checkable
class IBatchPipeline(Protocol):
    """
    Port for the external batch-processing framework that drives consumers.

    The pipeline owns batching, concurrency and acknowledgement; this package
    only starts it, stops it and pushes test batches into it.
    """

    async def start(self) -> None:
        """Start pulling and processing messages."""
        ...

    async def stop(self) -> None:
        """Stop processing and release resources."""
        ...

    async def push_messages(self, messages: Sequence[PipelineMessage]) -> None:
        """Inject already-built pipeline messages (used by tests)."""
        ...
