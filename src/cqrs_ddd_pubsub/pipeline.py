"""Batch pipeline primitives — inbound messages, acknowledgers, in-memory pipeline.

The consumption pipeline itself is an external collaborator (see
``ports.IBatchPipeline``). ``InMemoryPipeline`` stands in for it in tests and
local development, in the same way the in-memory bus stands in for a broker.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = logging.getLogger("cqrs_ddd.pubsub.pipeline")


class BatchMode(str, Enum):
    """How a pushed message is acknowledged."""

    BULK = "bulk"
    FLUSH = "flush"


@runtime_checkable
class Acknowledger(Protocol):
    """Receives the outcome of processed pipeline messages."""

    def ack(
        self,
        successful: list[PipelineMessage],
        failed: list[PipelineMessage],
    ) -> None: ...


@dataclass
class PipelineMessage:
    """Transport-native message travelling through a batch pipeline.

    ``metadata`` is adapter specific; adapters translate it with ``unpack``.
    """

    data: Any
    metadata: Any = field(default_factory=dict)
    acknowledger: Acknowledger | None = None
    batch_mode: BatchMode = BatchMode.BULK
    status: str = "ok"
    error: BaseException | None = None


class NoopAcknowledger:
    """Acknowledger that ignores outcomes."""

    def ack(
        self,
        successful: list[PipelineMessage],
        failed: list[PipelineMessage],
    ) -> None:
        return None


class CallerAcknowledger:
    """Collects outcomes so a test can await them.

    Usage::

        ack = await consumer.test_message(message)
        successful, failed = await ack.wait(timeout=1)
    """

    def __init__(self, expected: int = 1) -> None:
        self.ref = str(uuid.uuid4())
        self.expected = expected
        self.successful: list[PipelineMessage] = []
        self.failed: list[PipelineMessage] = []
        self._done = asyncio.Event()

    def ack(
        self,
        successful: list[PipelineMessage],
        failed: list[PipelineMessage],
    ) -> None:
        self.successful.extend(successful)
        self.failed.extend(failed)
        if len(self.successful) + len(self.failed) >= self.expected:
            self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def wait(
        self, timeout: float | None = None
    ) -> tuple[list[PipelineMessage], list[PipelineMessage]]:
        """Wait until every expected message is acknowledged."""
        await asyncio.wait_for(self._done.wait(), timeout)
        return list(self.successful), list(self.failed)


class InMemoryPipeline:
    """Pipeline that processes pushed messages in the calling task.

    Messages in ``flush`` mode are acknowledged one by one; ``bulk`` messages
    are acknowledged together once the whole push has been processed.
    """

    def __init__(
        self,
        handler: Callable[[PipelineMessage], Awaitable[Any]],
        *,
        name: str = "in-memory",
        options: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.options = options or {}
        self._handler = handler
        self._running = False
        self._processed: list[PipelineMessage] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info("Pipeline %s started", self.name)

    async def stop(self) -> None:
        self._running = False
        logger.info("Pipeline %s stopped", self.name)

    async def push_messages(self, messages: Sequence[PipelineMessage]) -> None:
        """Process *messages* and acknowledge them."""
        if not self._running:
            raise RuntimeError(f"Pipeline {self.name!r} is not running")

        bulk: dict[int, tuple[Acknowledger, list[PipelineMessage], list[PipelineMessage]]] = {}
        for message in messages:
            ok = await self._process(message)
            self._processed.append(message)
            acknowledger = message.acknowledger
            if acknowledger is None:
                continue
            if message.batch_mode == BatchMode.FLUSH:
                acknowledger.ack([message] if ok else [], [] if ok else [message])
                continue
            _, successful, failed = bulk.setdefault(
                id(acknowledger), (acknowledger, [], [])
            )
            (successful if ok else failed).append(message)

        for acknowledger, successful, failed in bulk.values():
            acknowledger.ack(successful, failed)

    def get_processed(self) -> list[PipelineMessage]:
        """Return every message processed so far, in order."""
        return list(self._processed)

    async def _process(self, message: PipelineMessage) -> bool:
        try:
            await self._handler(message)
        except Exception as exc:
            logger.exception("Pipeline %s failed to process a message", self.name)
            message.status = "failed"
            message.error = exc
            return False
        return True
