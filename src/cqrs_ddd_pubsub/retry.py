"""ExponentialBackoff — delay schedule for publish retries."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

INITIAL_DELAY_MS = 10
BACKOFF_FACTOR = 2


class ExponentialBackoff:
    """Delay schedule in milliseconds: ``0, D, D*f, D*f^2, ...``.

    The first attempt is never delayed; the budget check against the
    accumulated delay is done by the caller.
    """

    def __init__(
        self,
        *,
        initial_delay: int = INITIAL_DELAY_MS,
        factor: float = BACKOFF_FACTOR,
    ) -> None:
        """Configure the schedule.

        Args:
            initial_delay: Delay in milliseconds before the second attempt.
            factor: Multiplier applied to each following delay.
        """
        if initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if factor < 1:
            raise ValueError("factor must be >= 1")
        self.initial_delay = initial_delay
        self.factor = factor

    def delays(self) -> Iterator[int]:
        """Yield delays forever, starting with the zero delay of attempt one."""
        yield 0
        delay = self.initial_delay
        while True:
            yield delay
            delay = round(delay * self.factor)

    def is_retry(self, delay: int) -> bool:
        """Return True if *delay* belongs to an attempt after the first."""
        return delay >= self.initial_delay

    async def wait(self, delay_ms: int) -> None:
        """Cooperatively sleep *delay_ms* milliseconds in the calling task."""
        if delay_ms > 0:
            await _sleep(delay_ms / 1000)


async def _sleep(seconds: float) -> None:
    """Async sleep (overridable for tests)."""
    await asyncio.sleep(seconds)
