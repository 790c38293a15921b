"""NoOpAdapter — for local development without a Pub/Sub emulator.

Shares the Google wire contract, so it needs the ``google`` extra.
"""

from __future__ import annotations

import logging
from typing import Any

from ..result import Result
from .google.mock import GoogleMockAdapter

logger = logging.getLogger("cqrs_ddd.pubsub.noop")


class NoOpAdapter(GoogleMockAdapter):
    """Mocks every publish and says so loudly.

    Inbound messages are handled the way ``GoogleAdapter`` handles them.
    """

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        logger.error(
            "NoOpAdapter is mocking a publish to %s. Configure GoogleAdapter "
            "against the Pub/Sub emulator to test with a real transport.",
            topic,
        )
        return await super().publish(topic, message)
