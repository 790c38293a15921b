"""GoogleMockAdapter — the Google wire contract without network calls."""

from __future__ import annotations

import uuid
from typing import Any

from ...result import Result
from .adapter import GoogleAdapter, set_published_meta


class GoogleMockAdapter(GoogleAdapter):
    """Behaves like ``GoogleAdapter`` but never calls Cloud Pub/Sub.

    Pairs well with ``unittest.mock`` to assert how the adapter was called
    while keeping the same contract::

        adapter = GoogleMockAdapter()
        with patch.object(adapter, "publish", wraps=adapter.publish) as spy:
            await producer.publish(message)
        spy.assert_awaited_once()

    A single message gets a uuid id. Lists get sequential ids ``"1"`` ..
    ``"n"``, the way Cloud Pub/Sub numbers a batch.
    """

    async def publish(self, topic: str, message: Any) -> Result[Any]:
        if isinstance(message, list):
            return Result.success(
                [
                    set_published_meta(item, message_id)
                    for message_id, item in enumerate(message, start=1)
                ]
            )
        return Result.success(set_published_meta(message, uuid.uuid4()))

    def producer_options(self, **opts: Any) -> dict[str, Any]:
        return {"module": "dummy", "options": dict(opts)}
