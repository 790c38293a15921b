"""Google Cloud Pub/Sub adapter (requires the ``google`` extra for httpx)."""

from __future__ import annotations

from .adapter import GoogleAdapter
from .client import GooglePubSubClient
from .mock import GoogleMockAdapter

__all__ = [
    "GoogleAdapter",
    "GoogleMockAdapter",
    "GooglePubSubClient",
]
