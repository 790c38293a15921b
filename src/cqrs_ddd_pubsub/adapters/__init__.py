"""Transport adapters.

The Google adapters live in ``cqrs_ddd_pubsub.adapters.google`` and need the
``google`` extra (httpx).
"""

from __future__ import annotations

from .testing import TestingAdapter

__all__ = [
    "TestingAdapter",
]
