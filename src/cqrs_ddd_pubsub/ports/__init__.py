"""Ports implemented by transport adapters and batch pipelines."""

from __future__ import annotations

from .adapter import IPubSubAdapter
from .pipeline import IBatchPipeline

__all__ = [
    "IBatchPipeline",
    "IPubSubAdapter",
]
