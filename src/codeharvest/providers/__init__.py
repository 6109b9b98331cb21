"""Adapter protocols, the template base adapter, and the mock adapter."""

from __future__ import annotations

from codeharvest.providers.base import (
    BaseAdapter,
    GenerationAdapter,
    StreamingGenerationAdapter,
    StreamItem,
)
from codeharvest.providers.mock import MockAdapter

__all__ = [
    "BaseAdapter",
    "GenerationAdapter",
    "MockAdapter",
    "StreamItem",
    "StreamingGenerationAdapter",
]
