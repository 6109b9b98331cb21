"""Shared streaming primitives for adapters and the continuation controller."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import math
import time
from typing import TYPE_CHECKING

from codeharvest.errors import GenerationCancelledError
from codeharvest.types import (
    FinishReason,
    GenerationResponse,
    StreamChunk,
    StreamResult,
    TokenUsage,
)

if TYPE_CHECKING:
    from collections.abc import Callable


class CancellationToken:
    """Abortable signal threaded through streaming calls.

    Thin wrapper over ``asyncio.Event`` so callers can cancel a chain from
    another task and streaming code can check it at each chunk boundary.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Idempotent."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise ``GenerationCancelledError`` when cancellation was requested."""
        if self._event.is_set():
            raise GenerationCancelledError(
                f"Generation cancelled{f': {self.reason}' if self.reason else ''}"
            )


@dataclass
class StreamOptions:
    """Callbacks and cancellation for a streamed generation."""

    on_chunk: Callable[[StreamChunk], None] | None = None
    on_complete: Callable[[object], None] | None = None
    on_error: Callable[[BaseException], None] | None = None
    cancel: CancellationToken | None = None


@dataclass
class StreamState:
    """Mutable progress of one adapter stream."""

    accumulated_text: str = ""
    chunk_index: int = 0
    start_time: float = field(default_factory=time.monotonic)


def create_chunk(
    content: str, state: StreamState, options: StreamOptions | None = None
) -> StreamChunk:
    """Record *content* in *state* and build the chunk to yield."""
    state.accumulated_text += content
    chunk = StreamChunk(
        text=content,
        accumulated_text=state.accumulated_text,
        index=state.chunk_index,
    )
    state.chunk_index += 1
    if options is not None and options.on_chunk is not None:
        options.on_chunk(chunk)
    return chunk


def finalize_stream(
    state: StreamState,
    *,
    model: str,
    usage: TokenUsage,
    finish_reason: FinishReason,
    options: StreamOptions | None = None,
) -> tuple[StreamChunk, StreamResult]:
    """Build the terminal chunk and the stream result after the last chunk."""
    duration_ms = (time.monotonic() - state.start_time) * 1000.0
    response = GenerationResponse(
        content=state.accumulated_text,
        model=model,
        usage=usage,
        duration_ms=duration_ms,
        finish_reason=finish_reason,
    )
    result = StreamResult(
        content=state.accumulated_text,
        response=response,
        chunk_count=state.chunk_index,
    )
    final_chunk = StreamChunk(
        text="",
        accumulated_text=state.accumulated_text,
        index=state.chunk_index,
        done=True,
        usage=usage,
    )
    if options is not None:
        if options.on_chunk is not None:
            options.on_chunk(final_chunk)
        if options.on_complete is not None:
            options.on_complete(result)
    return final_chunk, result


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return math.ceil(len(text) / 4)


def create_fallback_usage(
    prompt_text: str, completion_text: str, estimated_cost: float = 0.0
) -> TokenUsage:
    """Estimate usage when a provider does not report token counts."""
    prompt_tokens = estimate_tokens(prompt_text)
    completion_tokens = estimate_tokens(completion_text)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated_cost=estimated_cost,
    )
