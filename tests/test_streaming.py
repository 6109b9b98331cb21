from __future__ import annotations

import asyncio

import pytest

from codeharvest.errors import GenerationCancelledError
from codeharvest.streaming import (
    CancellationToken,
    StreamOptions,
    StreamState,
    create_chunk,
    create_fallback_usage,
    estimate_tokens,
    finalize_stream,
)
from codeharvest.types import TokenUsage

pytestmark = pytest.mark.unit


def test_chunks_accumulate_and_finalize() -> None:
    state = StreamState()
    completed: list[object] = []
    options = StreamOptions(on_complete=completed.append)

    first = create_chunk("ab", state, options)
    second = create_chunk("cd", state, options)
    final_chunk, result = finalize_stream(
        state, model="m", usage=TokenUsage(1, 2, 3), finish_reason="length", options=options
    )

    assert (first.index, first.accumulated_text) == (0, "ab")
    assert (second.index, second.accumulated_text) == (1, "abcd")
    assert final_chunk.done is True
    assert final_chunk.index == 2
    assert final_chunk.usage == TokenUsage(1, 2, 3)
    assert result.content == "abcd"
    assert result.chunk_count == 2
    assert result.response.finish_reason == "length"
    assert result.response.duration_ms >= 0
    assert completed == [result]


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_fallback_usage() -> None:
    usage = create_fallback_usage("a" * 8, "b" * 5)
    assert usage == TokenUsage(2, 2, 4, 0.0)


@pytest.mark.asyncio
async def test_cancellation_token() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    assert token.cancelled is False

    waiter = asyncio.create_task(token.wait())
    token.cancel("first")
    token.cancel("second")
    await asyncio.wait_for(waiter, timeout=1)

    assert token.cancelled is True
    assert token.reason == "first"
    with pytest.raises(GenerationCancelledError, match="Generation cancelled: first"):
        token.raise_if_cancelled()
