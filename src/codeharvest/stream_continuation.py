"""Streaming continuation of truncated generations.

``generate_with_continuation_stream`` returns a ``ContinuationStream``: one
lazy sequence of ``StreamChunk`` values spanning every underlying provider
stream, plus a completion value available from ``await stream.result()``.

The controller is an explicit state machine::

    STARTING -> STREAMING -> DECIDING_CONTINUATION -> CONTINUING -> ... -> DONE

Each provider stream is drained before deciding on another round. While a
continuation round is in flight, ``accumulated_text`` is the merged text of
earlier rounds plus this round's raw text; overlap trimming happens once the
round completes, so an interim chunk may briefly repeat a short tail.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
import enum
import logging
from typing import TYPE_CHECKING, Any

from codeharvest.continuation import (
    build_continuation_context,
    build_continuation_request,
    should_continue,
    was_truncated,
)
from codeharvest.errors import GenerationCancelledError, ProviderError
from codeharvest.merge import merge_code
from codeharvest.streaming import StreamOptions
from codeharvest.types import (
    DEFAULT_CONTINUATION_CONFIG,
    GenerationResponse,
    StreamChunk,
    StreamingContinuationResult,
    StreamResult,
    TokenUsage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Callable

    from codeharvest.providers.base import StreamItem
    from codeharvest.streaming import CancellationToken
    from codeharvest.types import (
        ContinuationConfig,
        GenerationContext,
        GenerationRequest,
    )

    StreamFn = Callable[
        [GenerationRequest, GenerationContext, StreamOptions | None],
        AsyncIterator[StreamItem],
    ]

logger = logging.getLogger(__name__)

_END = object()


class StreamPhase(enum.Enum):
    """Lifecycle of a ``ContinuationStream``."""

    STARTING = "starting"
    STREAMING = "streaming"
    DECIDING_CONTINUATION = "deciding_continuation"
    CONTINUING = "continuing"
    DONE = "done"


async def _next_item(
    iterator: AsyncIterator[StreamItem], cancel: CancellationToken | None
) -> Any:
    """Await the next stream item, or raise as soon as *cancel* fires."""
    if cancel is None:
        return await anext(iterator, _END)

    cancel.raise_if_cancelled()
    next_task = asyncio.ensure_future(anext(iterator, _END))
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        next_task.cancel()
        cancel_task.cancel()
        raise
    if next_task in done:
        cancel_task.cancel()
        return next_task.result()

    next_task.cancel()
    with suppress(asyncio.CancelledError):
        await next_task
    cancel.raise_if_cancelled()
    raise AssertionError("cancel signal fired without cancellation")  # pragma: no cover


async def _close_stream(stream: AsyncIterator[StreamItem]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class ContinuationStream:
    """Chunks of a streamed generation chain plus its final result.

    Iterate it once with ``async for``; afterwards ``await result()`` returns
    the ``StreamingContinuationResult``. Calling ``result()`` without
    iterating drains the stream first.
    """

    def __init__(
        self,
        stream_fn: StreamFn,
        request: GenerationRequest,
        context: GenerationContext,
        config: ContinuationConfig | None = None,
        options: StreamOptions | None = None,
    ) -> None:
        self._stream_fn = stream_fn
        self._request = request
        self._context = context
        self._config = config or DEFAULT_CONTINUATION_CONFIG
        self._options = options or StreamOptions()
        self.phase = StreamPhase.STARTING
        self._started = False
        self._iterator: AsyncGenerator[StreamChunk, None] | None = None
        self._finished = asyncio.Event()
        self._result: StreamingContinuationResult | None = None
        self._error: BaseException | None = None

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._started:
            raise RuntimeError("ContinuationStream can only be iterated once")
        self._started = True
        self._iterator = self._run()
        return self._iterator

    async def aclose(self) -> None:
        """Stop early, closing the in-flight provider stream."""
        self._started = True
        if self._iterator is not None:
            await self._iterator.aclose()
        # A generator closed before its first step never runs its finally.
        if not self._finished.is_set():
            self._error = GenerationCancelledError("Stream closed before completion")
            self.phase = StreamPhase.DONE
            self._finished.set()

    async def result(self) -> StreamingContinuationResult:
        """Return the final result.

        Drains the stream if nobody iterated it. A stream abandoned mid-way
        (suspended at a chunk, nobody pulling) is closed, and the call raises
        ``GenerationCancelledError``.
        """
        if not self._started:
            async for _ in self:
                pass
        elif (
            not self._finished.is_set()
            and self._iterator is not None
            and not self._iterator.ag_running
        ):
            await self.aclose()
        await self._finished.wait()
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    def _emit(self, chunk: StreamChunk) -> StreamChunk:
        if self._options.on_chunk is not None:
            self._options.on_chunk(chunk)
        return chunk

    async def _run(self) -> AsyncGenerator[StreamChunk, None]:
        cancel = self._options.cancel
        # Adapters only see the cancel token; callbacks fire once, here.
        adapter_options = StreamOptions(cancel=cancel)
        request = self._request
        context = self._context

        merged_content = ""
        total_usage = TokenUsage()
        chunk_index = 0
        continuation_count = 0
        last_response: GenerationResponse | None = None

        try:
            while True:
                self.phase = (
                    StreamPhase.STREAMING
                    if continuation_count == 0
                    else StreamPhase.CONTINUING
                )
                prior_content = merged_content
                round_text = ""
                round_result: StreamResult | None = None

                stream = self._stream_fn(request, context, adapter_options)
                try:
                    while True:
                        item = await _next_item(stream, cancel)
                        if item is _END:
                            break
                        if isinstance(item, StreamResult):
                            round_result = item
                            continue
                        if item.done:
                            continue
                        round_text += item.text
                        yield self._emit(
                            StreamChunk(
                                text=item.text,
                                accumulated_text=prior_content + round_text,
                                index=chunk_index,
                            )
                        )
                        chunk_index += 1
                finally:
                    await _close_stream(stream)

                if round_result is None:
                    raise ProviderError(
                        "Provider stream ended without a final result",
                        retryable=False,
                        phase="stream",
                    )

                round_content = round_result.content or round_text
                merged_content = (
                    round_content
                    if continuation_count == 0
                    else merge_code(merged_content, round_content, "al")
                )
                total_usage = total_usage + round_result.response.usage
                last_response = round_result.response

                self.phase = StreamPhase.DECIDING_CONTINUATION
                if not should_continue(last_response, self._config, continuation_count):
                    break

                if cancel is not None:
                    cancel.raise_if_cancelled()
                continuation_count += 1
                logger.info(
                    "Stream truncated; starting continuation %d/%d task=%s (chars=%d)",
                    continuation_count,
                    self._config.max_continuations,
                    self._context.task_id,
                    len(merged_content),
                )
                request = build_continuation_request(self._request, merged_content)
                context = build_continuation_context(
                    self._context, continuation_count, len(merged_content)
                )

            truncated = was_truncated(last_response)
            final_response = GenerationResponse(
                content=merged_content,
                model=last_response.model,
                usage=total_usage,
                duration_ms=last_response.duration_ms,
                finish_reason=last_response.finish_reason,
            )
            self._result = StreamingContinuationResult(
                content=merged_content,
                response=final_response,
                chunk_count=chunk_index,
                continuation_count=continuation_count,
                was_truncated=truncated,
                total_usage=total_usage,
            )
            self.phase = StreamPhase.DONE
            self._finished.set()

            final_chunk = self._emit(
                StreamChunk(
                    text="",
                    accumulated_text=merged_content,
                    index=chunk_index,
                    done=True,
                    usage=total_usage,
                )
            )
            if self._options.on_complete is not None:
                self._options.on_complete(self._result)
            yield final_chunk
        except Exception as exc:
            if self._options.on_error is not None:
                self._options.on_error(exc)
            self._error = exc
            raise
        finally:
            self.phase = StreamPhase.DONE
            if not self._finished.is_set():
                if self._error is None:
                    self._error = GenerationCancelledError(
                        "Stream closed before completion"
                    )
                self._finished.set()


def generate_with_continuation_stream(
    stream_fn: StreamFn,
    request: GenerationRequest,
    context: GenerationContext,
    config: ContinuationConfig | None = None,
    options: StreamOptions | None = None,
) -> ContinuationStream:
    """Stream a generation, continuing truncated output across provider streams.

    Args:
        stream_fn: Starts one provider stream; called as
            ``stream_fn(request, context, options)``.
        request: The original request.
        context: The task context.
        config: Continuation budget.
        options: Callbacks and cancellation token.

    Returns:
        A ``ContinuationStream`` to iterate; ``await stream.result()`` gives
        the ``StreamingContinuationResult`` once the final chunk is produced.
    """
    return ContinuationStream(stream_fn, request, context, config, options)
