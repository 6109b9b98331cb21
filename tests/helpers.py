"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off generate/stream functions as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codeharvest.extraction import extract
from codeharvest.streaming import StreamState, create_chunk, finalize_stream
from codeharvest.types import (
    CodeGenerationResult,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
)
from tests.conftest import make_response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from codeharvest.providers.base import StreamItem
    from codeharvest.streaming import StreamOptions


@dataclass
class ScriptedGenerate:
    """Generate function replaying a script of responses or exceptions.

    Each call records ``(request, context)`` and extracts AL code from the
    next scripted response, like an adapter's ``generate_code`` would.
    """

    script: list[GenerationResponse | BaseException] = field(default_factory=list)
    calls: list[tuple[GenerationRequest, GenerationContext]] = field(
        default_factory=list
    )

    async def __call__(
        self, request: GenerationRequest, context: GenerationContext
    ) -> CodeGenerationResult:
        self.calls.append((request, context))
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        extraction = extract(item.content, "al")
        return CodeGenerationResult(
            code=extraction.code,
            language="al",
            response=item,
            extracted_from_delimiters=extraction.extracted_from_delimiters,
        )


@dataclass
class ScriptedStream:
    """Stream function replaying one scripted response per call.

    Each response is split into ``pieces`` (or fixed-size chunks) and ends with
    a done chunk and a ``StreamResult``, matching the adapter stream contract.
    ``closed`` counts streams that were closed, finished or not.
    """

    script: list[GenerationResponse | list[str] | BaseException] = field(
        default_factory=list
    )
    chunk_size: int = 8
    #: Set to block each stream before its first chunk until released.
    gate: asyncio.Event | None = None
    calls: list[tuple[GenerationRequest, GenerationContext]] = field(
        default_factory=list
    )
    closed: int = 0

    def __call__(
        self,
        request: GenerationRequest,
        context: GenerationContext,
        options: StreamOptions | None = None,
    ) -> AsyncIterator[StreamItem]:
        self.calls.append((request, context))
        return self._stream(self.script.pop(0), options)

    async def _stream(self, item: Any, options: StreamOptions | None) -> AsyncIterator[StreamItem]:
        try:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, list):
                pieces, response = item, make_response("".join(item))
            else:
                content = item.content
                pieces = [
                    content[i : i + self.chunk_size]
                    for i in range(0, len(content), self.chunk_size)
                ]
                response = item
            if self.gate is not None:
                await self.gate.wait()
            state = StreamState()
            for piece in pieces:
                await asyncio.sleep(0)
                yield create_chunk(piece, state, options)
            final_chunk, result = finalize_stream(
                state,
                model=response.model,
                usage=response.usage,
                finish_reason=response.finish_reason,
                options=options,
            )
            yield final_chunk
            yield result
        finally:
            self.closed += 1
