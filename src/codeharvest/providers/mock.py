"""Mock adapter for tests and dry runs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codeharvest.providers.base import BaseAdapter
from codeharvest.streaming import StreamState, create_chunk, finalize_stream
from codeharvest.types import GenerationRequest, GenerationResponse, TokenUsage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from codeharvest.providers.base import StreamItem
    from codeharvest.streaming import StreamOptions

_DEFAULT_CONTENT = (
    "BEGIN-CODE\n"
    "codeunit 50100 \"Mock Codeunit\"\n"
    "{\n"
    "    procedure Hello()\n"
    "    begin\n"
    "        Message('Hello');\n"
    "    end;\n"
    "}\n"
    "END-CODE"
)

ScriptItem = GenerationResponse | str | BaseException | dict[str, Any]


@dataclass
class MockAdapter(BaseAdapter):
    """Deterministic adapter that replays a script without network calls.

    Each call consumes one script item: a ``GenerationResponse``, a plain
    string (finish reason ``"stop"``), a dict of ``GenerationResponse``
    fields, or an exception to raise. An exhausted script returns a small
    AL codeunit. Streaming splits the content into ``chunk_size`` pieces.
    """

    script: list[ScriptItem] = field(default_factory=list)
    model: str = "mock-model"
    chunk_size: int = 16
    models: tuple[str, ...] = ("mock-model",)
    name: str = "mock"
    requests: list[GenerationRequest] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("MockAdapter.chunk_size must be >= 1")

    def _next_response(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if not self.script:
            item: ScriptItem = _DEFAULT_CONTENT
        else:
            item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, GenerationResponse):
            return item
        if isinstance(item, dict):
            return GenerationResponse(**{"model": self.model, **item})
        return GenerationResponse(
            content=item,
            model=self.model,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=10, total_tokens=20),
            finish_reason="stop",
        )

    async def call_provider(self, request: GenerationRequest) -> GenerationResponse:
        """Return the next scripted response."""
        return self._next_response(request)

    async def stream_provider(
        self, request: GenerationRequest, options: StreamOptions | None = None
    ) -> AsyncIterator[StreamItem]:
        """Stream the next scripted response in fixed-size pieces."""
        response = self._next_response(request)
        state = StreamState()
        content = response.content
        for start in range(0, len(content), self.chunk_size):
            if options is not None and options.cancel is not None:
                options.cancel.raise_if_cancelled()
            # Yield control like a real transport would between chunks.
            await asyncio.sleep(0)
            yield create_chunk(content[start : start + self.chunk_size], state, options)
        final_chunk, result = finalize_stream(
            state,
            model=response.model,
            usage=response.usage,
            finish_reason=response.finish_reason,
            options=options,
        )
        yield final_chunk
        yield result

    async def discover_models(self) -> list[str]:
        """Return the configured model identifiers."""
        return list(self.models)
