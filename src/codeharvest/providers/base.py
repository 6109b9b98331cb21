"""Adapter protocols and a template base class for provider adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from contextlib import aclosing
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from codeharvest.errors import GenerationCancelledError
from codeharvest.extraction import extract
from codeharvest.providers._errors import wrap_provider_error
from codeharvest.types import (
    CodeGenerationResult,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
    StreamChunk,
    StreamResult,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from codeharvest.streaming import StreamOptions

logger = logging.getLogger(__name__)

#: Items produced by an adapter stream: chunks, then exactly one ``StreamResult``.
StreamItem = StreamChunk | StreamResult


@runtime_checkable
class GenerationAdapter(Protocol):
    """Minimal adapter protocol: generate new code, or fix existing code."""

    @property
    def name(self) -> str:
        """Provider name used in logs and errors."""
        ...

    async def generate_code(
        self, request: GenerationRequest, context: GenerationContext
    ) -> CodeGenerationResult:
        """Generate code for a task."""
        ...

    async def generate_fix(
        self,
        original_code: str,
        errors: Sequence[str],
        request: GenerationRequest,
        context: GenerationContext,
    ) -> CodeGenerationResult:
        """Generate a fix for code that failed to compile or test."""
        ...


@runtime_checkable
class StreamingGenerationAdapter(GenerationAdapter, Protocol):
    """Adapter that can also stream its output."""

    def generate_code_stream(
        self,
        request: GenerationRequest,
        context: GenerationContext,
        options: StreamOptions | None = None,
    ) -> AsyncIterator[StreamItem]:
        """Stream a code generation."""
        ...

    def generate_fix_stream(
        self,
        original_code: str,
        errors: Sequence[str],
        request: GenerationRequest,
        context: GenerationContext,
        options: StreamOptions | None = None,
    ) -> AsyncIterator[StreamItem]:
        """Stream a fix generation."""
        ...


class BaseAdapter(ABC):
    """Template for adapters.

    Subclasses implement ``call_provider`` and ``stream_provider``; the base
    handles logging, error mapping and code extraction (``al`` for generate,
    ``diff`` for fix).
    """

    name: str = "base"

    @abstractmethod
    async def call_provider(self, request: GenerationRequest) -> GenerationResponse:
        """Make one provider call."""

    @abstractmethod
    def stream_provider(
        self, request: GenerationRequest, options: StreamOptions | None = None
    ) -> AsyncIterator[StreamItem]:
        """Stream one provider call: chunks, then a ``StreamResult``."""

    async def _call(self, request: GenerationRequest) -> GenerationResponse:
        try:
            return await self.call_provider(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise wrap_provider_error(exc, provider=self.name) from exc

    async def generate_code(
        self, request: GenerationRequest, context: GenerationContext
    ) -> CodeGenerationResult:
        """Generate code and extract it from the raw response."""
        logger.info(
            "Generating code provider=%s task=%s attempt=%d",
            self.name,
            context.task_id,
            context.attempt,
        )
        response = await self._call(request)
        extraction = extract(response.content, "al")
        return CodeGenerationResult(
            code=extraction.code,
            language="al",
            response=response,
            extracted_from_delimiters=extraction.extracted_from_delimiters,
        )

    async def generate_fix(
        self,
        original_code: str,
        errors: Sequence[str],
        request: GenerationRequest,
        context: GenerationContext,
    ) -> CodeGenerationResult:
        """Generate a fix and extract the diff from the raw response."""
        del original_code
        logger.info(
            "Generating fix provider=%s task=%s errors=%d",
            self.name,
            context.task_id,
            len(errors),
        )
        response = await self._call(request)
        extraction = extract(response.content, "diff")
        return CodeGenerationResult(
            code=extraction.code,
            language="al" if extraction.language == "al" else "diff",
            response=response,
            extracted_from_delimiters=extraction.extracted_from_delimiters,
        )

    async def generate_code_stream(
        self,
        request: GenerationRequest,
        context: GenerationContext,
        options: StreamOptions | None = None,
    ) -> AsyncIterator[StreamItem]:
        """Stream a code generation from the provider."""
        logger.info(
            "Streaming code provider=%s task=%s attempt=%d",
            self.name,
            context.task_id,
            context.attempt,
        )
        async with aclosing(self._stream(request, options)) as stream:
            async for item in stream:
                yield item

    async def generate_fix_stream(
        self,
        original_code: str,
        errors: Sequence[str],
        request: GenerationRequest,
        context: GenerationContext,
        options: StreamOptions | None = None,
    ) -> AsyncIterator[StreamItem]:
        """Stream a fix generation from the provider."""
        del original_code
        logger.info(
            "Streaming fix provider=%s task=%s errors=%d",
            self.name,
            context.task_id,
            len(errors),
        )
        async with aclosing(self._stream(request, options)) as stream:
            async for item in stream:
                yield item

    async def _stream(
        self, request: GenerationRequest, options: StreamOptions | None
    ) -> AsyncIterator[StreamItem]:
        stream = self.stream_provider(request, options)
        try:
            async for item in stream:
                yield item
        except (asyncio.CancelledError, GenerationCancelledError):
            raise
        except Exception as exc:
            if options is not None and options.on_error is not None:
                options.on_error(exc)
            raise wrap_provider_error(exc, provider=self.name, phase="stream") from exc
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def is_healthy(self) -> bool:
        """Return True when a tiny request succeeds."""
        probe = GenerationRequest(
            prompt="Say 'OK' if you can respond.", temperature=0, max_tokens=5
        )
        try:
            await self.call_provider(probe)
        except Exception as exc:
            logger.debug("Health check failed provider=%s: %s", self.name, exc)
            return False
        return True
