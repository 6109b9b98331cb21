"""Core records exchanged between the task layer, adapters and the pipeline.

Everything here is created fresh per generation chain and never shared
between chains.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Literal

FinishReason = Literal["stop", "length", "content_filter", "error"]
CodeLanguage = Literal["al", "diff", "unknown"]
ExpectedLanguage = Literal["al", "diff"]

FINISH_REASONS: frozenset[str] = frozenset({"stop", "length", "content_filter", "error"})


@dataclass(frozen=True)
class GenerationRequest:
    """A single provider request. Continuation rounds only replace ``prompt``."""

    prompt: str
    temperature: float | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None
    system_prompt: str | None = None


@dataclass(frozen=True)
class GenerationContext:
    """Task-level context passed alongside every request.

    ``metadata`` is an open bag; continuation rounds use it to carry
    ``continuation_attempt`` and ``previous_content_length``.
    """

    task_id: str
    attempt: int
    description: str
    previous_code: str | None = None
    errors: tuple[str, ...] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting for one or more provider calls.

    Usage is additive: ``a + b`` sums every field. ``estimated_cost`` stays
    ``None`` only when neither side reports a cost.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    #: USD
    estimated_cost: float | None = None

    def __post_init__(self) -> None:
        """Reject negative counters."""
        for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"TokenUsage.{name} must be a non-negative int")

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        cost: float | None = None
        if self.estimated_cost is not None or other.estimated_cost is not None:
            cost = (self.estimated_cost or 0.0) + (other.estimated_cost or 0.0)
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            estimated_cost=cost,
        )


@dataclass(frozen=True)
class GenerationResponse:
    """A provider response for a single call."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    #: Wall-clock time of this call only.
    duration_ms: float = 0.0
    finish_reason: FinishReason = "stop"

    def __post_init__(self) -> None:
        """Validate the finish reason early; adapters map vendor values."""
        if self.finish_reason not in FINISH_REASONS:
            raise ValueError(f"Unknown finish_reason: {self.finish_reason!r}")


@dataclass(frozen=True)
class CodeGenerationResult:
    """What an adapter's generate/fix capability returns."""

    code: str
    language: ExpectedLanguage
    response: GenerationResponse
    extracted_from_delimiters: bool = False


@dataclass(frozen=True)
class ExtractionResult:
    """Output of the extraction engine.

    Attributes:
        code: The extracted artifact text.
        language: Detected or expected kind.
        extracted_from_delimiters: True when taken from delimiters or a fence.
        confidence: Score in [0.0, 1.0].
        original_response: The raw response, kept for diagnostics.
        method: Name of the strategy that produced this result.
    """

    code: str
    language: CodeLanguage
    extracted_from_delimiters: bool
    confidence: float
    original_response: str
    method: str = "whole_response"

    def __post_init__(self) -> None:
        """Normalize and validate the confidence score."""
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError):
            raise ValueError("confidence must be a number") from None
        if math.isnan(confidence) or not (0.0 <= confidence <= 1.0):
            raise ValueError("confidence must be in [0.0, 1.0]")
        object.__setattr__(self, "confidence", confidence)


@dataclass(frozen=True)
class ContinuationResult:
    """Outcome of a (possibly continued) non-streaming generation chain."""

    code: str
    language: ExpectedLanguage
    response: GenerationResponse
    extracted_from_delimiters: bool
    #: Follow-up calls made; 0 when the first response was complete.
    continuation_count: int
    #: True when the last round still ended on the token limit.
    was_truncated: bool
    total_usage: TokenUsage


@dataclass(frozen=True)
class StreamChunk:
    """An incremental piece of a streamed response."""

    text: str
    accumulated_text: str
    index: int
    done: bool = False
    #: Only set on the terminal chunk.
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class StreamResult:
    """Terminal item of an adapter stream."""

    content: str
    response: GenerationResponse
    chunk_count: int


@dataclass(frozen=True)
class StreamingContinuationResult:
    """Outcome of a streamed generation chain spanning one or more streams."""

    content: str
    response: GenerationResponse
    chunk_count: int
    continuation_count: int
    was_truncated: bool
    total_usage: TokenUsage


@dataclass(frozen=True)
class ContinuationConfig:
    """Caller-supplied continuation budget."""

    enabled: bool = True
    max_continuations: int = 3

    def __post_init__(self) -> None:
        """Keep the budget non-negative."""
        if self.max_continuations < 0:
            raise ValueError("ContinuationConfig.max_continuations must be >= 0")


DEFAULT_CONTINUATION_CONFIG = ContinuationConfig()
