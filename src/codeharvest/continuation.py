"""Continuation of truncated generations.

When a response stops on the token limit (finish reason ``"length"``), the
controller asks the model to resume from where it stopped, repeating until the
output completes or the continuation budget runs out. Raw content is
concatenated as received; extracted code is spliced with overlap detection.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import dataclasses
import logging

from codeharvest.merge import merge_code
from codeharvest.types import (
    DEFAULT_CONTINUATION_CONFIG,
    CodeGenerationResult,
    ContinuationConfig,
    ContinuationResult,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
)

logger = logging.getLogger(__name__)

GenerateFn = Callable[
    [GenerationRequest, GenerationContext], Awaitable[CodeGenerationResult]
]

#: Trailing characters of prior output echoed back in a continuation prompt.
CONTEXT_TAIL_CHARS = 500

_CONTINUATION_INSTRUCTIONS = """
---
IMPORTANT: Your previous response was cut off due to length limits.
Continue generating the code from exactly where you stopped.
DO NOT repeat any code you already generated.
DO NOT include any preamble or explanation - just continue the code.

Here is the last part of your previous response for context:
```
{tail}
```

Continue from this exact point:"""


def was_truncated(response: GenerationResponse) -> bool:
    """Return True when the provider stopped on its token limit."""
    return response.finish_reason == "length"


def last_chunk(content: str, max_length: int = CONTEXT_TAIL_CHARS) -> str:
    """Return at most the last *max_length* characters of *content*."""
    if len(content) <= max_length:
        return content
    return content[-max_length:]


def build_continuation_prompt(original_prompt: str, tail: str) -> str:
    """Original prompt, resume instructions, and the tail of prior output."""
    return f"{original_prompt}\n{_CONTINUATION_INSTRUCTIONS.format(tail=tail)}"


def build_continuation_request(
    request: GenerationRequest, accumulated_content: str
) -> GenerationRequest:
    """Derive the next round's request; only the prompt changes."""
    return dataclasses.replace(
        request,
        prompt=build_continuation_prompt(request.prompt, last_chunk(accumulated_content)),
    )


def build_continuation_context(
    context: GenerationContext, continuation_attempt: int, previous_content_length: int
) -> GenerationContext:
    """Copy *context*, recording continuation bookkeeping in its metadata."""
    return dataclasses.replace(
        context,
        metadata={
            **context.metadata,
            "continuation_attempt": continuation_attempt,
            "previous_content_length": previous_content_length,
        },
    )


def should_continue(
    response: GenerationResponse, config: ContinuationConfig, continuation_count: int
) -> bool:
    """Whether another continuation round is needed and allowed."""
    return (
        config.enabled
        and was_truncated(response)
        and continuation_count < config.max_continuations
    )


async def generate_with_continuation(
    generate_fn: GenerateFn,
    request: GenerationRequest,
    context: GenerationContext,
    config: ContinuationConfig | None = None,
) -> ContinuationResult:
    """Generate, continuing truncated output until complete or out of budget.

    Args:
        generate_fn: One generation call (no continuation of its own).
        request: The original request.
        context: The task context; continuation rounds get a copy with
            continuation metadata.
        config: Continuation budget; defaults to enabled with 3 rounds.

    Returns:
        A ``ContinuationResult`` whose response content is the raw
        concatenation of every round, whose code is the overlap-merged code,
        and whose usage is the field-wise sum of all rounds. Model, duration
        and finish reason come from the last round only.
    """
    config = config or DEFAULT_CONTINUATION_CONFIG

    result = await generate_fn(request, context)
    continuation_count = 0
    accumulated_content = result.response.content
    accumulated_code = result.code
    total_usage = result.response.usage

    while should_continue(result.response, config, continuation_count):
        continuation_count += 1
        logger.info(
            "Response truncated; requesting continuation %d/%d task=%s (chars=%d)",
            continuation_count,
            config.max_continuations,
            context.task_id,
            len(accumulated_content),
        )

        result = await generate_fn(
            build_continuation_request(request, accumulated_content),
            build_continuation_context(
                context, continuation_count, len(accumulated_content)
            ),
        )

        accumulated_content += result.response.content
        accumulated_code = merge_code(accumulated_code, result.code, result.language)
        total_usage = total_usage + result.response.usage

    truncated = was_truncated(result.response)
    if truncated and config.enabled and continuation_count:
        logger.warning(
            "Continuation budget exhausted task=%s after %d round(s)",
            context.task_id,
            continuation_count,
        )

    final_response = GenerationResponse(
        content=accumulated_content,
        model=result.response.model,
        usage=total_usage,
        # Per-call wall time of the last round, not a sum.
        duration_ms=result.response.duration_ms,
        finish_reason=result.response.finish_reason,
    )
    return ContinuationResult(
        code=accumulated_code,
        language=result.language,
        response=final_response,
        extracted_from_delimiters=result.extracted_from_delimiters,
        continuation_count=continuation_count,
        was_truncated=truncated,
        total_usage=total_usage,
    )


def create_truncation_warning(continuation_count: int, truncated: bool) -> str | None:
    """Return an advisory about truncation, or None when there is nothing to say."""
    if truncated:
        if continuation_count > 0:
            return (
                f"Response was truncated after {continuation_count} continuation "
                "attempt(s). Output may be incomplete."
            )
        return (
            "Response was truncated due to token limits. "
            "Consider increasing max_tokens."
        )
    if continuation_count > 0:
        return f"Response required {continuation_count} continuation(s) to complete."
    return None
