"""Task-layer entry point: one retried generation plus code extraction.

``LLMCaller`` turns a task attempt into a provider request, runs it through
``call_with_retry``, and returns the cleaned code alongside the raw result.
The first attempt generates code; later attempts ask for a fix using the
previous attempt's code and compiler errors.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Literal, TypeVar

from codeharvest.errors import TerminalProviderError
from codeharvest.extraction import clean_code, extract
from codeharvest.retry import RetryPolicy, call_with_retry
from codeharvest.types import GenerationContext, GenerationRequest

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from codeharvest.providers.base import GenerationAdapter
    from codeharvest.retry import ErrorClassifier
    from codeharvest.types import CodeGenerationResult

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompilationIssue:
    """One compiler diagnostic."""

    file: str
    line: int
    message: str

    def __str__(self) -> str:
        return f"{self.file}:{self.line} - {self.message}"


@dataclass(frozen=True)
class TaskContext:
    """The benchmark task being attempted."""

    task_id: str
    instructions: str
    llm_provider: str
    expected_output: Literal["code", "diff"] = "code"


@dataclass(frozen=True)
class ExecutionAttempt:
    """Outcome of an earlier attempt, used to build fix requests."""

    attempt_number: int
    extracted_code: str
    compilation_errors: tuple[CompilationIssue, ...] = ()


@dataclass(frozen=True)
class LLMCallResult:
    """Raw adapter result plus the cleaned code extracted from it."""

    raw_result: CodeGenerationResult
    extracted_code: str
    code_language: Literal["al", "diff"]


def build_default_context(
    context: TaskContext,
    attempt_number: int,
    previous_attempts: Sequence[ExecutionAttempt],
) -> GenerationContext:
    """Build a ``GenerationContext`` from the task and its last attempt."""
    last = previous_attempts[-1] if previous_attempts else None
    errors: tuple[str, ...] | None = None
    if last is not None and last.compilation_errors:
        errors = tuple(str(issue) for issue in last.compilation_errors)
    return GenerationContext(
        task_id=context.task_id,
        attempt=attempt_number,
        description=context.instructions,
        previous_code=last.extracted_code if last is not None else None,
        errors=errors,
    )


@dataclass
class LLMCaller:
    """Calls adapters with retry and extracts code from their responses."""

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    classifier: ErrorClassifier | None = None
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep

    async def call_with_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        provider: str,
        task_id: str,
        attempt_number: int,
    ) -> T:
        """Run *fn* under this caller's retry policy."""
        return await call_with_retry(
            fn,
            provider=provider,
            task_id=task_id,
            attempt_number=attempt_number,
            max_retries=self.retry_policy.max_retries,
            base_delay_ms=self.retry_policy.base_delay_ms,
            classifier=self.classifier,
            sleep=self.sleep,
        )

    async def call_and_extract_code(
        self,
        adapter: GenerationAdapter,
        context: TaskContext,
        attempt_number: int,
        previous_attempts: Sequence[ExecutionAttempt],
        prompt: str,
        system_prompt: str | None = None,
        generation_context: GenerationContext | None = None,
    ) -> LLMCallResult:
        """Generate (attempt 1) or fix (later attempts), then extract code.

        Raises:
            TerminalProviderError: The provider call failed for good.
        """
        gen_context = generation_context or build_default_context(
            context, attempt_number, previous_attempts
        )
        if system_prompt:
            request = GenerationRequest(prompt=prompt, system_prompt=system_prompt)
        else:
            request = GenerationRequest(prompt=prompt)

        if attempt_number == 1 or not previous_attempts:

            async def call() -> CodeGenerationResult:
                return await adapter.generate_code(request, gen_context)

        else:
            previous_code = previous_attempts[-1].extracted_code

            async def call() -> CodeGenerationResult:
                return await adapter.generate_fix(
                    previous_code, list(gen_context.errors or ()), request, gen_context
                )

        try:
            raw_result = await self.call_with_retry(
                call,
                provider=adapter.name,
                task_id=context.task_id,
                attempt_number=attempt_number,
            )
        except TerminalProviderError as exc:
            logger.error(
                "LLM call failed task=%s attempt=%d provider=%s: %s",
                context.task_id,
                attempt_number,
                adapter.name,
                exc,
            )
            raise

        expected = "diff" if context.expected_output == "diff" else "al"
        extraction = extract(raw_result.response.content, expected)
        language: Literal["al", "diff"] = (
            "diff" if extraction.language == "diff" else "al"
        )
        return LLMCallResult(
            raw_result=raw_result,
            extracted_code=clean_code(extraction.code, language),
            code_language=language,
        )
