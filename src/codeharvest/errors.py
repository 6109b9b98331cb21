"""Exception hierarchy for codeharvest."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CodeHarvestError(Exception):
    """Base exception for all codeharvest errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CodeHarvestError):
    """Configuration validation or resolution failed."""


class GenerationCancelledError(CodeHarvestError):
    """A streaming generation chain was cancelled by its caller."""


class ProviderError(CodeHarvestError):
    """Provider call failed.

    Adapters attach retry metadata so the caller can perform bounded retries
    without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class TransientProviderError(ProviderError):
    """Network failure, 5xx or similar; worth retrying."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = True,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=retryable,
            status_code=status_code,
            retry_after_s=retry_after_s,
            provider=provider,
            phase=phase,
        )


class RateLimitError(TransientProviderError):
    """Rate limit exceeded (HTTP 429)."""


class TerminalProviderError(ProviderError):
    """A provider call failed for good.

    Raised when an error is not retryable or when retries are exhausted. The
    task/attempt context travels with the error so the task layer can report
    it without re-deriving anything.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        task_id: str,
        attempt_number: int,
        original_error: BaseException | None = None,
        hint: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=False,
            status_code=status_code,
            provider=provider,
            phase="generate",
        )
        self.task_id = task_id
        self.attempt_number = attempt_number
        self.original_error = original_error

    @property
    def context(self) -> dict[str, object]:
        """Structured context for logging and reports."""
        return {
            "provider": self.provider,
            "task_id": self.task_id,
            "attempt_number": self.attempt_number,
            "original_error": str(self.original_error)
            if self.original_error is not None
            else None,
        }


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
