"""Retry-wrapped provider calls with explicit error contracts.

Design goals:
- Small API surface
- Classification is pluggable so provider-specific signals (Retry-After,
  RetryInfo) can override generic linear backoff
- Every failure ends as either a success or a ``TerminalProviderError``;
  errors are never dropped
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

import httpx

from codeharvest.errors import (
    GenerationCancelledError,
    ProviderError,
    TerminalProviderError,
    _walk_exception_chain,
)
from codeharvest.providers._errors import (
    RETRYABLE_STATUS_CODES,
    extract_retry_after_s,
    extract_status_code,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

_TRANSIENT_MESSAGE_MARKERS: tuple[str, ...] = (
    "rate limit",
    "429",
    "timeout",
    "econnreset",
    "enotfound",
    "temporarily unavailable",
)
_RETRY_HINT_RE = re.compile(r"retry.+?(\d+)\s*(seconds?|s|ms)", re.IGNORECASE)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with linear backoff.

    The n-th retry (0-based) waits ``base_delay_ms * (n + 1)`` unless the
    classifier supplies a server-specified delay.
    """

    max_retries: int = 5
    base_delay_ms: float = 1000.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("RetryPolicy.base_delay_ms must be >= 0")

    def fallback_delay_ms(self, retry_index: int) -> float:
        """Linear backoff for the retry at *retry_index* (0-based)."""
        return self.base_delay_ms * (retry_index + 1)


@runtime_checkable
class ErrorClassifier(Protocol):
    """Decides whether an error is transient and how long to back off."""

    def is_retryable(self, exc: BaseException) -> bool: ...  # noqa: D102
    def get_retry_delay(self, exc: BaseException, fallback_ms: float) -> float: ...  # noqa: D102


def _is_transient_network_error(exc: BaseException) -> bool:
    # SDKs often wrap transport errors, so look through the whole chain.
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


class DefaultErrorClassifier:
    """Provider-neutral classifier.

    Contract:
    - Cancellation (task or user) is never retried.
    - ``ProviderError`` honors its ``retryable`` flag, then its status code.
    - Transport timeouts/request errors anywhere in the chain are retried.
    - As a last resort, well-known transient phrases in the message count.
    """

    def is_retryable(self, exc: BaseException) -> bool:
        """Return True when *exc* looks transient."""
        if isinstance(exc, (asyncio.CancelledError, GenerationCancelledError)):
            return False

        if isinstance(exc, ProviderError):
            if exc.retryable is not None:
                return exc.retryable
            if isinstance(exc.status_code, int):
                return exc.status_code in RETRYABLE_STATUS_CODES

        if _is_transient_network_error(exc):
            return True

        status_code = extract_status_code(exc)
        if status_code is not None:
            return status_code in RETRYABLE_STATUS_CODES

        message = str(exc).lower()
        return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)

    def get_retry_delay(self, exc: BaseException, fallback_ms: float) -> float:
        """Return the delay in milliseconds before the next attempt."""
        if isinstance(exc, ProviderError) and exc.retry_after_s is not None:
            return float(exc.retry_after_s) * 1000.0

        retry_after_s = extract_retry_after_s(exc)
        if retry_after_s is not None:
            return retry_after_s * 1000.0

        match = _RETRY_HINT_RE.search(str(exc))
        if match:
            value = int(match.group(1))
            unit = match.group(2).lower()
            return float(value * 1000 if unit.startswith("s") else value)

        return fallback_ms


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    provider: str,
    task_id: str,
    attempt_number: int,
    max_retries: int = 5,
    base_delay_ms: float = 1000.0,
    classifier: ErrorClassifier | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``fn()``, retrying transient failures.

    Makes at most ``max_retries + 1`` calls. Non-retryable errors and the last
    error after exhausting retries are raised as ``TerminalProviderError``
    with the task/attempt context attached and the original as ``__cause__``.
    """
    classifier = classifier or DefaultErrorClassifier()

    for retry in range(max_retries + 1):
        try:
            return await fn()
        except (asyncio.CancelledError, GenerationCancelledError):
            raise
        except Exception as exc:
            if retry < max_retries and classifier.is_retryable(exc):
                delay_ms = classifier.get_retry_delay(
                    exc, base_delay_ms * (retry + 1)
                )
                logger.warning(
                    "Provider call failed, retrying (retry=%d/%d provider=%s task=%s delay_ms=%.0f): %s",
                    retry + 1,
                    max_retries,
                    provider,
                    task_id,
                    delay_ms,
                    exc,
                )
                if delay_ms > 0:
                    await sleep(delay_ms / 1000.0)
                continue

            status_code = exc.status_code if isinstance(exc, ProviderError) else None
            raise TerminalProviderError(
                f"LLM call failed after {retry + 1} attempt(s): {exc}",
                provider=provider,
                task_id=task_id,
                attempt_number=attempt_number,
                original_error=exc,
                hint=exc.hint if isinstance(exc, ProviderError) else None,
                status_code=status_code,
            ) from exc

    # Unreachable: the final iteration either returns or raises.
    raise AssertionError("call_with_retry exhausted without a result")  # pragma: no cover
