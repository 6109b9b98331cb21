from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from codeharvest.errors import (
    GenerationCancelledError,
    ProviderError,
    RateLimitError,
    TerminalProviderError,
    TransientProviderError,
)
from codeharvest.retry import DefaultErrorClassifier, RetryPolicy, call_with_retry

pytestmark = pytest.mark.unit


class _Flaky:
    """Fails with the given errors in order, then returns ``value``."""

    def __init__(self, errors: list[BaseException], value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _kwargs(sleep: _RecordingSleep, **overrides: object) -> dict[str, object]:
    return {
        "provider": "mock",
        "task_id": "CG-AL-E001",
        "attempt_number": 1,
        "sleep": sleep,
        **overrides,
    }


@pytest.mark.asyncio
async def test_retries_transient_errors_with_linear_backoff(
    caplog: pytest.LogCaptureFixture,
) -> None:
    sleep = _RecordingSleep()
    fn = _Flaky([Exception("Rate limit exceeded"), Exception("socket timeout")])

    with caplog.at_level(logging.WARNING, logger="codeharvest.retry"):
        result = await call_with_retry(fn, **_kwargs(sleep))

    assert result == "ok"
    assert fn.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert caplog.text.count("retrying") == 2


@pytest.mark.asyncio
async def test_non_retryable_error_fails_immediately() -> None:
    sleep = _RecordingSleep()
    original = ValueError("invalid prompt")
    fn = _Flaky([original])

    with pytest.raises(TerminalProviderError) as info:
        await call_with_retry(fn, **_kwargs(sleep, attempt_number=2))

    err = info.value
    assert fn.calls == 1
    assert sleep.delays == []
    assert err.retryable is False
    assert err.original_error is original
    assert err.__cause__ is original
    assert err.context == {
        "provider": "mock",
        "task_id": "CG-AL-E001",
        "attempt_number": 2,
        "original_error": "invalid prompt",
    }
    assert "after 1 attempt(s)" in str(err)


@pytest.mark.asyncio
async def test_exhaustion_makes_max_retries_plus_one_calls() -> None:
    sleep = _RecordingSleep()
    fn = _Flaky([TransientProviderError("503") for _ in range(10)])

    with pytest.raises(TerminalProviderError, match="after 4 attempt"):
        await call_with_retry(fn, **_kwargs(sleep, max_retries=3, base_delay_ms=10))

    assert fn.calls == 4
    assert sleep.delays == pytest.approx([0.01, 0.02, 0.03])


@pytest.mark.asyncio
async def test_zero_retries_calls_once() -> None:
    fn = _Flaky([TransientProviderError("503")])
    with pytest.raises(TerminalProviderError):
        await call_with_retry(fn, **_kwargs(_RecordingSleep(), max_retries=0))
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_server_retry_after_wins_over_backoff() -> None:
    sleep = _RecordingSleep()
    fn = _Flaky([RateLimitError("slow down", retry_after_s=7.0)])

    await call_with_retry(fn, **_kwargs(sleep))

    assert sleep.delays == [7.0]


@pytest.mark.asyncio
async def test_cancellation_is_not_wrapped() -> None:
    fn = _Flaky([asyncio.CancelledError()])
    with pytest.raises(asyncio.CancelledError):
        await call_with_retry(fn, **_kwargs(_RecordingSleep()))
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_user_cancellation_is_not_wrapped() -> None:
    fn = _Flaky([GenerationCancelledError("Generation cancelled: user abort")])
    with pytest.raises(GenerationCancelledError, match="user abort"):
        await call_with_retry(fn, **_kwargs(_RecordingSleep()))
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_zero_retry_after_means_no_wait() -> None:
    sleep = _RecordingSleep()
    fn = _Flaky([RateLimitError("retry in 30 seconds", retry_after_s=0.0)])

    assert await call_with_retry(fn, **_kwargs(sleep)) == "ok"
    assert fn.calls == 2
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_custom_classifier_is_used() -> None:
    class NeverRetry:
        def is_retryable(self, exc: BaseException) -> bool:
            return False

        def get_retry_delay(self, exc: BaseException, fallback_ms: float) -> float:
            return fallback_ms

    fn = _Flaky([TransientProviderError("503")])
    with pytest.raises(TerminalProviderError):
        await call_with_retry(fn, **_kwargs(_RecordingSleep(), classifier=NeverRetry()))
    assert fn.calls == 1


class TestDefaultErrorClassifier:
    classifier = DefaultErrorClassifier()

    @pytest.mark.parametrize(
        "exc",
        [
            Exception("Rate limit exceeded"),
            Exception("HTTP 429"),
            Exception("ECONNRESET"),
            Exception("getaddrinfo ENOTFOUND api.example.com"),
            Exception("Service temporarily unavailable"),
            TimeoutError(),
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            ProviderError("x", status_code=503),
            TransientProviderError("x"),
        ],
    )
    def test_retryable(self, exc: BaseException) -> None:
        assert self.classifier.is_retryable(exc) is True

    @pytest.mark.parametrize(
        "exc",
        [
            ValueError("bad input"),
            ProviderError("x", status_code=400),
            ProviderError("x", retryable=False, status_code=503),
            asyncio.CancelledError(),
            GenerationCancelledError("Generation cancelled: timeout"),
        ],
    )
    def test_not_retryable(self, exc: BaseException) -> None:
        assert self.classifier.is_retryable(exc) is False

    def test_unknown_provider_error_falls_back_to_message(self) -> None:
        assert self.classifier.is_retryable(ProviderError("rate limit hit")) is True
        assert self.classifier.is_retryable(ProviderError("bad request")) is False

    def test_retryable_found_in_cause_chain(self) -> None:
        try:
            try:
                raise httpx.ConnectTimeout("connect")
            except httpx.ConnectTimeout as inner:
                raise RuntimeError("sdk failure") from inner
        except RuntimeError as outer:
            assert self.classifier.is_retryable(outer) is True

    def test_delay_from_retry_after_header(self) -> None:
        request = httpx.Request("POST", "https://api.example.com")
        response = httpx.Response(429, headers={"Retry-After": "3"}, request=request)
        exc = httpx.HTTPStatusError("429", request=request, response=response)

        assert self.classifier.is_retryable(exc) is True
        assert self.classifier.get_retry_delay(exc, 500.0) == 3000.0

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Please retry after 2 seconds", 2000.0),
            ("retry in 5s", 5000.0),
            ("retry in 250ms", 250.0),
            ("no hint here", 1234.0),
        ],
    )
    def test_delay_from_message(self, message: str, expected: float) -> None:
        assert self.classifier.get_retry_delay(Exception(message), 1234.0) == expected


def test_retry_policy_backoff_and_validation() -> None:
    policy = RetryPolicy()
    assert (policy.max_retries, policy.base_delay_ms) == (5, 1000.0)
    assert [policy.fallback_delay_ms(i) for i in range(3)] == [1000.0, 2000.0, 3000.0]
    with pytest.raises(ValueError, match="max_retries"):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError, match="base_delay_ms"):
        RetryPolicy(base_delay_ms=-1)
