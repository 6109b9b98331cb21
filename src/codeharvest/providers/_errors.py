"""Provider-side error mapping.

Adapters funnel every SDK or transport failure through ``wrap_provider_error``
so the retry layer sees a ``ProviderError`` carrying status, Retry-After and
retryability instead of vendor-specific exception types.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from codeharvest.errors import (
    ProviderError,
    RateLimitError,
    TransientProviderError,
    _walk_exception_chain,
)

#: Statuses worth another attempt; shared with the retry classifier.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

#: Protobuf Duration strings such as ``"8s"`` or ``"8.35s"``.
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _as_http_status(value: object) -> int | None:
    if isinstance(value, int) and 100 <= value <= 599:
        return value
    return None


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status found on *exc*, its response, or anything it chains to."""
    for e in _walk_exception_chain(exc):
        candidates = (
            getattr(e, "status_code", None),
            getattr(e, "status", None),
            getattr(getattr(e, "response", None), "status_code", None),
        )
        for candidate in candidates:
            status = _as_http_status(candidate)
            if status is not None:
                return status
    return None


def _header_retry_after(e: BaseException) -> float | None:
    headers: Any = getattr(getattr(e, "response", None), "headers", None)
    if headers is None or not hasattr(headers, "get"):
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str):
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        # HTTP-date form; not worth parsing for a backoff hint.
        return None
    return seconds if seconds >= 0 else None


def _retry_info_delay(e: BaseException) -> float | None:
    """``retryDelay`` from a google.rpc ``RetryInfo`` entry in ``e.details``."""
    details: Any = getattr(e, "details", None)
    error: Any = details.get("error") if isinstance(details, dict) else None
    entries: Any = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION_RE.match(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Server-requested delay in seconds, from anywhere in the exception chain.

    Checked per exception: a ``retry_after`` attribute, a ``Retry-After``
    response header, then a ``RetryInfo`` error detail.
    """
    for e in _walk_exception_chain(exc):
        attr = getattr(e, "retry_after", None)
        if isinstance(attr, (int, float)) and attr >= 0:
            return float(attr)
        for finder in (_header_retry_after, _retry_info_delay):
            seconds = finder(e)
            if seconds is not None:
                return seconds
    return None


def _auth_hint(provider: str, status_code: int | None, cause_message: str) -> str | None:
    """Point at the conventional API key variable for credential failures."""
    lowered = cause_message.lower()
    bad_key = status_code == 400 and ("api key" in lowered or "api_key" in lowered)
    if status_code in {401, 403} or bad_key:
        env_var = f"{provider.upper().replace('-', '_')}_API_KEY"
        return f"Check credentials/permissions (try setting {env_var})."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str = "generate",
    message: str | None = None,
    hint: str | None = None,
) -> ProviderError:
    """Map SDK/transport exceptions into ``ProviderError`` with retry metadata.

    A 429 becomes ``RateLimitError``; other retryable failures (retryable
    status, Retry-After, transport errors) become ``TransientProviderError``.
    A non-retryable status gives ``retryable=False``; with no signal at all
    ``retryable`` stays ``None`` and the retry classifier decides.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    # None means "no signal"; the retry classifier then falls back to its own checks.
    retryable: bool | None = None
    if retry_after_s is not None or status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif status_code is not None:
        retryable = False
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.RequestError, TimeoutError)):
                retryable = True
                break

    derived_hint = hint if hint is not None else _auth_hint(provider, status_code, str(exc))
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    full_message = f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}"

    err_cls: type[ProviderError] = ProviderError
    if status_code == 429:
        err_cls = RateLimitError
    elif retryable:
        err_cls = TransientProviderError

    return err_cls(
        full_message,
        hint=derived_hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
