"""Configuration: frozen Settings resolved from code or the environment."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

import dotenv

from codeharvest.errors import ConfigurationError
from codeharvest.retry import RetryPolicy
from codeharvest.types import ContinuationConfig

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{name} must be a boolean, got {raw!r}",
        hint="Use one of: 1/0, true/false, yes/no, on/off.",
    )


def _env_number(name: str, default: float, *, integer: bool) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw) if integer else float(raw)
    except ValueError:
        kind = "an integer" if integer else "a number"
        raise ConfigurationError(
            f"{name} must be {kind}, got {raw!r}",
            hint=f"Unset {name} to use the default ({default}).",
        ) from None
    if value < 0:
        raise ConfigurationError(
            f"{name} must be ≥ 0, got {value}",
            hint=f"Unset {name} to use the default ({default}).",
        )
    return value


@dataclass(frozen=True)
class Settings:
    """Immutable pipeline settings.

    Example:
        settings = Settings.from_env()
        caller = LLMCaller(retry_policy=settings.retry)
    """

    continuation: ContinuationConfig = field(default_factory=ContinuationConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``CODEHARVEST_*`` variables (and a ``.env`` file).

        Raises:
            ConfigurationError: A variable is set to an invalid value.
        """
        dotenv.load_dotenv()
        defaults_continuation = ContinuationConfig()
        defaults_retry = RetryPolicy()
        return cls(
            continuation=ContinuationConfig(
                enabled=_env_bool(
                    "CODEHARVEST_CONTINUATION_ENABLED", defaults_continuation.enabled
                ),
                max_continuations=int(
                    _env_number(
                        "CODEHARVEST_MAX_CONTINUATIONS",
                        defaults_continuation.max_continuations,
                        integer=True,
                    )
                ),
            ),
            retry=RetryPolicy(
                max_retries=int(
                    _env_number(
                        "CODEHARVEST_MAX_RETRIES",
                        defaults_retry.max_retries,
                        integer=True,
                    )
                ),
                base_delay_ms=_env_number(
                    "CODEHARVEST_RETRY_BASE_MS",
                    defaults_retry.base_delay_ms,
                    integer=False,
                ),
            ),
        )
