from __future__ import annotations

import pytest

from codeharvest.config import Settings
from codeharvest.errors import ConfigurationError
from codeharvest.retry import RetryPolicy
from codeharvest.types import ContinuationConfig

pytestmark = pytest.mark.unit


def test_defaults() -> None:
    settings = Settings()
    assert settings.continuation == ContinuationConfig(enabled=True, max_continuations=3)
    assert settings.retry == RetryPolicy(max_retries=5, base_delay_ms=1000.0)


def test_from_env_without_variables_uses_defaults() -> None:
    assert Settings.from_env() == Settings()


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CODEHARVEST_CONTINUATION_ENABLED", "false")
    monkeypatch.setenv("CODEHARVEST_MAX_CONTINUATIONS", "5")
    monkeypatch.setenv("CODEHARVEST_MAX_RETRIES", "0")
    monkeypatch.setenv("CODEHARVEST_RETRY_BASE_MS", "250.5")

    settings = Settings.from_env()

    assert settings.continuation == ContinuationConfig(enabled=False, max_continuations=5)
    assert settings.retry == RetryPolicy(max_retries=0, base_delay_ms=250.5)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("CODEHARVEST_CONTINUATION_ENABLED", "maybe"),
        ("CODEHARVEST_MAX_CONTINUATIONS", "three"),
        ("CODEHARVEST_MAX_CONTINUATIONS", "-1"),
        ("CODEHARVEST_MAX_RETRIES", "1.5"),
        ("CODEHARVEST_RETRY_BASE_MS", "fast"),
    ],
)
def test_from_env_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError) as info:
        Settings.from_env()

    assert name in str(info.value)
    assert info.value.hint


def test_from_env_loads_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []
    monkeypatch.setattr("dotenv.load_dotenv", lambda *a, **k: calls.append(True))

    Settings.from_env()

    assert calls == [True]
