"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, shared test doubles,
and automatic API test skipping. Fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os

import pytest

from codeharvest.types import (
    CodeGenerationResult,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
    TokenUsage,
)

# =============================================================================
# Test Doubles
# =============================================================================


def make_response(
    content: str,
    *,
    finish_reason: str = "stop",
    usage: TokenUsage | None = None,
    model: str = "fake-model",
    duration_ms: float = 5.0,
) -> GenerationResponse:
    """Build a ``GenerationResponse`` with test-friendly defaults."""
    return GenerationResponse(
        content=content,
        model=model,
        usage=usage or TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        duration_ms=duration_ms,
        finish_reason=finish_reason,  # type: ignore[arg-type]
    )


@dataclass
class FakeAdapter:
    """Adapter test double satisfying ``GenerationAdapter``.

    Records every call and returns canned code. Use to test the task layer
    without extraction or provider plumbing.
    """

    name: str = "fake"
    content: str = "BEGIN-CODE\ncodeunit 50100 Test\n{\n}\nEND-CODE"
    generate_calls: list[tuple[GenerationRequest, GenerationContext]] = field(
        default_factory=list
    )
    fix_calls: list[tuple[str, list[str], GenerationRequest, GenerationContext]] = field(
        default_factory=list
    )

    async def generate_code(
        self, request: GenerationRequest, context: GenerationContext
    ) -> CodeGenerationResult:
        self.generate_calls.append((request, context))
        return CodeGenerationResult(
            code=self.content, language="al", response=make_response(self.content)
        )

    async def generate_fix(
        self,
        original_code: str,
        errors: list[str],
        request: GenerationRequest,
        context: GenerationContext,
    ) -> CodeGenerationResult:
        self.fix_calls.append((original_code, list(errors), request, context))
        return CodeGenerationResult(
            code=self.content, language="diff", response=make_response(self.content)
        )


@pytest.fixture
def generation_context() -> GenerationContext:
    """A plain first-attempt context."""
    return GenerationContext(task_id="CG-AL-E001", attempt=1, description="Write a codeunit")


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_codeharvest_env(request, monkeypatch):
    """Ensure a clean CODEHARVEST_* environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith("CODEHARVEST_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
