"""codeharvest: reconstruct complete code from unreliable LLM responses.

Public API:
    - LLMCaller: retried generate/fix calls with code extraction
    - generate_with_continuation(): resume truncated generations
    - generate_with_continuation_stream(): the same, streamed
    - merge_code(): splice overlapping continuation output
    - extract(): confidence-ranked code extraction
    - Settings: configuration dataclass
"""

from __future__ import annotations

import logging

from codeharvest.caller import (
    CompilationIssue,
    ExecutionAttempt,
    LLMCaller,
    LLMCallResult,
    TaskContext,
)
from codeharvest.config import Settings
from codeharvest.continuation import (
    create_truncation_warning,
    generate_with_continuation,
)
from codeharvest.discovery import DiscoveryResult, ModelDiscovery
from codeharvest.errors import (
    CodeHarvestError,
    ConfigurationError,
    GenerationCancelledError,
    ProviderError,
    RateLimitError,
    TerminalProviderError,
    TransientProviderError,
)
from codeharvest.extraction import clean_code, detect_language, extract, validate_code
from codeharvest.merge import find_overlap, merge_code
from codeharvest.retry import (
    DefaultErrorClassifier,
    ErrorClassifier,
    RetryPolicy,
    call_with_retry,
)
from codeharvest.stream_continuation import (
    ContinuationStream,
    StreamPhase,
    generate_with_continuation_stream,
)
from codeharvest.streaming import CancellationToken, StreamOptions
from codeharvest.types import (
    CodeGenerationResult,
    ContinuationConfig,
    ContinuationResult,
    ExtractionResult,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
    StreamChunk,
    StreamingContinuationResult,
    StreamResult,
    TokenUsage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("codeharvest")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("codeharvest").addHandler(logging.NullHandler())

__all__ = [
    "CancellationToken",
    "CodeGenerationResult",
    "CodeHarvestError",
    "CompilationIssue",
    "ConfigurationError",
    "ContinuationConfig",
    "ContinuationResult",
    "ContinuationStream",
    "DefaultErrorClassifier",
    "DiscoveryResult",
    "ErrorClassifier",
    "ExecutionAttempt",
    "ExtractionResult",
    "GenerationCancelledError",
    "GenerationContext",
    "GenerationRequest",
    "GenerationResponse",
    "LLMCallResult",
    "LLMCaller",
    "ModelDiscovery",
    "ProviderError",
    "RateLimitError",
    "RetryPolicy",
    "Settings",
    "StreamChunk",
    "StreamOptions",
    "StreamPhase",
    "StreamResult",
    "StreamingContinuationResult",
    "TaskContext",
    "TerminalProviderError",
    "TokenUsage",
    "TransientProviderError",
    "call_with_retry",
    "clean_code",
    "create_truncation_warning",
    "detect_language",
    "extract",
    "find_overlap",
    "generate_with_continuation",
    "generate_with_continuation_stream",
    "merge_code",
    "validate_code",
]
