"""Confidence-ranked extraction of code from free-form model responses.

Strategies run in a fixed priority order. The first whose confidence clears
``ACCEPT_THRESHOLD`` wins; otherwise the whole response is returned with a
low score. Extraction never raises on odd input: ambiguity is reported as
confidence, not as an exception.

Confidence bands are part of the contract and consumers may branch on them:

====================  ==========
custom delimiters     0.95
tagged fence          0.9
untagged fence        0.8 / 0.6
pattern match         0.7
whole response        0.3 / 0.1
====================  ==========
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING

from codeharvest.types import ExtractionResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from codeharvest.types import CodeLanguage, ExpectedLanguage

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.5

CONFIDENCE_DELIMITERS = 0.95
CONFIDENCE_TAGGED_FENCE = 0.9
CONFIDENCE_FENCE_MATCH = 0.8
CONFIDENCE_FENCE_MISMATCH = 0.6
CONFIDENCE_PATTERN = 0.7
CONFIDENCE_WHOLE_MATCH = 0.3
CONFIDENCE_WHOLE_MISMATCH = 0.1

_DELIMITERS: dict[str, tuple[str, str]] = {
    "al": ("BEGIN-CODE", "END-CODE"),
    "diff": ("BEGIN-DIFF", "END-DIFF"),
}

_FENCE_TAGS: dict[str, tuple[str, ...]] = {
    "al": ("al", "csharp", "c#", "cs", "pascal"),
    "diff": ("diff", "patch"),
}

_GENERIC_FENCE_RE = re.compile(r"```\w*\s*\n([\s\S]*)\n```")

_AL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(codeunit|table|page|report|xmlport|enum|interface|controladdin"
        r"|pageextension|tableextension|reportextension|enumextension)\s+\d+",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(r"^(procedure|trigger|var|begin|end;)", re.IGNORECASE | re.MULTILINE),
)

_DIFF_LINE_PREFIXES: tuple[str, ...] = ("---", "+++", "@@", "+", "-", " ")
#: Pattern-based diffs need more than this many diff-looking lines.
_MIN_DIFF_LINES = 3

_AL_KEYWORDS: tuple[str, ...] = (
    "codeunit",
    "table",
    "page",
    "report",
    "xmlport",
    "enum",
    "interface",
    "pageextension",
    "tableextension",
    "reportextension",
    "enumextension",
    "procedure",
    "trigger",
    "var",
    "begin",
    "end;",
    "record",
    "decimal",
)
_MIN_AL_KEYWORDS = 2

_BACKTICK_LINE_RE = re.compile(r"^\s*`{3,}\s*$")
_AL_CLEANUP_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^```\w*\s*\n?"), ""),
    (re.compile(r"\n?```\s*$"), ""),
    (re.compile(r"^BEGIN-CODE\s*\n?", re.IGNORECASE), ""),
    (re.compile(r"\n?\s*END-CODE\s*$", re.IGNORECASE), ""),
    (re.compile(r"^Here's the AL code.*?:\s*\n", re.IGNORECASE), ""),
    (re.compile(r"^The code is.*?:\s*\n", re.IGNORECASE), ""),
)
_DIFF_HEADER = "--- a/file.al\n+++ b/file.al\n"


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named extraction step in the cascade."""

    name: str
    run: Callable[[str, ExpectedLanguage], ExtractionResult]


def _miss(response: str, expected: ExpectedLanguage, method: str) -> ExtractionResult:
    return ExtractionResult(
        code="",
        language=expected,
        extracted_from_delimiters=False,
        confidence=0.0,
        original_response=response,
        method=method,
    )


def extract_from_delimiters(
    response: str, expected: ExpectedLanguage
) -> ExtractionResult:
    """Take the last ``BEGIN-CODE``/``END-CODE`` (or ``-DIFF``) pair.

    Verbose responses often revise themselves, so later pairs win.
    """
    begin, end = _DELIMITERS[expected]
    pattern = re.compile(
        rf"{begin}\s*\n([\s\S]*?)\n\s*{end}",
        re.IGNORECASE,
    )
    matches = pattern.findall(response)
    if matches and matches[-1]:
        return ExtractionResult(
            code=matches[-1].strip(),
            language=expected,
            extracted_from_delimiters=True,
            confidence=CONFIDENCE_DELIMITERS,
            original_response=response,
            method="custom_delimiters",
        )
    return _miss(response, expected, "custom_delimiters")


def extract_from_code_blocks(
    response: str, expected: ExpectedLanguage
) -> ExtractionResult:
    """Take a markdown fence, preferring one tagged for the expected kind."""
    for tag in _FENCE_TAGS[expected]:
        pattern = re.compile(rf"```{re.escape(tag)}\s*\n([\s\S]*)\n```", re.IGNORECASE)
        match = pattern.search(response)
        if match and match.group(1):
            return ExtractionResult(
                code=match.group(1).strip(),
                language=expected,
                extracted_from_delimiters=True,
                confidence=CONFIDENCE_TAGGED_FENCE,
                original_response=response,
                method="tagged_fence",
            )

    match = _GENERIC_FENCE_RE.search(response)
    if match and match.group(1):
        code = match.group(1).strip()
        detected = detect_language(code)
        return ExtractionResult(
            code=code,
            language=expected if detected == "unknown" else detected,
            extracted_from_delimiters=True,
            confidence=(
                CONFIDENCE_FENCE_MATCH
                if detected == expected
                else CONFIDENCE_FENCE_MISMATCH
            ),
            original_response=response,
            method="untagged_fence",
        )
    return _miss(response, expected, "fence")


def extract_from_patterns(
    response: str, expected: ExpectedLanguage
) -> ExtractionResult:
    """Recognize bare diffs or bare AL objects without any wrapping."""
    if expected == "diff":
        diff_lines = [
            line for line in response.split("\n") if line.startswith(_DIFF_LINE_PREFIXES)
        ]
        if len(diff_lines) > _MIN_DIFF_LINES:
            return ExtractionResult(
                code="\n".join(diff_lines),
                language="diff",
                extracted_from_delimiters=False,
                confidence=CONFIDENCE_PATTERN,
                original_response=response,
                method="pattern",
            )
        return _miss(response, expected, "pattern")

    if any(pattern.search(response) for pattern in _AL_PATTERNS):
        return ExtractionResult(
            code=response,
            language="al",
            extracted_from_delimiters=False,
            confidence=CONFIDENCE_PATTERN,
            original_response=response,
            method="pattern",
        )
    return _miss(response, expected, "pattern")


def extract_whole_response(
    response: str, expected: ExpectedLanguage
) -> ExtractionResult:
    """Last resort: the entire response is the artifact."""
    detected = detect_language(response)
    return ExtractionResult(
        code=response,
        language=detected,
        extracted_from_delimiters=False,
        confidence=(
            CONFIDENCE_WHOLE_MATCH if detected == expected else CONFIDENCE_WHOLE_MISMATCH
        ),
        original_response=response,
        method="whole_response",
    )


EXTRACTION_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("custom_delimiters", extract_from_delimiters),
    ExtractionStrategy("fence", extract_from_code_blocks),
    ExtractionStrategy("pattern", extract_from_patterns),
    ExtractionStrategy("whole_response", extract_whole_response),
)


def extract(response: str, expected: ExpectedLanguage = "al") -> ExtractionResult:
    """Extract the intended code (or diff) from a raw model response.

    Args:
        response: Raw provider text, possibly wrapped in prose.
        expected: The kind of artifact the task asked for.

    Returns:
        The first strategy result with confidence above ``ACCEPT_THRESHOLD``,
        or the whole-response result when none qualify.
    """
    trimmed = response.strip()
    for strategy in EXTRACTION_STRATEGIES:
        result = strategy.run(trimmed, expected)
        if result.confidence > ACCEPT_THRESHOLD:
            logger.debug(
                "Extracted %s via %s (confidence=%.2f)",
                result.language,
                result.method,
                result.confidence,
            )
            return result

    result = extract_whole_response(trimmed, expected)
    logger.debug(
        "No confident extraction; falling back to whole response (confidence=%.2f)",
        result.confidence,
    )
    return result


def detect_language(code: str) -> CodeLanguage:
    """Classify text as a diff, AL code, or unknown using cheap heuristics."""
    if "---" in code and "+++" in code and ("@@" in code or "diff --git" in code):
        return "diff"

    lowered = code.lower()
    hits = sum(1 for keyword in _AL_KEYWORDS if keyword in lowered)
    if hits >= _MIN_AL_KEYWORDS:
        return "al"
    return "unknown"


def clean_code(code: str, language: CodeLanguage) -> str:
    """Strip formatting leftovers from extracted code.

    For AL: fences, custom delimiters, a leading explanatory sentence and
    backtick-only lines are removed and line endings normalized to ``\\n``.
    For diffs: minimal unified-diff headers are added when missing.
    """
    cleaned = code.strip()

    if language == "al":
        for pattern, replacement in _AL_CLEANUP_PATTERNS:
            cleaned = pattern.sub(replacement, cleaned, count=1)
        cleaned = "\n".join(
            line for line in cleaned.split("\n") if not _BACKTICK_LINE_RE.match(line)
        )
        cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    elif language == "diff":
        if not cleaned.startswith(("--- ", "diff --git")):
            cleaned = _DIFF_HEADER + cleaned

    return cleaned


def validate_code(code: str, language: CodeLanguage) -> list[str]:
    """Return human-readable issues with extracted code (empty when fine).

    Issues are informational; nothing here raises.
    """
    issues: list[str] = []

    if not code.strip():
        issues.append("Empty code extracted")
        return issues

    if language == "al":
        if "begin" not in code and "var" not in code and "procedure" not in code:
            issues.append("Code doesn't appear to contain AL structures")
        if "Here's" in code or "```" in code or "This code" in code:
            issues.append("Code contains explanatory text that should be removed")
    elif language == "diff":
        if "+" not in code and "-" not in code:
            issues.append("Diff doesn't contain any changes")
        if "@@" not in code and "---" not in code and "+++" not in code:
            issues.append("Diff missing proper headers")

    return issues
