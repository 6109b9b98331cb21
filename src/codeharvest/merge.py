"""Overlap-aware merging of continuation rounds.

Models resuming a cut-off answer often re-emit the tail of what they already
wrote. These helpers find that repeated boundary and splice rounds together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codeharvest.types import CodeLanguage

#: Longest overlap considered; provider-repeated tails are always short.
MAX_OVERLAP_WINDOW = 200
#: Overlaps this short are treated as coincidence, not duplication.
MIN_SIGNIFICANT_OVERLAP = 10


def find_overlap(tail: str, head: str, *, max_window: int = MAX_OVERLAP_WINDOW) -> int:
    """Return the length of the longest suffix of *tail* that prefixes *head*.

    Candidate lengths are scanned from ``min(len(tail), len(head), max_window)``
    downward, so the first hit is the longest one. Returns 0 when none match.
    """
    longest = min(len(tail), len(head), max_window)
    for length in range(longest, 0, -1):
        if tail[-length:] == head[:length]:
            return length
    return 0


def merge_code(accumulated: str, continuation: str, language: CodeLanguage) -> str:
    """Append *continuation* to *accumulated*, dropping a duplicated boundary.

    ``language`` is accepted for call-site symmetry; al and diff merge the
    same way.
    """
    del language
    trimmed = continuation.lstrip()
    overlap = find_overlap(accumulated, trimmed)
    if overlap > MIN_SIGNIFICANT_OVERLAP:
        return accumulated + trimmed[overlap:]
    # Providers usually drop the boundary newline when resuming.
    return accumulated + "\n" + trimmed
