"""
Edit-distance text similarity.

similarity(a, b) = 1 - distance(a, b) / max(len(a), len(b)), with two empty
strings defined as identical. Distance is the unit-cost Levenshtein
recurrence (insert, delete, substitute), computed over code points.
"""

from __future__ import annotations


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row dynamic programming; row i holds distances for a[:i].
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (0 if ca == cb else 1),
            )
        previous = current
    return previous[len(b)]


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / max_len
