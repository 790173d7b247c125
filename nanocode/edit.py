"""String replacement engine for the edit tool.

Matching is exact and literal. Counting and replacing both scan left to
right for non-overlapping occurrences, so "one occurrence" means the same
thing on the single-replace and replace-all paths.
"""

from __future__ import annotations


def count_occurrences(content: str, old: str) -> int:
    """Number of non-overlapping occurrences of old in content."""
    if not old:
        return 0
    return content.count(old)


def replace(content: str, old: str, new: str, replace_all: bool = False) -> str:
    """Replace old with new in content.

    Raises ValueError:
      - "old string must not be empty"
      - "old string not found"
      - "old string appears N times, ..." if N > 1 and replace_all is False
    """
    if not old:
        raise ValueError("old string must not be empty")

    count = count_occurrences(content, old)
    if count == 0:
        raise ValueError("old string not found")
    if count > 1 and not replace_all:
        raise ValueError(
            f"old string appears {count} times, must be unique (or use all=true)"
        )

    if replace_all:
        return content.replace(old, new)
    return content.replace(old, new, 1)
