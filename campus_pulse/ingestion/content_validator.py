"""
Free-text answer screening.

Conservative filter for form answers: placeholders and plain negatives
never raise an alert. There is no attempt to read intent, so an answer
like "no issues here" still counts as meaningful.
"""

from __future__ import annotations

from typing import Any

PLACEHOLDER_ANSWERS: frozenset[str] = frozenset({"no", "na", "none", "nil"})
MIN_MEANINGFUL_LENGTH: int = 3
MIN_COMMENTARY_LENGTH: int = 6


def is_meaningful(value: Any) -> bool:
    """True when ``value`` is a free-text answer worth alerting on."""
    if not value or not isinstance(value, str):
        return False
    trimmed = value.strip().lower()
    if trimmed == "" or trimmed in PLACEHOLDER_ANSWERS:
        return False
    if len(trimmed) < MIN_MEANINGFUL_LENGTH:
        return False
    return True


def is_meaningful_commentary(value: Any) -> bool:
    """Competency commentary threshold: more than 5 characters, not "na"."""
    if not value or not isinstance(value, str):
        return False
    trimmed = value.strip()
    return len(trimmed) >= MIN_COMMENTARY_LENGTH and trimmed.lower() != "na"
