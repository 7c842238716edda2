"""
Crow name validation.
"""

from __future__ import annotations

from better_profanity import profanity

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 30


def normalize_name(text: str) -> str:
    return (text or "").strip().lower()


def is_valid_name(text: str) -> bool:
    """True when the trimmed, lowercased name is 2-30 chars and not profane."""
    normalized = normalize_name(text)
    if not MIN_NAME_LENGTH <= len(normalized) <= MAX_NAME_LENGTH:
        return False
    return not profanity.contains_profanity(normalized)
