"""Input validator: rejects malformed, oversized, or unsafe user messages.

This is a defense-in-depth layer only, not content moderation. The checks
run in order and the first failure wins:
- Empty (or not a string) after trimming whitespace
- Longer than the configured maximum
- Matches a known script-injection pattern
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from chatline.core.errors import DEFAULT_MAX_LENGTH, describe_validation

EMPTY = "empty"
TOO_LONG = "too long"
UNSAFE = "unsafe content"

# Patterns that indicate markup or script injection
UNSAFE_PATTERNS = [
    r"<script\b",
    r"javascript:",
    r"on\w+\s*=",  # Inline event handlers: onclick=, onload=, ...
    r"eval\s*\(",
]

# Compiled patterns for performance
_UNSAFE_RE = [re.compile(p, re.IGNORECASE) for p in UNSAFE_PATTERNS]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one message."""

    valid: bool
    error: str | None = None
    max_length: int = DEFAULT_MAX_LENGTH

    @property
    def detail(self) -> str | None:
        if self.error is None:
            return None
        return describe_validation(self.error, self.max_length)


VALID = ValidationResult(valid=True)


def validate(content: Any, max_length: int = DEFAULT_MAX_LENGTH) -> ValidationResult:
    """Validate raw message text. Pure function of its input."""
    if not isinstance(content, str):
        return ValidationResult(valid=False, error=EMPTY)

    trimmed = content.strip()
    if not trimmed:
        return ValidationResult(valid=False, error=EMPTY)

    if len(trimmed) > max_length:
        return ValidationResult(valid=False, error=TOO_LONG, max_length=max_length)

    for pattern in _UNSAFE_RE:
        if pattern.search(trimmed):
            return ValidationResult(valid=False, error=UNSAFE)

    return VALID


def normalize(content: str) -> str:
    """Canonical form stored in history.

    Removes null bytes, normalizes line endings and trims whitespace.
    """
    content = content.replace("\x00", "")
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    return content.strip()
