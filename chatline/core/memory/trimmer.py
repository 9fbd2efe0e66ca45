"""Context trimmer: selects which turns are sent to the completion provider.

Manages the sliding window of turns that goes out with each request,
handling the token budget and message-count limits. The authoritative
session history is never modified; only the outbound copy is trimmed.
"""

from __future__ import annotations

from typing import Sequence

from chatline.core.memory.tokens import CharTokenEstimator, TokenEstimator, total_tokens
from chatline.core.types import Role, Turn

MAX_TOKENS = 4000
MAX_MESSAGES = 30
KEEP_RECENT = 10
SUMMARIZE_RATIO = 0.8


class ContextTrimmer:
    """Recency-window trimming with a pinned system turn."""

    def __init__(
        self,
        max_tokens: int = MAX_TOKENS,
        max_messages: int = MAX_MESSAGES,
        keep_recent: int = KEEP_RECENT,
        summarize_ratio: float = SUMMARIZE_RATIO,
        estimator: TokenEstimator | None = None,
    ) -> None:
        """Initialize the trimmer.

        Args:
            max_tokens: Estimated token budget for the whole outbound payload.
            max_messages: Maximum number of non-system turns sent untouched.
            keep_recent: Size of the recency window once trimming kicks in.
            summarize_ratio: Fraction of max_messages above which
                             needs_summarization() reports True.
            estimator: Per-turn token estimator (defaults to the char heuristic).
        """
        self.max_tokens = max_tokens
        self.max_messages = max_messages
        self.keep_recent = keep_recent
        self.summarize_ratio = summarize_ratio
        self.estimator = estimator or CharTokenEstimator()

    def total_tokens(self, turns: Sequence[Turn]) -> int:
        return total_tokens(turns, self.estimator)

    def trim(self, turns: Sequence[Turn]) -> list[Turn]:
        """Trim turns to fit within the context window.

        Preserves:
        - The first system turn (pinned, always first in the output)
        - The most recent non-system turns, in original order

        Never returns fewer than two turns (pin + one other) when the input
        has that many, even if the result is still over budget.
        """
        pinned, rest = _split_pinned(turns)

        if len(rest) <= self.max_messages and self.total_tokens(turns) <= self.max_tokens:
            return list(turns)

        trimmed: list[Turn] = [pinned] if pinned is not None else []
        head = len(trimmed)
        trimmed.extend(rest[-self.keep_recent:] if self.keep_recent > 0 else [])

        # Drop the oldest kept turn until under budget (floor of two turns)
        while len(trimmed) > 2 and self.total_tokens(trimmed) > self.max_tokens:
            del trimmed[head]

        return trimmed

    def needs_summarization(self, turns: Sequence[Turn]) -> bool:
        """True when the conversation is close to the message cap.

        Hook for an optional summarization collaborator; does no
        summarization itself.
        """
        non_system = sum(1 for t in turns if t.role != Role.SYSTEM)
        return non_system > self.max_messages * self.summarize_ratio


def _split_pinned(turns: Sequence[Turn]) -> tuple[Turn | None, list[Turn]]:
    """Separate the first system turn from everything that is not a system turn."""
    pinned: Turn | None = None
    rest: list[Turn] = []
    for t in turns:
        if t.role == Role.SYSTEM:
            if pinned is None:
                pinned = t
            continue
        rest.append(t)
    return pinned, rest
