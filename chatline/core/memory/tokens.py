"""Token estimation for outbound context budgeting.

The default estimator is a deliberately crude, model-agnostic heuristic
(~4 characters per token plus a fixed per-turn overhead for role and
metadata framing). It is an approximation, not a tokenizer.
"""

from __future__ import annotations

import math
from typing import Iterable, Protocol

from chatline.core.types import Turn

DEFAULT_CHARS_PER_TOKEN = 4
DEFAULT_MESSAGE_OVERHEAD = 10


class TokenEstimator(Protocol):
    def estimate(self, turn: Turn) -> int: ...


class CharTokenEstimator:
    """ceil(len(content) / chars_per_token) + overhead."""

    def __init__(
        self,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        overhead: int = DEFAULT_MESSAGE_OVERHEAD,
    ) -> None:
        self.chars_per_token = chars_per_token
        self.overhead = overhead

    def estimate(self, turn: Turn) -> int:
        return math.ceil(len(turn.content) / self.chars_per_token) + self.overhead


class ModelTokenEstimator:
    """Exact count from the model's tokenizer via LiteLLM, plus framing overhead."""

    def __init__(self, model: str, overhead: int = DEFAULT_MESSAGE_OVERHEAD) -> None:
        self.model = model
        self.overhead = overhead

    def estimate(self, turn: Turn) -> int:
        import litellm

        return litellm.token_counter(model=self.model, text=turn.content) + self.overhead


def total_tokens(turns: Iterable[Turn], estimator: TokenEstimator | None = None) -> int:
    """Sum of per-turn estimates."""
    estimator = estimator or CharTokenEstimator()
    return sum(estimator.estimate(t) for t in turns)
