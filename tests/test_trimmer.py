"""Tests for token estimation and outbound context trimming."""

from __future__ import annotations

import pytest

from chatline.core.memory.tokens import CharTokenEstimator, total_tokens
from chatline.core.memory.trimmer import ContextTrimmer
from chatline.core.types import Role, Turn


CID = "conv-1"


def _system(content: str = "You are helpful.") -> Turn:
    return Turn(role=Role.SYSTEM, content=content, conversation_id=CID)


def _exchange(count: int, chars: int = 20) -> list[Turn]:
    """Alternating user/assistant turns with distinguishable content."""
    turns = []
    for i in range(count):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        body = f"#{i:03d} "
        turns.append(Turn(role=role, content=body + "x" * (chars - len(body)), conversation_id=CID))
    return turns


# =============================================================
# Token estimation
# =============================================================

class TestCharTokenEstimator:

    def test_empty_content_costs_overhead(self):
        est = CharTokenEstimator()
        assert est.estimate(Turn(role=Role.USER, content="", conversation_id=CID)) == 10

    def test_rounds_up(self):
        est = CharTokenEstimator()
        assert est.estimate(Turn(role=Role.USER, content="abcde", conversation_id=CID)) == 12

    def test_custom_ratio(self):
        est = CharTokenEstimator(chars_per_token=2, overhead=0)
        assert est.estimate(Turn(role=Role.USER, content="abcd", conversation_id=CID)) == 2

    def test_total_is_sum(self):
        turns = _exchange(3, chars=160)
        assert total_tokens(turns) == 150


# =============================================================
# Trimming
# =============================================================

class TestTrim:
    """Pinned system turn, recency window and the two-turn floor."""

    def test_identity_under_budget(self):
        turns = [_system()] + _exchange(30, chars=40)
        trimmer = ContextTrimmer()
        assert trimmer.trim(turns) == turns

    def test_identity_returns_copy(self):
        turns = [_system()] + _exchange(4)
        result = ContextTrimmer().trim(turns)
        assert result == turns
        assert result is not turns

    def test_input_not_mutated(self):
        turns = [_system()] + _exchange(40)
        before = list(turns)
        ContextTrimmer().trim(turns)
        assert turns == before

    def test_recency_window(self):
        # 160 chars -> 40 + 10 overhead = 50 tokens per turn
        history = _exchange(40, chars=160)
        turns = [_system()] + history

        result = ContextTrimmer().trim(turns)

        assert result[0].role == Role.SYSTEM
        assert result[1:] == history[-10:]

    def test_system_turn_pinned_first(self):
        turns = [_system()] + _exchange(35)
        result = ContextTrimmer().trim(turns)
        assert result[0] is turns[0]
        assert all(t.role != Role.SYSTEM for t in result[1:])

    def test_trims_when_over_token_budget(self):
        # Under the message cap, but 1010 tokens per turn is far over budget
        turns = [_system()] + _exchange(11, chars=4000)
        trimmer = ContextTrimmer()

        result = trimmer.trim(turns)

        assert result[0].role == Role.SYSTEM
        assert trimmer.total_tokens(result) <= trimmer.max_tokens
        assert result[-1] is turns[-1]
        # Oldest kept turns are dropped first
        assert result[1:] == turns[-len(result) + 1:]

    def test_floor_keeps_two_turns(self):
        huge = Turn(role=Role.USER, content="x" * 100_000, conversation_id=CID)
        turns = [_system(), huge]

        result = ContextTrimmer().trim(turns)

        assert result == turns
        assert ContextTrimmer().total_tokens(result) > 4000

    def test_floor_after_dropping_window(self):
        turns = [_system()] + _exchange(40, chars=20_000)
        result = ContextTrimmer().trim(turns)
        assert len(result) == 2
        assert result[0] is turns[0]
        assert result[1] is turns[-1]

    def test_extra_system_turns_not_sent_when_trimmed(self):
        turns = [_system("first")] + _exchange(20) + [_system("second")] + _exchange(20)
        result = ContextTrimmer().trim(turns)
        assert [t.content for t in result if t.role == Role.SYSTEM] == ["first"]

    def test_without_system_turn(self):
        history = _exchange(40)
        result = ContextTrimmer().trim(history)
        assert result == history[-10:]

    def test_custom_limits(self):
        turns = [_system()] + _exchange(6)
        trimmer = ContextTrimmer(max_messages=4, keep_recent=2)
        assert trimmer.trim(turns) == [turns[0]] + turns[-2:]


# =============================================================
# Summarization hint
# =============================================================

class TestNeedsSummarization:

    @pytest.mark.parametrize("count,expected", [(24, False), (25, True), (40, True)])
    def test_threshold(self, count, expected):
        turns = [_system()] + _exchange(count)
        assert ContextTrimmer().needs_summarization(turns) is expected
