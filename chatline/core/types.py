"""Shared data types for the chat core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Turn role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(str, Enum):
    """Completion state of a turn."""

    COMPLETE = "complete"
    PARTIAL = "partial"  # Stream ended early (client went away)
    FAILED = "failed"  # Provider error, retryable


@dataclass(frozen=True)
class Turn:
    """A single utterance in a conversation. Immutable once created."""

    role: Role
    content: str
    conversation_id: str
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)
    status: TurnStatus = TurnStatus.COMPLETE

    @property
    def retryable(self) -> bool:
        return self.status == TurnStatus.FAILED

    def to_litellm(self) -> dict[str, Any]:
        """Convert to LiteLLM-compatible message dict."""
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "conversation_id": self.conversation_id,
            "timestamp": self.created_at.isoformat(),
            "status": self.status.value,
        }


@dataclass
class Session:
    """Process-wide record of one conversation.

    Mutated only through the SessionStore, which serializes access per
    conversation identifier.
    """

    conversation_id: str
    history: list[Turn] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    def turns(self) -> list[Turn]:
        """Return a copy of the history, safe to trim or send."""
        return list(self.history)

    def visible_turns(self) -> list[Turn]:
        """History without system turns (what a user sees)."""
        return [t for t in self.history if t.role != Role.SYSTEM]


@dataclass
class ReplyBuilder:
    """Append-only accumulator for an assistant turn under construction."""

    conversation_id: str
    id: str = field(default_factory=lambda: uuid4().hex)
    chunks: list[str] = field(default_factory=list)

    def append(self, fragment: str) -> None:
        self.chunks.append(fragment)

    @property
    def content(self) -> str:
        return "".join(self.chunks)

    def finalize(self, status: TurnStatus = TurnStatus.COMPLETE, content: str | None = None) -> Turn:
        """Freeze the accumulated text into an assistant Turn."""
        return Turn(
            role=Role.ASSISTANT,
            content=self.content if content is None else content,
            conversation_id=self.conversation_id,
            id=self.id,
            status=status,
        )
