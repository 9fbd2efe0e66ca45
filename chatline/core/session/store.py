"""Session store: in-memory conversation state keyed by conversation id.

Every mutation (create, append, delete, eviction) runs under a
per-conversation asyncio lock, so concurrent requests for the same
conversation cannot lose or duplicate turns, and an eviction can never
remove a session out from under an in-flight append.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Callable, Iterable
from uuid import uuid4

import structlog

from chatline.core.errors import NotFoundError
from chatline.core.types import Role, Session, Turn, utc_now

logger = structlog.get_logger()

DEFAULT_IDLE_TIMEOUT = timedelta(hours=24)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Be concise, friendly, and informative "
    "in your responses. Keep your answers clear and well-structured."
)


def should_evict(
    last_activity: datetime,
    now: datetime,
    idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
) -> bool:
    """True when the session has been idle for longer than idle_timeout."""
    return now - last_activity > idle_timeout


def mint_conversation_id() -> str:
    return str(uuid4())


class SessionStore:
    """Injectable key-value store of active sessions."""

    def __init__(
        self,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.system_prompt = system_prompt
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        # A lock lives only while someone holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def now(self) -> datetime:
        return self._clock()

    def _get_lock(self, conversation_id: str) -> asyncio.Lock:
        """Get or create the lock for a conversation id."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _seed_turn(self, conversation_id: str) -> Turn:
        return Turn(
            role=Role.SYSTEM,
            content=self.system_prompt,
            conversation_id=conversation_id,
            created_at=self._clock(),
        )

    async def get_or_create(
        self,
        conversation_id: str,
        restored: Iterable[Turn] | None = None,
    ) -> Session:
        """Return the existing session or create one seeded with a system turn.

        Turns passed as ``restored`` (e.g. loaded from persistent history) are
        appended after the seed turn, but only when a new session is created.
        """
        if not conversation_id:
            raise ValueError("conversation_id must be a non-empty string")

        async with self._get_lock(conversation_id):
            session = self._sessions.get(conversation_id)
            if session is not None:
                return session

            now = self._clock()
            history = [self._seed_turn(conversation_id)]
            if restored:
                history.extend(t for t in restored if t.role != Role.SYSTEM)
            session = Session(
                conversation_id=conversation_id,
                history=history,
                last_activity=now,
                created_at=now,
            )
            self._sessions[conversation_id] = session
            logger.info(
                "session_created",
                conversation_id=conversation_id,
                restored_turns=len(history) - 1,
            )
            return session

    async def get(self, conversation_id: str) -> Session | None:
        return self._sessions.get(conversation_id)

    async def append(self, conversation_id: str, turn: Turn) -> Session:
        """Append a turn to the session history and refresh last_activity."""
        async with self._get_lock(conversation_id):
            session = self._sessions.get(conversation_id)
            if session is None:
                raise NotFoundError(conversation_id)
            session.history.append(turn)
            session.last_activity = self._clock()
            return session

    async def delete(self, conversation_id: str) -> bool:
        async with self._get_lock(conversation_id):
            return self._sessions.pop(conversation_id, None) is not None

    def snapshot(self) -> list[tuple[str, datetime]]:
        """Point-in-time (conversation_id, last_activity) pairs, taken without locks."""
        return [(cid, s.last_activity) for cid, s in list(self._sessions.items())]

    async def evict_if_idle(self, conversation_id: str, now: datetime | None = None) -> bool:
        """Delete the session if it is still idle once its lock is held."""
        now = now or self.now()
        async with self._get_lock(conversation_id):
            session = self._sessions.get(conversation_id)
            if session is None:
                return False
            if not should_evict(session.last_activity, now, self.idle_timeout):
                return False
            del self._sessions[conversation_id]

        logger.info(
            "session_evicted",
            conversation_id=conversation_id,
            idle_seconds=int((now - session.last_activity).total_seconds()),
        )
        return True
