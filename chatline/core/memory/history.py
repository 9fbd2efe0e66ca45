"""Turn history: optional SQLite-backed persistence for conversations.

The chat core works without it (pure in-memory); when enabled, every
appended turn is written through and sessions are rehydrated on creation.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from chatline.config import get_chatline_home
from chatline.core.types import Role, Turn, TurnStatus

logger = structlog.get_logger()

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    message_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS turns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_turns_conversation ON turns(conversation_id, seq);
CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at);
"""


class TurnHistory:
    """Persistent turn history stored in SQLite."""

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or str(get_chatline_home() / "history.db")
        self._initialized = False

    @property
    def db_path(self) -> str:
        return self._db_path

    async def _ensure_db(self) -> None:
        """Initialize database tables if needed."""
        if self._initialized:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()
        self._initialized = True
        logger.info("history_initialized", db_path=self._db_path)

    async def save(self, turn: Turn) -> None:
        """Append one turn and bump its conversation's counters."""
        await self._ensure_db()

        ts = turn.created_at.isoformat()
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT INTO conversations (id, created_at, updated_at, message_count)
                   VALUES (?, ?, ?, 1)
                   ON CONFLICT(id) DO UPDATE SET
                     updated_at = ?,
                     message_count = message_count + 1""",
                (turn.conversation_id, ts, ts, ts),
            )
            await db.execute(
                """INSERT INTO turns (id, conversation_id, role, content, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (turn.id, turn.conversation_id, turn.role.value, turn.content,
                 turn.status.value, ts),
            )
            await db.commit()

    async def load_history(self, conversation_id: str) -> list[Turn]:
        """Load a conversation's turns in chronological order."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM turns WHERE conversation_id = ? ORDER BY seq",
                (conversation_id,),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            Turn(
                role=Role(row["role"]),
                content=row["content"],
                conversation_id=row["conversation_id"],
                id=row["id"],
                created_at=datetime.fromisoformat(row["created_at"]),
                status=TurnStatus(row["status"]),
            )
            for row in rows
        ]

    async def list_conversations(self, limit: int = 20) -> list[dict[str, Any]]:
        """List recently updated conversations."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM conversations ORDER BY updated_at DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all its turns."""
        await self._ensure_db()

        async with aiosqlite.connect(self._db_path) as db:
            turns = await db.execute(
                "DELETE FROM turns WHERE conversation_id = ?", (conversation_id,)
            )
            conversation = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            return turns.rowcount > 0 or conversation.rowcount > 0
