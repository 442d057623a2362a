"""
SQLite-backed conversation store.

Uses ``aiosqlite`` with a write lock so concurrent saves from one process
never interleave.  Each conversation row owns an ordered list of message
rows; a message is stored as the JSON of its ``to_dict()`` so the whole
record (parts, timings, error details) survives a reload.

Schema is version-tracked via a ``schema_version`` table and migrated on
``init()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import aiosqlite

from linchat.conversation.messages import Message, message_from_dict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversations (
            conversation_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            conversation_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            message_id TEXT NOT NULL,
            role TEXT NOT NULL,
            payload TEXT NOT NULL,
            PRIMARY KEY (conversation_id, position),
            FOREIGN KEY (conversation_id)
                REFERENCES conversations(conversation_id) ON DELETE CASCADE
        )""",
    ],
    2: [
        """ALTER TABLE conversations ADD COLUMN model TEXT""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_updated
           ON conversations(updated_at)""",
    ],
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConversationStore:
    """
    Async SQLite store for conversations and their messages.

    Usage::

        store = ConversationStore("~/.linchat/history.db")
        await store.init()
        cid = await store.create_conversation("New Chat")
        await store.save_messages(cid, messages)
        conv = await store.get_conversation(cid)
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> ConversationStore:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        """Current schema version, or 0 for a fresh database."""
        db = self._conn()
        cursor = await db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def _run_migrations(self) -> None:
        db = self._conn()
        current = await self.get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await db.execute(stmt)
            logger.debug("Applied conversation store migration %d", version)

        await db.execute("DELETE FROM schema_version")
        await db.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        await db.commit()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self, title: str = "New Chat", model: str | None = None
    ) -> str:
        db = self._conn()
        conversation_id = str(uuid.uuid4())
        now = _now_iso()
        async with self._write_lock:
            await db.execute(
                """INSERT INTO conversations
                   (conversation_id, title, created_at, updated_at, model)
                   VALUES (?, ?, ?, ?, ?)""",
                (conversation_id, title, now, now, model),
            )
            await db.commit()
        return conversation_id

    async def save_messages(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        *,
        title: str | None = None,
        model: str | None = None,
    ) -> None:
        """
        Replace the stored message list of a conversation.

        Creates the conversation row when it does not exist yet.
        """
        db = self._conn()
        now = _now_iso()
        rows = [
            (conversation_id, pos, m.id, m.role, json.dumps(m.to_dict()))
            for pos, m in enumerate(messages)
        ]
        async with self._write_lock:
            await db.execute(
                """INSERT INTO conversations
                   (conversation_id, title, created_at, updated_at, model)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(conversation_id) DO UPDATE SET
                       updated_at = excluded.updated_at,
                       title = COALESCE(?, conversations.title),
                       model = COALESCE(excluded.model, conversations.model)""",
                (conversation_id, title or "New Chat", now, now, model, title),
            )
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            await db.executemany(
                """INSERT INTO messages
                   (conversation_id, position, message_id, role, payload)
                   VALUES (?, ?, ?, ?, ?)""",
                rows,
            )
            await db.commit()

    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        """
        Return ``{"id", "title", "model", "created_at", "updated_at",
        "messages"}`` or ``None`` when the conversation is unknown.
        """
        db = self._conn()
        cursor = await db.execute(
            """SELECT conversation_id, title, model, created_at, updated_at
               FROM conversations WHERE conversation_id = ?""",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await db.execute(
            """SELECT payload FROM messages
               WHERE conversation_id = ? ORDER BY position ASC""",
            (conversation_id,),
        )
        messages = [message_from_dict(json.loads(r[0])) for r in await cursor.fetchall()]
        conv = _conversation_row(row)
        conv["messages"] = messages
        return conv

    async def list_conversations(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Conversations ordered by last update (newest first), with message counts."""
        db = self._conn()
        sql = """SELECT c.conversation_id, c.title, c.model, c.created_at, c.updated_at,
                        COUNT(m.position)
                 FROM conversations c
                 LEFT JOIN messages m ON m.conversation_id = c.conversation_id
                 GROUP BY c.conversation_id
                 ORDER BY c.updated_at DESC"""
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        cursor = await db.execute(sql, params)
        result = []
        for row in await cursor.fetchall():
            conv = _conversation_row(row)
            conv["message_count"] = row[5]
            result.append(conv)
        return result

    async def rename(self, conversation_id: str, title: str) -> bool:
        db = self._conn()
        async with self._write_lock:
            cursor = await db.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE conversation_id = ?",
                (title, _now_iso(), conversation_id),
            )
            await db.commit()
        return cursor.rowcount > 0

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages; ``False`` if it did not exist."""
        db = self._conn()
        async with self._write_lock:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,)
            )
            await db.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ConversationStore.init() has not been called")
        return self._db


def _conversation_row(row: Sequence[Any]) -> dict[str, Any]:
    return {
        "id": row[0],
        "title": row[1],
        "model": row[2],
        "created_at": row[3],
        "updated_at": row[4],
    }
