"""Conversation repository: sessions and append-only messages."""

from __future__ import annotations

import asyncio
import json
import uuid
import weakref
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from sitepilot.core.types import ConversationStatus, MessageRole
from sitepilot.errors import ConversationNotFound
from sitepilot.log import get_logger
from sitepilot.storage.database import Database
from sitepilot.storage.models import ConversationSession, Message, utcnow

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 50


def default_title(first_message: str) -> str:
    """Derive a conversation title from its opening message."""
    text = " ".join(first_message.split())
    if len(text) <= MAX_TITLE_LENGTH:
        return text or "New conversation"
    return text[: MAX_TITLE_LENGTH - 3].rstrip() + "..."


class ConversationRepository:
    """CRUD over conversations with append-only message semantics."""

    def __init__(self, db: Database):
        self._db = db
        # Message indices are allocated under one lock per conversation. A lock
        # lives only while some append holds or waits on it.
        self._append_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def create_conversation(
        self,
        user_id: str,
        title: str,
        project_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ConversationSession:
        session = ConversationSession(
            id=conversation_id or uuid.uuid4().hex,
            user_id=user_id,
            project_id=project_id,
            title=title,
        )
        await self._db.conn.execute(
            """INSERT INTO conversations
               (id, user_id, project_id, title, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                session.id,
                session.user_id,
                session.project_id,
                session.title,
                session.status.value,
                session.created_at.isoformat(),
                session.updated_at.isoformat(),
            ),
        )
        await self._db.conn.commit()
        logger.info("conversation_created", conversation_id=session.id, user_id=user_id, project_id=project_id)
        return session

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationSession]:
        cursor = await self._db.conn.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def require_conversation(self, conversation_id: str) -> ConversationSession:
        session = await self.get_conversation(conversation_id)
        if session is None:
            raise ConversationNotFound(f"Conversation not found: {conversation_id}", {"conversation_id": conversation_id})
        return session

    async def get_conversation_with_messages(
        self, conversation_id: str, limit: int = 50
    ) -> Optional[ConversationSession]:
        session = await self.get_conversation(conversation_id)
        if session is None:
            return None
        session.messages = await self.get_messages(conversation_id, limit=limit)
        return session

    async def list_conversations(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 20,
    ) -> list[ConversationSession]:
        query = "SELECT * FROM conversations WHERE user_id = ?"
        params: list[Any] = [user_id]
        if project_id is not None:
            query += " AND project_id = ?"
            params.append(project_id)
        if not include_archived:
            query += " AND status = 'active'"
        query += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        cursor = await self._db.conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    def _append_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._append_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._append_locks[conversation_id] = lock
        return lock

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        """Append a message, assigning index = max existing index + 1."""
        async with self._append_lock(conversation_id):
            await self.require_conversation(conversation_id)
            cursor = await self._db.conn.execute(
                "SELECT COALESCE(MAX(message_index), -1) AS last_index FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            message = Message(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                role=role,
                content=content,
                index=row["last_index"] + 1,
                metadata=dict(metadata or {}),
            )
            await self._db.conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, role, content, message_index, metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                self._message_to_row(message),
            )
            await self._db.conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (message.timestamp.isoformat(), conversation_id),
            )
            await self._db.conn.commit()
        return message

    async def get_messages(self, conversation_id: str, limit: int = 50) -> list[Message]:
        """Return the most recent ``limit`` messages in ascending index order."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM (
                   SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY message_index DESC LIMIT ?
               ) ORDER BY message_index ASC""",
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def count_messages(self, conversation_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) AS n FROM messages WHERE conversation_id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        return row["n"]

    async def archive_conversation(self, conversation_id: str) -> ConversationSession:
        """Mark a conversation archived. Archiving twice is a no-op."""
        session = await self.require_conversation(conversation_id)
        if session.is_archived:
            return session
        now = utcnow().isoformat()
        await self._db.conn.execute(
            "UPDATE conversations SET status = 'archived', archived_at = ?, updated_at = ? WHERE id = ?",
            (now, now, conversation_id),
        )
        await self._db.conn.commit()
        logger.info("conversation_archived", conversation_id=conversation_id)
        return await self.require_conversation(conversation_id)

    async def update_title(self, conversation_id: str, title: str) -> ConversationSession:
        await self.require_conversation(conversation_id)
        await self._db.conn.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
            (title, utcnow().isoformat(), conversation_id),
        )
        await self._db.conn.commit()
        return await self.require_conversation(conversation_id)

    @staticmethod
    def _message_to_row(message: Message) -> tuple[Any, ...]:
        return (
            message.id,
            message.conversation_id,
            message.role.value,
            message.content,
            message.index,
            json.dumps(message.metadata, ensure_ascii=False, default=str),
            message.timestamp.isoformat(),
        )

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=MessageRole(row["role"]),
            content=row["content"],
            index=row["message_index"],
            timestamp=datetime.fromisoformat(row["created_at"]),
            metadata=json.loads(row["metadata_json"]),
        )

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> ConversationSession:
        return ConversationSession(
            id=row["id"],
            user_id=row["user_id"],
            project_id=row["project_id"],
            title=row["title"],
            status=ConversationStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
