"""Transport-agnostic API surface.

Conversation management calls return ``{"success": True, "data": ...}`` or
``{"success": False, "error": "..."}``. ``chat`` returns the chat response
itself.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from sitepilot.core.types import ReplyType
from sitepilot.errors import ConversationNotFound, SitePilotError
from sitepilot.log import get_logger
from sitepilot.orchestrator.handler import ChatHandler, ChatRequest
from sitepilot.storage.context_store import ConversationContextStore

logger = get_logger(__name__)


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def _error(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


class SitePilotAPI:
    def __init__(self, handler: ChatHandler, store: ConversationContextStore, heartbeat_interval: float = 30.0):
        self._handler = handler
        self._store = store
        self._heartbeat_interval = heartbeat_interval

    async def chat(self, payload: dict[str, Any], cancel_event: Optional[asyncio.Event] = None) -> dict[str, Any]:
        try:
            request = ChatRequest.from_dict(payload)
        except ValueError as e:
            metadata = {"executionTime": 0, "agentsUsed": [], "confidence": 0.0, "error": "invalid_request"}
            return {"content": str(e), "type": ReplyType.CHAT.value, "metadata": metadata}
        response = await self._handler.handle(request, cancel_event=cancel_event)
        return response.to_dict()

    async def list_conversations(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 20,
    ) -> dict[str, Any]:
        sessions = await self._store.list_conversations(user_id, project_id, include_archived, limit)
        return _ok([s.to_dict(include_messages=False) for s in sessions])

    async def get_conversation(self, conversation_id: str, limit: int = 50) -> dict[str, Any]:
        session = await self._store.get_conversation(conversation_id, limit=limit)
        if session is None:
            return _error(f"Conversation not found: {conversation_id}")
        return _ok(session.to_dict())

    async def send_message(self, conversation_id: str, message: str) -> dict[str, Any]:
        """Post a message into an existing, non-archived conversation."""
        session = await self._store.repo.get_conversation(conversation_id)
        if session is None:
            return _error(f"Conversation not found: {conversation_id}")
        if session.is_archived:
            return _error("Conversation is archived")
        if not message or not message.strip():
            return _error("message is required")

        request = ChatRequest(
            message=message,
            user_id=session.user_id,
            session_id=session.id,
            project_id=session.project_id,
        )
        try:
            response = await self._handler.handle(request)
        except SitePilotError as e:
            logger.error("send_message_failed", conversation_id=conversation_id, error=str(e))
            return _error(e.message)
        return _ok(response.to_dict())

    async def archive_conversation(self, conversation_id: str) -> dict[str, Any]:
        try:
            session = await self._store.archive(conversation_id)
        except ConversationNotFound as e:
            return _error(e.message)
        return _ok(session.to_dict(include_messages=False))

    async def rename_conversation(self, conversation_id: str, title: str) -> dict[str, Any]:
        title = " ".join((title or "").split())
        if not title:
            return _error("title is required")
        try:
            session = await self._store.rename(conversation_id, title)
        except ConversationNotFound as e:
            return _error(e.message)
        return _ok(session.to_dict(include_messages=False))

    async def context_events(self, project_id: str) -> AsyncIterator[dict[str, Any]]:
        """Live project-context events, starting with the current context."""
        async with aclosing(self._store.stream(project_id, heartbeat_interval=self._heartbeat_interval)) as events:
            async for event in events:
                yield event.to_dict()

    async def update_context(self, project_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(partial, dict):
            return _error("context update must be an object")
        context = await self._store.update_project_context(project_id, partial)
        return _ok(context.to_dict())
