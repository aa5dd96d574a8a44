"""Conversation context store: conversation history plus live project context.

Conversations and messages are persisted through ``ConversationRepository``.
Project contexts are process-local and are pushed to subscribers keyed by
project id whenever they change.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from sitepilot.core.types import ContextEventType, MessageRole
from sitepilot.log import get_logger
from sitepilot.storage.conversation_repo import ConversationRepository, default_title
from sitepilot.storage.models import ConversationSession, Message, ProjectContext, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContextEvent:
    type: ContextEventType
    project_id: str
    context: Optional[dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "projectId": self.project_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.context is not None:
            data["context"] = self.context
        return data


Subscriber = Callable[[ContextEvent], Awaitable[None]]


class SubscriberRegistry:
    """Project id -> subscriber callbacks.

    Mutations never await, so concurrent subscribe/unsubscribe calls cannot
    lose entries.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}

    def add(self, project_id: str, subscriber: Subscriber) -> None:
        callbacks = self._subscribers.setdefault(project_id, [])
        if subscriber not in callbacks:
            callbacks.append(subscriber)

    def remove(self, project_id: str, subscriber: Subscriber) -> bool:
        callbacks = self._subscribers.get(project_id)
        if not callbacks or subscriber not in callbacks:
            return False
        callbacks.remove(subscriber)
        if not callbacks:
            del self._subscribers[project_id]
        return True

    def get(self, project_id: str) -> list[Subscriber]:
        return list(self._subscribers.get(project_id, ()))

    def count(self, project_id: Optional[str] = None) -> int:
        if project_id is not None:
            return len(self._subscribers.get(project_id, ()))
        return sum(len(callbacks) for callbacks in self._subscribers.values())


class ConversationContextStore:
    """Conversation CRUD plus subscribable per-project context."""

    def __init__(self, repo: ConversationRepository, subscribers: SubscriberRegistry | None = None):
        self._repo = repo
        self._subscribers = subscribers or SubscriberRegistry()
        self._contexts: dict[str, ProjectContext] = {}

    @property
    def repo(self) -> ConversationRepository:
        return self._repo

    @property
    def subscribers(self) -> SubscriberRegistry:
        return self._subscribers

    # ── conversations ──────────────────────────────────────────

    async def get_or_create_conversation(
        self,
        user_id: str,
        first_message: str,
        session_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ConversationSession:
        """Resolve the conversation a chat message belongs to.

        An unknown ``session_id`` creates the conversation under that id;
        an archived one is left untouched and a fresh conversation is started.
        """
        if session_id:
            session = await self._repo.get_conversation(session_id)
            if session is not None and not session.is_archived:
                return session
            if session is None:
                return await self._repo.create_conversation(
                    user_id, default_title(first_message), project_id=project_id, conversation_id=session_id
                )
            logger.info("archived_conversation_reopened_as_new", conversation_id=session_id)
        return await self._repo.create_conversation(user_id, default_title(first_message), project_id=project_id)

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        return await self._repo.append_message(conversation_id, role, content, metadata)

    async def recent_history(self, conversation_id: str, window: int) -> list[Message]:
        if window <= 0:
            return []
        return await self._repo.get_messages(conversation_id, limit=window)

    async def get_conversation(self, conversation_id: str, limit: int = 50) -> Optional[ConversationSession]:
        return await self._repo.get_conversation_with_messages(conversation_id, limit=limit)

    async def list_conversations(
        self,
        user_id: str,
        project_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 20,
    ) -> list[ConversationSession]:
        return await self._repo.list_conversations(user_id, project_id, include_archived, limit)

    async def archive(self, conversation_id: str) -> ConversationSession:
        return await self._repo.archive_conversation(conversation_id)

    async def rename(self, conversation_id: str, title: str) -> ConversationSession:
        return await self._repo.update_title(conversation_id, title)

    # ── project context ────────────────────────────────────────

    def get_project_context(self, project_id: str) -> Optional[ProjectContext]:
        return self._contexts.get(project_id)

    def ensure_project_context(self, project_id: str) -> ProjectContext:
        context = self._contexts.get(project_id)
        if context is None:
            context = ProjectContext(project_id=project_id)
            self._contexts[project_id] = context
        return context

    async def update_project_context(self, project_id: str, updates: dict[str, Any]) -> ProjectContext:
        """Merge a partial update into the project's context and notify subscribers."""
        context = self.ensure_project_context(project_id)
        context.merge(updates)
        logger.debug("project_context_updated", project_id=project_id, keys=sorted(updates))
        await self.publish(
            ContextEvent(
                type=ContextEventType.PROJECT_CONTEXT_UPDATED,
                project_id=project_id,
                context=context.to_dict(),
            )
        )
        return context

    # ── subscriptions ──────────────────────────────────────────

    async def subscribe(self, project_id: str, subscriber: Subscriber) -> None:
        """Register ``subscriber`` and immediately send it the current context."""
        self._subscribers.add(project_id, subscriber)
        context = self._contexts.get(project_id)
        logger.info("context_subscriber_added", project_id=project_id, subscribers=self._subscribers.count(project_id))
        await self._deliver(
            subscriber,
            ContextEvent(
                type=ContextEventType.CONNECTION_ESTABLISHED,
                project_id=project_id,
                context=context.to_dict() if context else None,
            ),
        )

    def unsubscribe(self, project_id: str, subscriber: Subscriber) -> bool:
        removed = self._subscribers.remove(project_id, subscriber)
        if removed:
            logger.info("context_subscriber_removed", project_id=project_id)
        return removed

    async def publish(self, event: ContextEvent) -> None:
        subscribers = self._subscribers.get(event.project_id)
        if subscribers:
            await asyncio.gather(*(self._deliver(s, event) for s in subscribers))

    async def _deliver(self, subscriber: Subscriber, event: ContextEvent) -> None:
        try:
            await subscriber(event)
        except Exception as e:
            logger.warning(
                "context_delivery_failed",
                project_id=event.project_id,
                event_type=event.type.value,
                error=str(e),
            )

    async def stream(self, project_id: str, heartbeat_interval: float = 30.0) -> AsyncIterator[ContextEvent]:
        """Yield context events for ``project_id``, with heartbeats while idle."""
        queue: asyncio.Queue[ContextEvent] = asyncio.Queue()

        async def _enqueue(event: ContextEvent) -> None:
            queue.put_nowait(event)

        await self.subscribe(project_id, _enqueue)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                except asyncio.TimeoutError:
                    event = ContextEvent(type=ContextEventType.HEARTBEAT, project_id=project_id)
                yield event
        finally:
            self.unsubscribe(project_id, _enqueue)
