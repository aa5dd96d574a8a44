"""Chat handler: message -> conversation -> classify -> plan -> dispatch -> reply."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from sitepilot.core.types import MessageRole, ReplyType
from sitepilot.errors import PlanningInvariantViolation
from sitepilot.log import bind_request_context, clear_request_context, get_logger
from sitepilot.orchestrator import replies
from sitepilot.orchestrator.classifier import IntentClassifier
from sitepilot.orchestrator.dispatcher import AgentDispatcher
from sitepilot.orchestrator.planner import TaskPlanner
from sitepilot.storage.context_store import ConversationContextStore

logger = get_logger(__name__)


@dataclass
class ChatRequest:
    message: str
    user_id: str
    session_id: Optional[str] = None
    project_id: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatRequest:
        message = data.get("message")
        user_id = data.get("userId") or data.get("user_id")
        if not isinstance(message, str) or not message.strip():
            raise ValueError("message is required")
        if not user_id:
            raise ValueError("userId is required")
        return cls(
            message=message,
            user_id=str(user_id),
            session_id=data.get("sessionId") or data.get("session_id"),
            project_id=data.get("projectId") or data.get("project_id"),
            context=dict(data.get("context") or {}),
        )


@dataclass
class ChatResponse:
    content: str
    type: ReplyType
    session_id: str
    task_results: Optional[list[dict[str, Any]]] = None
    next_steps: Optional[list[str]] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "content": self.content,
            "type": self.type.value,
            "sessionId": self.session_id,
            "metadata": self.metadata,
        }
        if self.task_results is not None:
            data["taskResults"] = self.task_results
        if self.next_steps is not None:
            data["nextSteps"] = self.next_steps
        return data


class ChatHandler:
    """Handles one chat message end to end. The user always gets text back."""

    def __init__(
        self,
        store: ConversationContextStore,
        classifier: IntentClassifier,
        planner: TaskPlanner,
        dispatcher: AgentDispatcher,
        history_window: int = 6,
        debug: bool = False,
    ):
        self._store = store
        self._classifier = classifier
        self._planner = planner
        self._dispatcher = dispatcher
        self._history_window = history_window
        self._debug = debug

    async def handle(self, request: ChatRequest, cancel_event: Optional[asyncio.Event] = None) -> ChatResponse:
        started = time.monotonic()
        text = request.message.strip()

        session = await self._store.get_or_create_conversation(
            request.user_id, text, session_id=request.session_id, project_id=request.project_id
        )
        project_id = request.project_id or session.project_id
        bind_request_context(conversation_id=session.id, user_id=request.user_id)
        try:
            if project_id and request.context:
                await self._store.update_project_context(project_id, request.context)

            history = await self._store.recent_history(session.id, self._history_window)
            await self._store.append_message(session.id, MessageRole.USER, text)
            context = self._store.get_project_context(project_id) if project_id else None

            classification = await self._classifier.classify(text, history, context)
            thai = classification.analysis.thai
            metadata: dict[str, Any] = {
                "intent": classification.intent.value,
                "confidence": classification.confidence,
                "classifier": classification.source,
                "agentsUsed": [],
            }

            try:
                plan = await self._planner.plan(classification, text, history, context, project_id)
            except PlanningInvariantViolation:
                if self._debug:
                    raise
                logger.exception("plan_rejected", intent=classification.intent.value)
                metadata["error"] = "internal_error"
                content = replies.text("internal_error", thai)
                return await self._reply(session.id, content, ReplyType.CHAT, metadata, started)

            if plan.is_empty:
                return await self._reply(session.id, plan.reply or "", ReplyType.CHAT, metadata, started)

            result = await self._dispatcher.execute(plan, project_id=project_id, cancel_event=cancel_event)
            metadata["agentsUsed"] = result.agents_used
            metadata["planId"] = plan.id
            response = await self._reply(
                session.id,
                replies.summarize(plan, result, thai),
                ReplyType.TASK,
                metadata,
                started,
                task_results=[task.to_dict() for task in plan.tasks],
                next_steps=replies.next_steps(result, thai),
            )
            if project_id:
                await self._store.update_project_context(project_id, {"last_intent": plan.intent.value})
            return response
        finally:
            clear_request_context()

    async def _reply(
        self,
        session_id: str,
        content: str,
        kind: ReplyType,
        metadata: dict[str, Any],
        started: float,
        task_results: Optional[list[dict[str, Any]]] = None,
        next_steps: Optional[list[str]] = None,
    ) -> ChatResponse:
        metadata["executionTime"] = int((time.monotonic() - started) * 1000)
        await self._store.append_message(session_id, MessageRole.ASSISTANT, content, metadata=metadata)
        logger.info("chat_reply_sent", type=kind.value, execution_time_ms=metadata["executionTime"])
        return ChatResponse(
            content=content,
            type=kind,
            session_id=session_id,
            task_results=task_results,
            next_steps=next_steps,
            metadata=metadata,
        )
