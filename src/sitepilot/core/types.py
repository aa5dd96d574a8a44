"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Intent(StrEnum):
    CHAT = "chat"
    SIMPLE_TASK = "simple_task"
    COMPLEX_TASK = "complex_task"
    UNCLEAR = "unclear"


class WorkerRole(StrEnum):
    FRONTEND = "frontend"
    BACKEND = "backend"
    DEPLOYMENT = "deployment"


class TaskState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


class DeployState(StrEnum):
    QUEUED = "queued"
    BUILDING = "building"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeployState.READY, DeployState.FAILED)


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationStatus(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ContextEventType(StrEnum):
    CONNECTION_ESTABLISHED = "connection_established"
    PROJECT_CONTEXT_UPDATED = "project_context_updated"
    HEARTBEAT = "heartbeat"


class ReplyType(StrEnum):
    CHAT = "chat"
    TASK = "task"
