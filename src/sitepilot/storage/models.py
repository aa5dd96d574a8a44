"""Domain models for the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sitepilot.core.types import ConversationStatus, DeployState, MessageRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    conversation_id: str
    role: MessageRole
    content: str
    index: int
    id: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "index": self.index,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class ConversationSession:
    id: str
    user_id: str
    title: str
    project_id: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    messages: list[Message] = field(default_factory=list)

    @property
    def is_archived(self) -> bool:
        return self.status == ConversationStatus.ARCHIVED

    def to_dict(self, include_messages: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "title": self.title,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


_CONTEXT_ALIASES = {
    "projectType": "project_type",
    "currentTemplate": "current_template",
    "lastIntent": "last_intent",
}


@dataclass
class ProjectContext:
    """Derived per-project state consulted when planning follow-up requests."""

    project_id: str
    project_type: Optional[str] = None
    current_template: Optional[str] = None
    customizations: list[dict[str, Any]] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    deployment: Optional[dict[str, Any]] = None
    last_intent: Optional[str] = None
    preferences: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_existing_site(self) -> bool:
        return bool(self.current_template) or bool(self.customizations)

    def merge(self, updates: dict[str, Any]) -> None:
        """Apply a partial update.

        Scalars are replaced, ``customizations`` and ``features`` are extended,
        ``deployment``/``preferences`` are shallow-merged, unknown keys land in
        ``extra``.
        """
        for raw_key, value in updates.items():
            key = _CONTEXT_ALIASES.get(raw_key, raw_key)
            if key in ("project_id", "updated_at", "updatedAt", "projectId"):
                continue
            if key == "customizations":
                self.customizations.extend(value if isinstance(value, list) else [value])
            elif key == "features":
                for feature in value if isinstance(value, list) else [value]:
                    if feature not in self.features:
                        self.features.append(feature)
            elif key == "deployment":
                self.deployment = {**(self.deployment or {}), **(value or {})}
            elif key == "preferences":
                self.preferences.update(value or {})
            elif key in ("project_type", "current_template", "last_intent"):
                setattr(self, key, value)
            else:
                self.extra[raw_key] = value
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "projectType": self.project_type,
            "currentTemplate": self.current_template,
            "customizations": list(self.customizations),
            "features": list(self.features),
            "deployment": dict(self.deployment) if self.deployment else None,
            "lastIntent": self.last_intent,
            "preferences": dict(self.preferences),
            "extra": dict(self.extra),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class DeploymentRecord:
    id: str
    project_id: str
    provider: str
    state: DeployState = DeployState.QUEUED
    target: Optional[str] = None  # custom domain or subdomain
    url: Optional[str] = None
    external_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deploymentId": self.id,
            "projectId": self.project_id,
            "provider": self.provider,
            "state": self.state.value,
            "target": self.target,
            "url": self.url,
            "externalId": self.external_id,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
