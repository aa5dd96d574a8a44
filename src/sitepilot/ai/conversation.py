"""Render stored conversation history and project context into prompt text."""

from __future__ import annotations

import json
from typing import Optional

from sitepilot.core.types import MessageRole
from sitepilot.storage.models import Message, ProjectContext

_ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
    MessageRole.SYSTEM: "System",
}

MAX_MESSAGE_CHARS = 800


def format_history(history: list[Message], max_chars: int = MAX_MESSAGE_CHARS) -> str:
    """Render messages oldest-first as ``[Role] text`` lines.

    Long messages are truncated so a bounded window stays bounded in tokens.
    """
    lines: list[str] = []
    for message in history:
        content = " ".join(message.content.split())
        if len(content) > max_chars:
            content = content[: max_chars - 3] + "..."
        lines.append(f"[{_ROLE_LABELS.get(message.role, message.role.value)}] {content}")
    return "\n".join(lines)


def describe_project_context(context: Optional[ProjectContext]) -> str:
    if context is None:
        return "No existing project."
    summary = {
        "projectType": context.project_type,
        "currentTemplate": context.current_template,
        "features": context.features,
        "customizations": len(context.customizations),
        "deployed": bool(context.deployment and context.deployment.get("url")),
    }
    return json.dumps(summary, ensure_ascii=False)


def build_prompt(message: str, history: list[Message], context: Optional[ProjectContext] = None) -> str:
    """Combine history, project context and the latest message into one prompt."""
    sections = []
    if history:
        sections.append("Conversation so far:\n" + format_history(history))
    sections.append("Project context: " + describe_project_context(context))
    sections.append("Latest message:\n" + message)
    return "\n\n".join(sections)
