"""Abstract worker interface for specialist agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from sitepilot.core.types import WorkerRole

if TYPE_CHECKING:
    from sitepilot.orchestrator.plan import Task


@dataclass
class WorkerResult:
    success: bool
    artifacts: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class Worker(ABC):
    """Base class for all task workers."""

    @property
    @abstractmethod
    def role(self) -> WorkerRole:
        """The role this worker serves in a task plan."""
        ...

    @abstractmethod
    async def execute_task(self, task: Task) -> WorkerResult:
        """Carry out one task. Failures are reported in the result, not raised."""
        ...

    async def cancel(self, task: Task) -> None:
        """Best-effort request to abandon an in-flight task."""
        return None

    async def close(self) -> None:
        return None

    def context_updates_for(self, task: Task, result: WorkerResult) -> dict[str, Any]:
        """Project-context changes implied by a successful task."""
        updates: dict[str, Any] = {
            "customizations": [{"taskId": task.id, "action": task.action, "target": task.payload.get("target")}],
        }
        if task.payload.get("project_type"):
            updates["project_type"] = task.payload["project_type"]
        template = result.artifacts.get("template")
        if template:
            updates["current_template"] = template
        elif task.action == "create_website":
            updates["current_template"] = task.payload.get("project_type") or "default"
        features = result.artifacts.get("features")
        if features:
            updates["features"] = list(features)
        return updates
