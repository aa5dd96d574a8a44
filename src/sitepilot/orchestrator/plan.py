"""Task plans: a DAG of worker tasks plus the reply that accompanies it."""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sitepilot.core.types import Intent, TaskState, WorkerRole
from sitepilot.errors import InvalidTransition, PlanningInvariantViolation
from sitepilot.storage.models import utcnow

ALLOWED_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.READY, TaskState.SKIPPED}),
    TaskState.READY: frozenset({TaskState.RUNNING, TaskState.SKIPPED}),
    TaskState.RUNNING: frozenset({TaskState.SUCCEEDED, TaskState.FAILED}),
    TaskState.SUCCEEDED: frozenset(),
    TaskState.FAILED: frozenset(),
    TaskState.SKIPPED: frozenset(),
}

# action -> (estimated seconds, priority); higher priority starts first
ACTION_PROFILES: dict[str, tuple[int, int]] = {
    "create_website": (45, 3),
    "customize_template": (30, 3),
    "update_content": (30, 2),
    "create_component": (30, 2),
    "update_component": (30, 2),
    "update_styling": (30, 2),
    "create_page": (30, 2),
    "create_auth_system": (60, 3),
    "implement_business_logic": (60, 2),
    "create_api_endpoint": (60, 2),
    "update_database_schema": (60, 3),
    "deploy_application": (90, 1),
}

_ROLE_DEFAULTS = {
    WorkerRole.FRONTEND: (30, 2),
    WorkerRole.BACKEND: (60, 2),
    WorkerRole.DEPLOYMENT: (90, 1),
}


def action_profile(role: WorkerRole, action: str) -> tuple[int, int]:
    return ACTION_PROFILES.get(action, _ROLE_DEFAULTS[role])


@dataclass
class Task:
    """One unit of work for a single worker role."""

    id: str
    role: WorkerRole
    action: str
    payload: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    priority: int = 1
    estimated_duration: int = 30
    description: str = ""
    state: TaskState = TaskState.PENDING
    inputs: dict[str, Any] = field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    history: list[TaskState] = field(default_factory=list)

    def transition(self, new_state: TaskState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Task {self.id} cannot move from {self.state} to {new_state}",
                {"task_id": self.id, "from": self.state.value, "to": new_state.value},
            )
        self.history.append(self.state)
        self.state = new_state

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.id,
            "role": self.role.value,
            "action": self.action,
            "description": self.description,
            "status": self.state.value,
            "dependencies": list(self.dependencies),
            "priority": self.priority,
            "estimatedDuration": self.estimated_duration,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class QualityGate:
    type: str
    description: str
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "description": self.description, "required": self.required}


def _topological_order(tasks: Iterable[Task]) -> list[Task]:
    """Kahn's algorithm. Raises on cycles; assumes dependencies resolve."""
    tasks = list(tasks)
    by_id = {t.id: t for t in tasks}
    indegree = {t.id: len(set(t.dependencies)) for t in tasks}
    dependents: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in set(t.dependencies):
            dependents[dep].append(t.id)

    queue = deque(t.id for t in tasks if indegree[t.id] == 0)
    order: list[Task] = []
    while queue:
        task_id = queue.popleft()
        order.append(by_id[task_id])
        for child in dependents[task_id]:
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if len(order) != len(tasks):
        stuck = sorted(tid for tid, deg in indegree.items() if deg > 0)
        raise PlanningInvariantViolation("Task plan contains a dependency cycle", {"tasks": stuck})
    return order


def validate_plan(tasks: list[Task]) -> None:
    """Reject duplicate ids, dangling or self dependencies, and cycles."""
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise PlanningInvariantViolation(f"Duplicate task id: {task.id}", {"task_id": task.id})
        seen.add(task.id)

    for task in tasks:
        for dep in task.dependencies:
            if dep == task.id:
                raise PlanningInvariantViolation(
                    f"Task {task.id} depends on itself", {"task_id": task.id}
                )
            if dep not in seen:
                raise PlanningInvariantViolation(
                    f"Task {task.id} depends on unknown task {dep}",
                    {"task_id": task.id, "dependency": dep},
                )

    _topological_order(tasks)


@dataclass
class TaskPlan:
    intent: Intent
    tasks: list[Task] = field(default_factory=list)
    reply: Optional[str] = None
    confidence: float = 0.0
    quality_gates: list[QualityGate] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.tasks

    @property
    def roles(self) -> list[WorkerRole]:
        roles: list[WorkerRole] = []
        for task in self.tasks:
            if task.role not in roles:
                roles.append(task.role)
        return roles

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def validate(self) -> None:
        validate_plan(self.tasks)

    def dependents(self, task_id: str) -> list[Task]:
        """All tasks that transitively depend on ``task_id``."""
        found: list[Task] = []
        frontier = [task_id]
        visited = {task_id}
        while frontier:
            current = frontier.pop()
            for task in self.tasks:
                if current in task.dependencies and task.id not in visited:
                    visited.add(task.id)
                    found.append(task)
                    frontier.append(task.id)
        return found

    def execution_stages(self) -> list[list[Task]]:
        """Group tasks into waves; every task's dependencies sit in earlier waves."""
        level: dict[str, int] = {}
        for task in _topological_order(self.tasks):
            level[task.id] = 1 + max((level[d] for d in task.dependencies), default=-1)
        stages: list[list[Task]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for task in self.tasks:
            stages[level[task.id]].append(task)
        for stage in stages:
            stage.sort(key=lambda t: -t.priority)
        return stages

    def critical_path(self) -> list[Task]:
        """Longest chain by estimated duration."""
        best: dict[str, tuple[int, Optional[str]]] = {}
        for task in _topological_order(self.tasks):
            prev = max(task.dependencies, key=lambda d: best[d][0], default=None)
            base = best[prev][0] if prev else 0
            best[task.id] = (base + task.estimated_duration, prev)
        if not best:
            return []

        tail: Optional[str] = max(best, key=lambda tid: best[tid][0])
        path: list[Task] = []
        while tail is not None:
            path.append(self.get(tail))
            tail = best[tail][1]
        return list(reversed(path))

    @property
    def estimated_total_duration(self) -> int:
        return sum(t.estimated_duration for t in self.critical_path())

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.id,
            "intent": self.intent.value,
            "confidence": self.confidence,
            "tasks": [t.to_dict() for t in self.tasks],
            "stages": [[t.id for t in stage] for stage in self.execution_stages()],
            "estimatedDuration": self.estimated_total_duration,
            "qualityGates": [g.to_dict() for g in self.quality_gates],
        }
