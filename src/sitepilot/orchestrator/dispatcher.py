"""Agent dispatcher: runs a task plan's DAG against the registered workers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from sitepilot.config import DispatcherConfig
from sitepilot.core.registry import WorkerRegistry
from sitepilot.core.types import TaskState
from sitepilot.errors import TaskExecutionFailure
from sitepilot.log import get_logger
from sitepilot.orchestrator.plan import Task, TaskPlan, validate_plan
from sitepilot.storage.context_store import ConversationContextStore
from sitepilot.workers.base import WorkerResult

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # task id -> error
    skipped: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)  # finished after cancellation
    agents_used: list[str] = field(default_factory=list)
    artifacts: dict[str, dict[str, Any]] = field(default_factory=dict)
    cancelled: bool = False
    execution_time_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def deployment_url(self) -> Optional[str]:
        for artifacts in self.artifacts.values():
            url = artifacts.get("url")
            if url and artifacts.get("deployment_id"):
                return url
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "skipped": list(self.skipped),
            "cancelled": self.cancelled,
            "agentsUsed": list(self.agents_used),
            "executionTime": self.execution_time_ms,
        }


class AgentDispatcher:
    """Executes plans; task failures are absorbed into the result."""

    def __init__(
        self,
        workers: WorkerRegistry,
        store: ConversationContextStore,
        config: DispatcherConfig | None = None,
    ):
        self._workers = workers
        self._store = store
        self._config = config or DispatcherConfig()

    async def execute(
        self,
        plan: TaskPlan,
        project_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DispatchResult:
        validate_plan(plan.tasks)
        started = time.monotonic()
        result = DispatchResult()
        cancel_event = cancel_event or asyncio.Event()
        limit = self._config.max_concurrency

        running: dict[asyncio.Task, Task] = {}
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        logger.info("dispatch_started", plan_id=plan.id, tasks=len(plan.tasks), max_concurrency=limit)

        try:
            while True:
                if cancel_event.is_set() and not result.cancelled:
                    await self._cancel(plan, running, result)

                if not result.cancelled:
                    self._promote(plan)
                    for task in self._ready(plan):
                        if limit is not None and len(running) >= limit:
                            break
                        task.transition(TaskState.RUNNING)
                        if task.role.value not in result.agents_used:
                            result.agents_used.append(task.role.value)
                        running[asyncio.create_task(self._run_task(task))] = task

                if not running:
                    break

                waiting: set[asyncio.Future] = set(running)
                if not result.cancelled:
                    waiting.add(cancel_waiter)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                for finished in done:
                    if finished is cancel_waiter:
                        continue
                    task = running.pop(finished)
                    await self._settle(plan, task, finished.result(), result, project_id)
        finally:
            cancel_waiter.cancel()

        # Anything still pending here had a dependency that never succeeded.
        for task in plan.tasks:
            if task.state in (TaskState.PENDING, TaskState.READY):
                task.transition(TaskState.SKIPPED)
                result.skipped.append(task.id)

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "dispatch_finished",
            plan_id=plan.id,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
            cancelled=result.cancelled,
            execution_time_ms=result.execution_time_ms,
        )
        return result

    def _promote(self, plan: TaskPlan) -> None:
        for task in plan.tasks:
            if task.state != TaskState.PENDING:
                continue
            deps = [plan.get(d) for d in task.dependencies]
            if all(dep.state == TaskState.SUCCEEDED for dep in deps):
                task.inputs = {dep.id: dict(dep.result or {}) for dep in deps}
                task.transition(TaskState.READY)

    @staticmethod
    def _ready(plan: TaskPlan) -> list[Task]:
        ready = [t for t in plan.tasks if t.state == TaskState.READY]
        ready.sort(key=lambda t: -t.priority)
        return ready

    async def _run_task(self, task: Task) -> WorkerResult:
        worker = self._workers.get(task.role)
        if worker is None:
            return WorkerResult(success=False, error=f"no worker registered for role {task.role.value}")
        try:
            if self._config.task_timeout is not None:
                return await asyncio.wait_for(worker.execute_task(task), timeout=self._config.task_timeout)
            return await worker.execute_task(task)
        except asyncio.TimeoutError:
            return WorkerResult(success=False, error=f"timed out after {self._config.task_timeout}s")
        except Exception as e:
            logger.exception("worker_crashed", task_id=task.id, role=task.role.value)
            return WorkerResult(success=False, error=str(e) or type(e).__name__)

    async def _settle(
        self,
        plan: TaskPlan,
        task: Task,
        outcome: WorkerResult,
        result: DispatchResult,
        project_id: Optional[str],
    ) -> None:
        if outcome.success:
            task.transition(TaskState.SUCCEEDED)
            task.result = dict(outcome.artifacts)
        else:
            task.transition(TaskState.FAILED)
            task.error = outcome.error or "task failed"

        if result.cancelled:
            # Late outcome: the task state is final but nothing is applied.
            result.discarded.append(task.id)
            logger.info("late_result_discarded", task_id=task.id, success=outcome.success)
            return

        if outcome.success:
            result.succeeded.append(task.id)
            result.artifacts[task.id] = dict(outcome.artifacts)
            logger.info("task_succeeded", task_id=task.id, role=task.role.value)
            if project_id:
                worker = self._workers.get(task.role)
                updates = worker.context_updates_for(task, outcome) if worker else {}
                if updates:
                    await self._store.update_project_context(project_id, updates)
            return

        failure = TaskExecutionFailure(task.id, task.error, {"role": task.role.value})
        logger.warning("task_failed", error=failure.message, **failure.details)
        result.failed[task.id] = task.error
        for dependent in plan.dependents(task.id):
            if dependent.state in (TaskState.PENDING, TaskState.READY):
                dependent.transition(TaskState.SKIPPED)
                result.skipped.append(dependent.id)
                logger.info("task_skipped", task_id=dependent.id, failed_dependency=task.id)

    async def _cancel(self, plan: TaskPlan, running: dict[asyncio.Task, Task], result: DispatchResult) -> None:
        result.cancelled = True
        for task in plan.tasks:
            if task.state in (TaskState.PENDING, TaskState.READY):
                task.transition(TaskState.SKIPPED)
                result.skipped.append(task.id)
        logger.info("dispatch_cancelled", plan_id=plan.id, in_flight=[t.id for t in running.values()])
        for task in running.values():
            worker = self._workers.get(task.role)
            if worker is None:
                continue
            try:
                await worker.cancel(task)
            except Exception as e:
                logger.warning("worker_cancel_failed", task_id=task.id, error=str(e))
