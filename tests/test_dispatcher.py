"""Tests for the agent dispatcher."""

import asyncio

import pytest

from conftest import FakeWorker
from sitepilot.config import DispatcherConfig
from sitepilot.core.registry import WorkerRegistry
from sitepilot.core.types import Intent, TaskState, WorkerRole
from sitepilot.errors import PlanningInvariantViolation
from sitepilot.orchestrator.dispatcher import AgentDispatcher
from sitepilot.orchestrator.plan import Task, TaskPlan


def _task(task_id, role, action="update_content", deps=(), priority=1):
    return Task(id=task_id, role=role, action=action, dependencies=list(deps), priority=priority,
                payload={"target": task_id})


def _site_plan():
    return TaskPlan(
        intent=Intent.COMPLEX_TASK,
        tasks=[
            _task("ui", WorkerRole.FRONTEND, "create_website"),
            _task("auth", WorkerRole.BACKEND, "create_auth_system"),
            _task("orders", WorkerRole.BACKEND, "implement_business_logic"),
            _task("deploy", WorkerRole.DEPLOYMENT, "deploy_application", deps=["ui", "auth", "orders"]),
        ],
    )


class TestAgentDispatcher:
    """Tests for DAG execution."""

    async def test_all_tasks_succeed(self, workers, store):
        plan = _site_plan()
        result = await AgentDispatcher(workers, store).execute(plan, project_id="p1")

        assert result.success
        assert sorted(result.succeeded) == ["auth", "deploy", "orders", "ui"]
        assert result.failed == {}
        assert result.skipped == []
        assert set(result.agents_used) == {"frontend", "backend", "deployment"}
        assert all(t.state == TaskState.SUCCEEDED for t in plan.tasks)
        assert result.deployment_url == "https://x.example.app"

    async def test_dependency_artifacts_flow_to_dependents(self, workers, store):
        plan = _site_plan()
        await AgentDispatcher(workers, store).execute(plan)
        deploy = plan.get("deploy")
        assert deploy.inputs["ui"]["files"] == {"index.html": "<h1>hi</h1>"}
        assert set(deploy.inputs) == {"ui", "auth", "orders"}

    async def test_failure_skips_dependents_but_not_unrelated(self, store):
        registry = WorkerRegistry()
        registry.register(FakeWorker(WorkerRole.FRONTEND))
        registry.register(FakeWorker(WorkerRole.BACKEND, fail_actions=("create_auth_system",)))
        deployer = FakeWorker(WorkerRole.DEPLOYMENT)
        registry.register(deployer)

        plan = _site_plan()
        result = await AgentDispatcher(registry, store).execute(plan)

        assert not result.success
        assert result.failed == {"auth": "create_auth_system failed"}
        assert sorted(result.succeeded) == ["orders", "ui"]
        assert result.skipped == ["deploy"]
        assert plan.get("deploy").state == TaskState.SKIPPED
        assert deployer.executed == []

    async def test_transitive_skip(self, store):
        registry = WorkerRegistry()
        registry.register(FakeWorker(WorkerRole.FRONTEND, fail_actions=("create_website",)))
        registry.register(FakeWorker(WorkerRole.BACKEND))
        plan = TaskPlan(
            intent=Intent.COMPLEX_TASK,
            tasks=[
                _task("a", WorkerRole.FRONTEND, "create_website"),
                _task("b", WorkerRole.BACKEND, deps=["a"]),
                _task("c", WorkerRole.BACKEND, deps=["b"]),
            ],
        )
        result = await AgentDispatcher(registry, store).execute(plan)
        assert sorted(result.skipped) == ["b", "c"]

    async def test_worker_exception_becomes_failure(self, store):
        registry = WorkerRegistry()
        registry.register(FakeWorker(WorkerRole.FRONTEND, raise_actions=("create_website",)))
        plan = TaskPlan(intent=Intent.SIMPLE_TASK, tasks=[_task("ui", WorkerRole.FRONTEND, "create_website")])

        result = await AgentDispatcher(registry, store).execute(plan)

        assert result.failed == {"ui": "create_website exploded"}

    async def test_missing_worker_fails_task(self, store):
        plan = TaskPlan(intent=Intent.SIMPLE_TASK, tasks=[_task("ui", WorkerRole.FRONTEND)])
        result = await AgentDispatcher(WorkerRegistry(), store).execute(plan)
        assert "no worker registered" in result.failed["ui"]

    async def test_task_timeout(self, store):
        registry = WorkerRegistry()
        registry.register(FakeWorker(WorkerRole.FRONTEND, delay=1.0))
        plan = TaskPlan(intent=Intent.SIMPLE_TASK, tasks=[_task("ui", WorkerRole.FRONTEND)])

        result = await AgentDispatcher(registry, store, DispatcherConfig(task_timeout=0.05)).execute(plan)

        assert "timed out" in result.failed["ui"]

    async def test_max_concurrency_respected(self, store):
        worker = FakeWorker(WorkerRole.BACKEND, delay=0.02)
        registry = WorkerRegistry()
        registry.register(worker)
        plan = TaskPlan(
            intent=Intent.COMPLEX_TASK,
            tasks=[_task(f"t{i}", WorkerRole.BACKEND) for i in range(6)],
        )

        result = await AgentDispatcher(registry, store, DispatcherConfig(max_concurrency=2)).execute(plan)

        assert len(result.succeeded) == 6
        assert worker.max_active == 2

    async def test_independent_tasks_run_concurrently(self, store):
        worker = FakeWorker(WorkerRole.BACKEND, delay=0.02)
        registry = WorkerRegistry()
        registry.register(worker)
        plan = TaskPlan(intent=Intent.COMPLEX_TASK, tasks=[_task(f"t{i}", WorkerRole.BACKEND) for i in range(4)])

        await AgentDispatcher(registry, store).execute(plan)

        assert worker.max_active == 4

    async def test_higher_priority_starts_first(self, store):
        worker = FakeWorker(WorkerRole.BACKEND)
        registry = WorkerRegistry()
        registry.register(worker)
        plan = TaskPlan(
            intent=Intent.COMPLEX_TASK,
            tasks=[_task("low", WorkerRole.BACKEND, priority=1), _task("high", WorkerRole.BACKEND, priority=3)],
        )

        await AgentDispatcher(registry, store, DispatcherConfig(max_concurrency=1)).execute(plan)

        assert worker.executed == ["high", "low"]

    async def test_context_updated_after_success(self, workers, store):
        await AgentDispatcher(workers, store).execute(_site_plan(), project_id="p1")

        context = store.get_project_context("p1")
        assert context.current_template == "default"
        assert sorted(c["taskId"] for c in context.customizations) == ["auth", "deploy", "orders", "ui"]

    async def test_rejects_invalid_plan(self, workers, store):
        plan = TaskPlan(intent=Intent.SIMPLE_TASK, tasks=[_task("a", WorkerRole.FRONTEND, deps=["a"])])
        with pytest.raises(PlanningInvariantViolation):
            await AgentDispatcher(workers, store).execute(plan)


class TestCancellation:
    """Tests for cooperative cancellation."""

    async def test_cancel_before_start_skips_everything(self, workers, store):
        cancel = asyncio.Event()
        cancel.set()
        plan = _site_plan()

        result = await AgentDispatcher(workers, store).execute(plan, cancel_event=cancel)

        assert result.cancelled
        assert sorted(result.skipped) == ["auth", "deploy", "orders", "ui"]
        assert result.succeeded == []

    async def test_cancel_mid_flight_discards_late_results(self, store):
        frontend = FakeWorker(WorkerRole.FRONTEND, delay=0.1)
        registry = WorkerRegistry()
        registry.register(frontend)
        registry.register(FakeWorker(WorkerRole.BACKEND))
        plan = TaskPlan(
            intent=Intent.COMPLEX_TASK,
            tasks=[
                _task("ui", WorkerRole.FRONTEND, "create_website"),
                _task("api", WorkerRole.BACKEND, deps=["ui"]),
            ],
        )
        cancel = asyncio.Event()
        dispatcher = AgentDispatcher(registry, store)

        async def _cancel_soon():
            await asyncio.sleep(0.02)
            cancel.set()

        result, _ = await asyncio.gather(dispatcher.execute(plan, project_id="p1", cancel_event=cancel), _cancel_soon())

        assert result.cancelled
        assert frontend.cancelled == ["ui"]
        assert result.discarded == ["ui"]
        assert result.skipped == ["api"]
        assert "ui" not in result.succeeded
        assert store.get_project_context("p1") is None
        for task in plan.tasks:
            assert task.state.is_terminal
