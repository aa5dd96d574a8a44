"""Shared fixtures and test doubles."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from sitepilot.ai.client import ModelProvider, ModelRequest, TokenUsage
from sitepilot.ai.gateway import ModelGateway
from sitepilot.config import ClassifierConfig, DeploymentConfig, FallbackModelConfig, ModelConfig
from sitepilot.core.registry import ProviderRegistry, WorkerRegistry
from sitepilot.core.types import WorkerRole
from sitepilot.orchestrator.classifier import IntentClassifier
from sitepilot.orchestrator.dispatcher import AgentDispatcher
from sitepilot.orchestrator.handler import ChatHandler
from sitepilot.orchestrator.plan import Task
from sitepilot.orchestrator.planner import TaskPlanner
from sitepilot.services.deployment import DeploymentProvider, DeploymentRequest, ProviderStatus
from sitepilot.storage.context_store import ConversationContextStore
from sitepilot.storage.conversation_repo import ConversationRepository
from sitepilot.storage.database import Database
from sitepilot.storage.deployment_repo import DeploymentRepository
from sitepilot.workers.base import Worker, WorkerResult


class FakeProvider(ModelProvider):
    """Scripted model provider.

    ``replies`` are returned in order (the last one repeats); an exception
    instance in the list is raised instead.
    """

    def __init__(
        self,
        name: str,
        patterns: list[str],
        replies: Optional[list] = None,
        available: bool = True,
        delay: float = 0.0,
        usage: Optional[TokenUsage] = None,
    ):
        super().__init__(patterns, cost_per_1k_tokens=0.002)
        self._name = name
        self.replies = list(replies or ["ok"])
        self.available = available
        self.delay = delay
        self.usage = usage or TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        self.requests: list[ModelRequest] = []
        self.availability_checks = 0

    @property
    def name(self) -> str:
        return self._name

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def _complete(self, request: ModelRequest):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply, self.usage


class FakeWorker(Worker):
    """Worker whose outcome is chosen per action."""

    def __init__(
        self,
        role: WorkerRole,
        fail_actions: tuple[str, ...] = (),
        delay: float = 0.0,
        artifacts: Optional[dict] = None,
        raise_actions: tuple[str, ...] = (),
    ):
        self._role = role
        self.fail_actions = fail_actions
        self.raise_actions = raise_actions
        self.delay = delay
        self.artifacts = artifacts or {}
        self.executed: list[str] = []
        self.cancelled: list[str] = []
        self.active = 0
        self.max_active = 0

    @property
    def role(self) -> WorkerRole:
        return self._role

    async def execute_task(self, task: Task) -> WorkerResult:
        self.executed.append(task.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if task.action in self.raise_actions:
                raise RuntimeError(f"{task.action} exploded")
            if task.action in self.fail_actions:
                return WorkerResult(success=False, error=f"{task.action} failed")
            return WorkerResult(success=True, artifacts=dict(self.artifacts))
        finally:
            self.active -= 1

    async def cancel(self, task: Task) -> None:
        self.cancelled.append(task.id)


class SimulatedDeploymentProvider(DeploymentProvider):
    """Timer-free deployment double: each status poll advances one step in ``statuses``."""

    def __init__(self, statuses: list[Optional[str]], url: str = "https://sim.example.app", error: Optional[str] = None):
        self.statuses = list(statuses)
        self.url = url
        self.error = error
        self.created: list[DeploymentRequest] = []
        self.polls = 0
        self.domains: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "simulated"

    def _next(self) -> Optional[str]:
        return self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]

    async def create(self, request: DeploymentRequest) -> ProviderStatus:
        self.created.append(request)
        return ProviderStatus(external_id=f"dpl_{len(self.created)}", raw_status=self._next())

    async def get_status(self, external_id: str) -> ProviderStatus:
        self.polls += 1
        status = self._next()
        return ProviderStatus(
            external_id=external_id,
            raw_status=status,
            url=self.url if status == "READY" else None,
            error=self.error if status == "ERROR" else None,
        )

    async def add_domain(self, project_name: str, domain: str) -> None:
        self.domains.append((project_name, domain))


def make_gateway(*providers: ModelProvider, primary: str = "gpt-4o-mini", fallback: Optional[str] = None,
                 timeout: float = 5.0) -> ModelGateway:
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider)
    config = ModelConfig(
        name=primary,
        temperature=0.7,
        timeout=timeout,
        fallback=FallbackModelConfig(name=fallback, temperature=0.3) if fallback else None,
    )
    return ModelGateway(registry, config)


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "sitepilot.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def deployment_repo(db):
    return DeploymentRepository(db)


@pytest.fixture
def store(conversation_repo):
    return ConversationContextStore(conversation_repo)


@pytest.fixture
def deploy_config():
    return DeploymentConfig(
        api_token="test-token",
        main_domain="example.app",
        poll_interval=0.01,
        poll_timeout=1.0,
        request_timeout=0.5,
    )


@pytest.fixture
def workers():
    registry = WorkerRegistry()
    registry.register(FakeWorker(WorkerRole.FRONTEND, artifacts={"files": {"index.html": "<h1>hi</h1>"}}))
    registry.register(FakeWorker(WorkerRole.BACKEND))
    registry.register(FakeWorker(WorkerRole.DEPLOYMENT, artifacts={"deployment_id": "d1", "url": "https://x.example.app"}))
    return registry


@pytest.fixture
def handler(store, workers):
    """Chat handler wired with the keyword classifier and fake workers."""
    return ChatHandler(
        store,
        IntentClassifier(None, ClassifierConfig(use_model=False)),
        TaskPlanner(),
        AgentDispatcher(workers, store),
    )
