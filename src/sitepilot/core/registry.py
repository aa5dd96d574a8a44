"""Registries of model providers and task workers.

Both are plain objects built once by the application and handed to the
components that need them, so tests can construct their own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sitepilot.core.types import WorkerRole
from sitepilot.log import get_logger

if TYPE_CHECKING:
    from sitepilot.ai.client import ModelProvider
    from sitepilot.workers.base import Worker

logger = get_logger(__name__)


class ProviderRegistry:
    """Ordered collection of model providers."""

    def __init__(self) -> None:
        self._providers: dict[str, ModelProvider] = {}

    def register(self, provider: ModelProvider) -> None:
        self._providers[provider.name] = provider
        logger.info("provider_registered", provider=provider.name)

    def get(self, name: str) -> ModelProvider | None:
        return self._providers.get(name)

    def resolve(self, model: str) -> ModelProvider | None:
        """Return the first registered provider whose patterns match ``model``."""
        for provider in self._providers.values():
            if provider.owns(model):
                return provider
        return None

    def all(self) -> list[ModelProvider]:
        return list(self._providers.values())

    def names(self) -> list[str]:
        return list(self._providers.keys())


class WorkerRegistry:
    """Maps each worker role to the collaborator that executes its tasks."""

    def __init__(self) -> None:
        self._workers: dict[WorkerRole, Worker] = {}

    def register(self, worker: Worker) -> None:
        self._workers[worker.role] = worker
        logger.info("worker_registered", role=worker.role.value)

    def get(self, role: WorkerRole) -> Worker | None:
        return self._workers.get(role)

    def all(self) -> list[Worker]:
        return list(self._workers.values())

    def roles(self) -> list[WorkerRole]:
        return list(self._workers.keys())
