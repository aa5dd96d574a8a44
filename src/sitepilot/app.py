"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from sitepilot.ai.client import AnthropicProvider, ModelProvider, OpenAIProvider
from sitepilot.ai.gateway import ModelGateway
from sitepilot.api import SitePilotAPI
from sitepilot.config import AppConfig
from sitepilot.core.registry import ProviderRegistry, WorkerRegistry
from sitepilot.core.types import WorkerRole
from sitepilot.errors import ConfigError
from sitepilot.log import get_logger
from sitepilot.orchestrator.classifier import IntentClassifier
from sitepilot.orchestrator.dispatcher import AgentDispatcher
from sitepilot.orchestrator.handler import ChatHandler
from sitepilot.orchestrator.planner import TaskPlanner
from sitepilot.services.deployment import DeploymentService, VercelDeploymentProvider
from sitepilot.services.manager import ServiceManager
from sitepilot.storage.context_store import ConversationContextStore
from sitepilot.storage.conversation_repo import ConversationRepository
from sitepilot.storage.database import Database
from sitepilot.storage.deployment_repo import DeploymentRepository
from sitepilot.workers.deployment import DeploymentWorker
from sitepilot.workers.http import HttpWorker

logger = get_logger(__name__)


class SitePilotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db)
        self.deployment_repo = DeploymentRepository(self.db)
        self.store = ConversationContextStore(self.conversation_repo)
        self.providers = ProviderRegistry()
        self.workers = WorkerRegistry()
        self.service_manager = ServiceManager()
        self.gateway = ModelGateway(self.providers, config.model)
        self.classifier = IntentClassifier(self.gateway, config.classifier)
        self.planner = TaskPlanner(self.gateway)
        self.dispatcher = AgentDispatcher(self.workers, self.store, config.dispatcher)
        self.handler = ChatHandler(
            self.store,
            self.classifier,
            self.planner,
            self.dispatcher,
            history_window=config.classifier.history_window,
            debug=config.debug,
        )
        self.api = SitePilotAPI(self.handler, self.store, heartbeat_interval=config.sync.heartbeat_interval)

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Model providers, in configured preference order
        for name in self.config.provider_order:
            provider = self._create_provider(name)
            if provider is not None:
                self.providers.register(provider)

        # 3. Services and workers
        self._register_workers()
        await self.service_manager.start_all()

        logger.info(
            "sitepilot_started",
            providers=self.providers.names(),
            workers=[role.value for role in self.workers.roles()],
            model=self.gateway.default_model,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for worker in self.workers.all():
            try:
                await worker.close()
            except Exception as e:
                logger.error("worker_close_error", role=worker.role.value, error=str(e))

        for provider in self.providers.all():
            try:
                await provider.close()
            except Exception as e:
                logger.error("provider_close_error", provider=provider.name, error=str(e))

        await self.service_manager.stop_all()
        await self.db.close()
        logger.info("sitepilot_stopped")

    def _create_provider(self, name: str) -> ModelProvider | None:
        match name:
            case "anthropic":
                return AnthropicProvider(self.config.anthropic) if self.config.anthropic else None
            case "openai":
                return OpenAIProvider(self.config.openai) if self.config.openai else None
            case _:
                raise ConfigError(f"Unknown model provider: {name}", {"provider_order": self.config.provider_order})

    def _register_workers(self) -> None:
        workers_cfg = self.config.workers
        if workers_cfg.frontend is not None:
            self.workers.register(HttpWorker(WorkerRole.FRONTEND, workers_cfg.frontend))
        if workers_cfg.backend is not None:
            self.workers.register(HttpWorker(WorkerRole.BACKEND, workers_cfg.backend))

        deploy_cfg = self.config.deployment
        if not deploy_cfg.enabled:
            return
        if deploy_cfg.provider != "vercel":
            raise ConfigError(f"Unknown deployment provider: {deploy_cfg.provider}")
        if not deploy_cfg.api_token:
            logger.warning("deployment_disabled", reason="no api_token configured")
            return
        service = DeploymentService(VercelDeploymentProvider(deploy_cfg), self.deployment_repo, deploy_cfg)
        self.service_manager.register(service)
        self.workers.register(DeploymentWorker(service))
