"""Deployment tracking: provider adapters, the record state machine, and polling."""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from sitepilot.config import DeploymentConfig
from sitepilot.core.types import DeployState
from sitepilot.errors import DeploymentFailure
from sitepilot.log import get_logger
from sitepilot.services.base import Service
from sitepilot.storage.deployment_repo import DeploymentRepository
from sitepilot.storage.models import DeploymentRecord

logger = get_logger(__name__)

_PROVIDER_STATES = {
    "QUEUED": DeployState.QUEUED,
    "INITIALIZING": DeployState.QUEUED,
    "BUILDING": DeployState.BUILDING,
    "READY": DeployState.READY,
    "ERROR": DeployState.FAILED,
    "CANCELED": DeployState.FAILED,
    "CANCELLED": DeployState.FAILED,
}

_STATE_ORDER = {DeployState.QUEUED: 0, DeployState.BUILDING: 1, DeployState.READY: 2, DeployState.FAILED: 2}


def map_provider_state(status: Optional[str]) -> DeployState:
    """Map a provider status string to a DeployState. Unknown values are queued."""
    if not status:
        return DeployState.QUEUED
    return _PROVIDER_STATES.get(str(status).strip().upper(), DeployState.QUEUED)


def slugify(value: str, max_length: int = 63) -> str:
    slug = re.sub(r"[^a-z0-9-]+", "-", value.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "site"


@dataclass
class DeploymentRequest:
    project_id: str
    files: dict[str, str] = field(default_factory=dict)  # path -> content
    project_name: Optional[str] = None
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    build_command: Optional[str] = None
    output_directory: Optional[str] = None
    environment_variables: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> Optional[str]:
        return self.custom_domain or self.subdomain

    @property
    def name(self) -> str:
        return slugify(self.project_name or self.subdomain or self.project_id)

    def build_settings(self, config: DeploymentConfig) -> dict[str, Any]:
        """Build options for this release. Unset fields fall back to config; env values are left out."""
        return {
            "buildCommand": self.build_command or config.build_command,
            "outputDirectory": self.output_directory or config.output_directory,
            "environmentVariables": sorted(self.environment_variables),
        }


@dataclass
class DeploymentOutcome:
    deployment_id: str
    url: Optional[str]
    state: DeployState
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"deploymentId": self.deployment_id, "url": self.url, "state": self.state.value}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ProviderStatus:
    external_id: str
    raw_status: Optional[str]
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def state(self) -> DeployState:
        return map_provider_state(self.raw_status)


class DeploymentProvider(ABC):
    """Hosting backend that builds and serves a site."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def create(self, request: DeploymentRequest) -> ProviderStatus:
        ...

    @abstractmethod
    async def get_status(self, external_id: str) -> ProviderStatus:
        ...

    async def add_domain(self, project_name: str, domain: str) -> None:
        return None

    async def close(self) -> None:
        return None


class VercelDeploymentProvider(DeploymentProvider):
    """Vercel REST API over httpx."""

    def __init__(self, config: DeploymentConfig, client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.request_timeout,
            headers={"Authorization": f"Bearer {config.api_token}"},
        )

    @property
    def name(self) -> str:
        return "vercel"

    def _params(self) -> dict[str, str]:
        return {"teamId": self._config.team_id} if self._config.team_id else {}

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise DeploymentFailure(
                f"Vercel API returned HTTP {response.status_code}",
                {"status": response.status_code, "body": response.text[:300]},
            )
        try:
            data = response.json()
        except ValueError as e:
            raise DeploymentFailure("Vercel API returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise DeploymentFailure("Vercel API returned an unexpected body", {"body": response.text[:300]})
        return data

    @staticmethod
    def _status(data: dict[str, Any]) -> ProviderStatus:
        if not data.get("id"):
            error = data.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise DeploymentFailure(message or "Vercel API reply has no deployment id", {"body": data})
        url = data.get("url")
        return ProviderStatus(
            external_id=str(data["id"]),
            raw_status=data.get("readyState") or data.get("status"),
            url=f"https://{url}" if url and not url.startswith("http") else url,
            error=data.get("errorMessage"),
        )

    async def create(self, request: DeploymentRequest) -> ProviderStatus:
        settings = request.build_settings(self._config)
        body: dict[str, Any] = {
            "name": request.name,
            "target": "production",
            "files": [{"file": path, "data": content} for path, content in sorted(request.files.items())],
            "projectSettings": {
                "framework": self._config.framework,
                "buildCommand": settings["buildCommand"],
                "outputDirectory": settings["outputDirectory"],
            },
        }
        if request.environment_variables:
            body["env"] = dict(request.environment_variables)
        response = await self._client.post("/v13/deployments", json=body, params=self._params())
        return self._status(self._json(response))

    async def get_status(self, external_id: str) -> ProviderStatus:
        response = await self._client.get(f"/v13/deployments/{external_id}", params=self._params())
        return self._status(self._json(response))

    async def add_domain(self, project_name: str, domain: str) -> None:
        response = await self._client.post(
            f"/v9/projects/{project_name}/domains", json={"name": domain}, params=self._params()
        )
        if response.status_code == 409:
            logger.info("vercel_domain_exists", project=project_name, domain=domain)
            return
        self._json(response)

    async def close(self) -> None:
        await self._client.aclose()


class DeploymentTracker:
    """Moves one deployment record through queued -> building -> ready|failed.

    Repeating the current state is a no-op, terminal states absorb every
    later update, and building never regresses to queued. A jump from
    queued straight to ready is recorded as passing through building.
    """

    def __init__(self, record: DeploymentRecord, repo: DeploymentRepository):
        self.record = record
        self._repo = repo

    @property
    def state(self) -> DeployState:
        return self.record.state

    async def apply(self, state: DeployState, url: Optional[str] = None, reason: Optional[str] = None) -> bool:
        """Apply a provider-reported state. Returns True if the record changed."""
        current = self.record.state
        if current.is_terminal:
            return False
        if state == current or _STATE_ORDER[state] < _STATE_ORDER[current]:
            return False

        if state == DeployState.READY and current == DeployState.QUEUED:
            await self._move(DeployState.BUILDING)
        if url:
            self.record.url = url
        if state == DeployState.FAILED and reason:
            self.record.metadata["error"] = reason
        await self._move(state)
        return True

    async def fail(self, reason: str) -> None:
        if self.record.state.is_terminal:
            return
        self.record.metadata["error"] = reason
        await self._move(DeployState.FAILED)

    async def _move(self, state: DeployState) -> None:
        previous = self.record.state
        self.record.state = state
        await self._repo.save(self.record)
        logger.info(
            "deployment_state_changed",
            deployment_id=self.record.id,
            from_state=previous.value,
            to_state=state.value,
        )


class DeploymentService(Service):
    """Creates deployments and polls them to a terminal state.

    Failures are recorded on the record and reported in the outcome; nothing
    is retried automatically.
    """

    def __init__(self, provider: DeploymentProvider, repo: DeploymentRepository, config: DeploymentConfig):
        self._provider = provider
        self._repo = repo
        self._config = config

    @property
    def service_name(self) -> str:
        return "deployment"

    @property
    def provider(self) -> DeploymentProvider:
        return self._provider

    async def start(self) -> None:
        logger.info("deployment_service_started", provider=self._provider.name)

    async def stop(self) -> None:
        await self._provider.close()
        logger.info("deployment_service_stopped")

    async def health_check(self) -> bool:
        return self._config.enabled

    def public_domain(self, request: DeploymentRequest) -> Optional[str]:
        if request.custom_domain:
            return request.custom_domain
        if request.subdomain and self._config.main_domain:
            return f"{request.subdomain}.{self._config.main_domain}"
        return None

    async def deploy(self, request: DeploymentRequest) -> DeploymentOutcome:
        record = await self._repo.begin_deployment(
            request.project_id,
            self._provider.name,
            request.target,
            {**request.metadata, "files": len(request.files), **request.build_settings(self._config)},
        )
        tracker = DeploymentTracker(record, self._repo)
        logger.info("deployment_started", deployment_id=record.id, project_id=request.project_id, target=request.target)

        try:
            status = await asyncio.wait_for(self._provider.create(request), timeout=self._config.request_timeout)
        except (DeploymentFailure, httpx.HTTPError, asyncio.TimeoutError) as e:
            await tracker.fail(f"create failed: {str(e) or type(e).__name__}")
            return self._outcome(tracker)

        record.external_id = status.external_id
        await self._repo.save(record)
        await tracker.apply(status.state, url=status.url, reason=status.error)
        await self._poll(tracker, status.external_id)

        if tracker.state == DeployState.READY:
            domain = self.public_domain(request)
            if domain:
                try:
                    await self._provider.add_domain(request.name, domain)
                    record.url = f"https://{domain}"
                    await self._repo.save(record)
                except (DeploymentFailure, httpx.HTTPError) as e:
                    logger.warning("deployment_domain_failed", deployment_id=record.id, domain=domain, error=str(e))
        return self._outcome(tracker)

    async def _poll(self, tracker: DeploymentTracker, external_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.poll_timeout

        while not tracker.state.is_terminal:
            remaining = deadline - loop.time()
            if remaining <= 0:
                await tracker.fail(f"timed out after {self._config.poll_timeout}s")
                return
            await asyncio.sleep(min(self._config.poll_interval, remaining))
            try:
                status = await asyncio.wait_for(
                    self._provider.get_status(external_id), timeout=self._config.request_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("deployment_poll_timeout", deployment_id=tracker.record.id)
                continue
            except (DeploymentFailure, httpx.HTTPError) as e:
                await tracker.fail(f"status check failed: {e}")
                return
            await tracker.apply(status.state, url=status.url, reason=status.error or status.raw_status)

    @staticmethod
    def _outcome(tracker: DeploymentTracker) -> DeploymentOutcome:
        record = tracker.record
        return DeploymentOutcome(
            deployment_id=record.id,
            url=record.url,
            state=record.state,
            error=record.metadata.get("error") if record.state == DeployState.FAILED else None,
        )
