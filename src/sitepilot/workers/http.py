"""HTTP-backed worker: POSTs a task to a remote specialist agent."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from sitepilot.config import WorkerEndpointConfig
from sitepilot.core.types import WorkerRole
from sitepilot.log import get_logger
from sitepilot.orchestrator.plan import Task
from sitepilot.workers.base import Worker, WorkerResult

logger = get_logger(__name__)


class HttpWorker(Worker):
    """Sends ``{taskId, action, payload, inputs}`` to an agent endpoint.

    The endpoint replies with ``{success, artifacts?, error?}``. Cancellation
    is a best-effort ``DELETE {url}/{taskId}``.
    """

    def __init__(
        self,
        role: WorkerRole,
        config: WorkerEndpointConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._role = role
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout, headers=config.headers)
        self._owns_client = client is None

    @property
    def role(self) -> WorkerRole:
        return self._role

    async def execute_task(self, task: Task) -> WorkerResult:
        body = {
            "taskId": task.id,
            "action": task.action,
            "description": task.description,
            "payload": task.payload,
            "inputs": task.inputs,
        }
        logger.info("worker_request", role=self._role.value, task_id=task.id, url=self._config.url)
        try:
            response = await self._client.post(self._config.url, json=body)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            return WorkerResult(success=False, error=f"agent returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return WorkerResult(success=False, error=f"agent unreachable: {e}")
        except ValueError:
            return WorkerResult(success=False, error="agent returned a non-JSON reply")

        if not isinstance(data, dict):
            return WorkerResult(success=False, error="agent returned an unexpected reply")
        return WorkerResult(
            success=bool(data.get("success")),
            artifacts=dict(data.get("artifacts") or {}),
            error=data.get("error"),
        )

    async def cancel(self, task: Task) -> None:
        try:
            await self._client.delete(f"{self._config.url.rstrip('/')}/{task.id}")
        except httpx.HTTPError as e:
            logger.debug("worker_cancel_failed", role=self._role.value, task_id=task.id, error=str(e))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
