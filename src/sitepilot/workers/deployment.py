"""Deployment worker: releases the artifacts produced by upstream tasks."""

from __future__ import annotations

from typing import Any

from sitepilot.core.types import DeployState, WorkerRole
from sitepilot.log import get_logger
from sitepilot.orchestrator.plan import Task
from sitepilot.services.deployment import DeploymentRequest, DeploymentService, slugify
from sitepilot.workers.base import Worker, WorkerResult

logger = get_logger(__name__)


def collect_files(inputs: dict[str, dict[str, Any]]) -> dict[str, str]:
    """Merge ``files`` artifacts from dependency results; later tasks win on conflicts."""
    files: dict[str, str] = {}
    for artifacts in inputs.values():
        produced = artifacts.get("files") or {}
        if isinstance(produced, dict):
            files.update({str(path): str(content) for path, content in produced.items()})
    return files


class DeploymentWorker(Worker):
    def __init__(self, service: DeploymentService):
        self._service = service

    @property
    def role(self) -> WorkerRole:
        return WorkerRole.DEPLOYMENT

    async def execute_task(self, task: Task) -> WorkerResult:
        payload = task.payload
        project_id = payload.get("project_id") or "default"
        extra = (payload.get("project_context") or {}).get("extra") or {}
        options = {**extra, **payload}

        request = DeploymentRequest(
            project_id=project_id,
            files=collect_files(task.inputs),
            project_name=extra.get("projectName"),
            subdomain=extra.get("subdomain") or slugify(project_id),
            custom_domain=extra.get("customDomain"),
            build_command=options.get("buildCommand"),
            output_directory=options.get("outputDirectory"),
            environment_variables={str(k): str(v) for k, v in (options.get("environmentVariables") or {}).items()},
            metadata={"taskId": task.id},
        )
        outcome = await self._service.deploy(request)
        artifacts = {"deployment_id": outcome.deployment_id, "url": outcome.url, "state": outcome.state.value}
        if outcome.state != DeployState.READY:
            return WorkerResult(success=False, artifacts=artifacts, error=outcome.error or f"deployment {outcome.state}")
        return WorkerResult(success=True, artifacts=artifacts)

    def context_updates_for(self, task: Task, result: WorkerResult) -> dict[str, Any]:
        return {
            "deployment": {
                "deploymentId": result.artifacts.get("deployment_id"),
                "url": result.artifacts.get("url"),
                "state": result.artifacts.get("state"),
            }
        }
