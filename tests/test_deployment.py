"""Tests for deployment tracking, providers and the deployment worker."""

import json

import httpx
import pytest

from conftest import SimulatedDeploymentProvider
from sitepilot.config import DeploymentConfig
from sitepilot.core.types import DeployState, WorkerRole
from sitepilot.errors import DeploymentFailure
from sitepilot.orchestrator.plan import Task
from sitepilot.services.deployment import (
    DeploymentRequest,
    DeploymentService,
    DeploymentTracker,
    VercelDeploymentProvider,
    map_provider_state,
    slugify,
)
from sitepilot.storage.deployment_repo import DeploymentRepository
from sitepilot.workers.deployment import DeploymentWorker, collect_files


class RecordingRepository(DeploymentRepository):
    """Deployment repository that remembers every state it persisted."""

    def __init__(self, db):
        super().__init__(db)
        self.saved_states = []

    async def save(self, record):
        self.saved_states.append(record.state)
        return await super().save(record)


class FailingCreateProvider(SimulatedDeploymentProvider):
    async def create(self, request):
        raise DeploymentFailure("quota exceeded")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("QUEUED", DeployState.QUEUED),
        ("INITIALIZING", DeployState.QUEUED),
        ("building", DeployState.BUILDING),
        ("READY", DeployState.READY),
        ("ERROR", DeployState.FAILED),
        ("CANCELED", DeployState.FAILED),
        ("SOMETHING_NEW", DeployState.QUEUED),
        ("", DeployState.QUEUED),
        (None, DeployState.QUEUED),
    ],
)
def test_map_provider_state_is_total(raw, expected):
    assert map_provider_state(raw) == expected


def test_slugify():
    assert slugify("Cafe Shop #1") == "cafe-shop-1"
    assert slugify("!!!") == "site"


class TestDeploymentTracker:
    """Tests for the deployment record state machine."""

    async def _tracker(self, db):
        repo = RecordingRepository(db)
        record = await repo.begin_deployment("p1", "simulated", "cafe", {})
        repo.saved_states.clear()
        return DeploymentTracker(record, repo), repo

    async def test_repeated_state_is_noop(self, db):
        tracker, repo = await self._tracker(db)
        assert await tracker.apply(DeployState.QUEUED) is False
        assert await tracker.apply(DeployState.BUILDING) is True
        assert await tracker.apply(DeployState.BUILDING) is False
        assert repo.saved_states == [DeployState.BUILDING]

    async def test_queued_to_ready_passes_through_building(self, db):
        tracker, repo = await self._tracker(db)
        await tracker.apply(DeployState.READY, url="https://cafe.example.app")
        assert repo.saved_states == [DeployState.BUILDING, DeployState.READY]
        assert tracker.record.url == "https://cafe.example.app"

    async def test_building_never_regresses(self, db):
        tracker, _ = await self._tracker(db)
        await tracker.apply(DeployState.BUILDING)
        assert await tracker.apply(DeployState.QUEUED) is False
        assert tracker.state == DeployState.BUILDING

    async def test_terminal_states_absorb(self, db):
        tracker, repo = await self._tracker(db)
        await tracker.apply(DeployState.FAILED, reason="build error")
        assert await tracker.apply(DeployState.READY) is False
        await tracker.fail("again")
        assert tracker.state == DeployState.FAILED
        assert tracker.record.metadata["error"] == "build error"
        assert repo.saved_states == [DeployState.FAILED]

    async def test_state_is_persisted(self, db):
        tracker, repo = await self._tracker(db)
        await tracker.apply(DeployState.BUILDING)
        stored = await repo.get(tracker.record.id)
        assert stored.state == DeployState.BUILDING


class TestDeploymentService:
    """Tests for create + poll + domain assignment."""

    async def test_reaches_ready_and_assigns_subdomain(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["QUEUED", "BUILDING", "READY"])
        service = DeploymentService(provider, deployment_repo, deploy_config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", files={"index.html": "x"}, subdomain="cafe"))

        assert outcome.state == DeployState.READY
        assert outcome.url == "https://cafe.example.app"
        assert outcome.error is None
        assert provider.polls == 2
        assert provider.domains == [("cafe", "cafe.example.app")]
        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.state == DeployState.READY
        assert stored.external_id == "dpl_1"
        assert stored.metadata["files"] == 1

    async def test_custom_domain_takes_precedence(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["READY"])
        service = DeploymentService(provider, deployment_repo, deploy_config)

        outcome = await service.deploy(
            DeploymentRequest(project_id="p1", subdomain="cafe", custom_domain="www.cafe.co.th", project_name="Cafe")
        )

        assert outcome.url == "https://www.cafe.co.th"
        assert provider.domains == [("cafe", "www.cafe.co.th")]
        assert provider.polls == 0

    async def test_provider_error_marks_failed(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["BUILDING", "ERROR"], error="npm run build exited with 1")
        service = DeploymentService(provider, deployment_repo, deploy_config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        assert outcome.state == DeployState.FAILED
        assert outcome.error == "npm run build exited with 1"
        assert provider.domains == []
        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.metadata["error"] == "npm run build exited with 1"

    async def test_poll_timeout_marks_failed(self, deployment_repo):
        config = DeploymentConfig(main_domain="example.app", poll_interval=0.01, poll_timeout=0.05)
        service = DeploymentService(SimulatedDeploymentProvider(["BUILDING"]), deployment_repo, config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        assert outcome.state == DeployState.FAILED
        assert "timed out" in outcome.error

    async def test_create_failure_marks_failed(self, deployment_repo, deploy_config):
        service = DeploymentService(FailingCreateProvider(["READY"]), deployment_repo, deploy_config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        assert outcome.state == DeployState.FAILED
        assert outcome.error == "create failed: quota exceeded"

    async def test_redeploy_reuses_record_for_same_target(self, deployment_repo, deploy_config):
        service = DeploymentService(SimulatedDeploymentProvider(["READY"]), deployment_repo, deploy_config)

        first = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe", metadata={"taskId": "t1"}))
        second = await service.deploy(
            DeploymentRequest(project_id="p1", subdomain="cafe", metadata={"taskId": "t2", "note": "v2"})
        )

        assert first.deployment_id == second.deployment_id
        records = await deployment_repo.list_for_project("p1")
        assert len(records) == 1
        assert records[0].metadata["taskId"] == "t2"
        assert records[0].metadata["note"] == "v2"

    async def test_redeploy_clears_previous_error(self, deployment_repo, deploy_config):
        failing = DeploymentService(
            SimulatedDeploymentProvider(["BUILDING", "ERROR"], error="boom"), deployment_repo, deploy_config
        )
        await failing.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        healthy = DeploymentService(SimulatedDeploymentProvider(["READY"]), deployment_repo, deploy_config)
        outcome = await healthy.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.state == DeployState.READY
        assert "error" not in stored.metadata

    async def test_build_settings_are_kept_on_the_record(self, deployment_repo, deploy_config):
        service = DeploymentService(SimulatedDeploymentProvider(["READY"]), deployment_repo, deploy_config)

        outcome = await service.deploy(
            DeploymentRequest(
                project_id="p1",
                subdomain="cafe",
                build_command="vite build",
                environment_variables={"API_URL": "https://api.cafe.example.app", "STRIPE_KEY": "sk_live_x"},
            )
        )

        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.metadata["buildCommand"] == "vite build"
        assert stored.metadata["outputDirectory"] == "dist"
        assert stored.metadata["environmentVariables"] == ["API_URL", "STRIPE_KEY"]
        assert "sk_live_x" not in str(stored.metadata)


class TestDeploymentServiceWithVercel:
    """Malformed provider replies must still leave the record in a terminal state."""

    def _service(self, handler, repo, config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=config.base_url)
        return DeploymentService(VercelDeploymentProvider(config, client=client), repo, config)

    @pytest.mark.parametrize(
        "reply",
        [{"error": {"code": "forbidden", "message": "Not authorized"}}, [{"id": "dpl_1"}], {"readyState": "QUEUED"}],
    )
    async def test_malformed_create_reply_marks_failed(self, deployment_repo, deploy_config, reply):
        service = self._service(lambda request: httpx.Response(200, json=reply), deployment_repo, deploy_config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        assert outcome.state == DeployState.FAILED
        assert outcome.error.startswith("create failed: ")
        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.state == DeployState.FAILED

    async def test_malformed_status_reply_marks_failed(self, deployment_repo, deploy_config):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"id": "dpl_7", "readyState": "BUILDING"})
            return httpx.Response(200, json=["unexpected"])

        service = self._service(handler, deployment_repo, deploy_config)

        outcome = await service.deploy(DeploymentRequest(project_id="p1", subdomain="cafe"))

        assert outcome.state == DeployState.FAILED
        assert outcome.error.startswith("status check failed: ")
        stored = await deployment_repo.get(outcome.deployment_id)
        assert stored.state == DeployState.FAILED
        assert stored.external_id == "dpl_7"


class TestVercelProvider:
    """Tests for the Vercel REST adapter."""

    def _provider(self, handler, team_id="team_1"):
        config = DeploymentConfig(api_token="tok", team_id=team_id)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=config.base_url)
        return VercelDeploymentProvider(config, client=client)

    async def test_create_posts_files_and_maps_status(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["team"] = request.url.params.get("teamId")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "dpl_9", "readyState": "BUILDING", "url": "cafe-x.vercel.app"})

        provider = self._provider(handler)
        status = await provider.create(
            DeploymentRequest(project_id="p1", files={"b.css": "b", "a.html": "a"}, subdomain="cafe")
        )
        await provider.close()

        assert seen["path"] == "/v13/deployments"
        assert seen["team"] == "team_1"
        assert seen["body"]["name"] == "cafe"
        assert [f["file"] for f in seen["body"]["files"]] == ["a.html", "b.css"]
        assert status.external_id == "dpl_9"
        assert status.state == DeployState.BUILDING
        assert status.url == "https://cafe-x.vercel.app"
        assert seen["body"]["projectSettings"]["buildCommand"] == "npm run build"
        assert seen["body"]["projectSettings"]["outputDirectory"] == "dist"
        assert "env" not in seen["body"]

    async def test_create_uses_request_build_options(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "dpl_3", "readyState": "QUEUED"})

        provider = self._provider(handler)
        await provider.create(
            DeploymentRequest(
                project_id="p1",
                subdomain="cafe",
                build_command="next build",
                output_directory=".next",
                environment_variables={"API_URL": "https://api.cafe.example.app"},
            )
        )
        await provider.close()

        assert seen["body"]["projectSettings"]["buildCommand"] == "next build"
        assert seen["body"]["projectSettings"]["outputDirectory"] == ".next"
        assert seen["body"]["env"] == {"API_URL": "https://api.cafe.example.app"}

    async def test_error_body_with_ok_status_raises(self):
        reply = {"error": {"code": "forbidden", "message": "Not authorized"}}
        provider = self._provider(lambda request: httpx.Response(200, json=reply))
        with pytest.raises(DeploymentFailure) as info:
            await provider.get_status("dpl_9")
        assert info.value.message == "Not authorized"
        await provider.close()

    async def test_non_object_body_raises(self):
        provider = self._provider(lambda request: httpx.Response(200, json=[1, 2]))
        with pytest.raises(DeploymentFailure, match="unexpected body"):
            await provider.get_status("dpl_9")
        await provider.close()

    async def test_http_error_raises_deployment_failure(self):
        provider = self._provider(lambda request: httpx.Response(500, text="internal"))
        with pytest.raises(DeploymentFailure) as info:
            await provider.get_status("dpl_9")
        assert info.value.details["status"] == 500
        await provider.close()

    async def test_existing_domain_is_accepted(self):
        provider = self._provider(lambda request: httpx.Response(409, json={"error": {"code": "domain_taken"}}))
        await provider.add_domain("cafe", "cafe.example.app")
        await provider.close()

    async def test_no_team_param_without_team_id(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"id": "dpl_1", "readyState": "READY"})

        provider = self._provider(handler, team_id=None)
        status = await provider.get_status("dpl_1")
        await provider.close()

        assert seen["params"] == {}
        assert status.state == DeployState.READY


class TestDeploymentWorker:
    """Tests for the deployment worker."""

    def test_collect_files_merges_dependency_artifacts(self):
        files = collect_files(
            {
                "ui": {"files": {"index.html": "<h1>v1</h1>", "style.css": "body{}"}},
                "api": {"files": {"index.html": "<h1>v2</h1>"}},
                "auth": {"endpoints": ["/login"]},
            }
        )
        assert files == {"index.html": "<h1>v2</h1>", "style.css": "body{}"}

    async def test_successful_release(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["READY"])
        worker = DeploymentWorker(DeploymentService(provider, deployment_repo, deploy_config))
        task = Task(
            id="task-2-deploy_application",
            role=WorkerRole.DEPLOYMENT,
            action="deploy_application",
            payload={"project_id": "Cafe Shop"},
            inputs={"task-1-create_website": {"files": {"index.html": "<h1>hi</h1>"}}},
        )

        result = await worker.execute_task(task)

        assert result.success
        assert result.artifacts["url"] == "https://cafe-shop.example.app"
        assert result.artifacts["state"] == "ready"
        assert provider.created[0].files == {"index.html": "<h1>hi</h1>"}
        assert worker.context_updates_for(task, result)["deployment"]["url"] == "https://cafe-shop.example.app"

    async def test_project_context_supplies_domain(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["READY"])
        worker = DeploymentWorker(DeploymentService(provider, deployment_repo, deploy_config))
        task = Task(
            id="deploy",
            role=WorkerRole.DEPLOYMENT,
            action="deploy_application",
            payload={"project_id": "p1", "project_context": {"extra": {"customDomain": "shop.example.org"}}},
        )

        result = await worker.execute_task(task)

        assert result.artifacts["url"] == "https://shop.example.org"

    async def test_payload_build_options_reach_provider(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["READY"])
        worker = DeploymentWorker(DeploymentService(provider, deployment_repo, deploy_config))
        task = Task(
            id="deploy",
            role=WorkerRole.DEPLOYMENT,
            action="deploy_application",
            payload={
                "project_id": "p1",
                "buildCommand": "pnpm build",
                "environmentVariables": {"API_URL": "https://api.example.app"},
                "project_context": {"extra": {"outputDirectory": "build", "buildCommand": "npm run build"}},
            },
        )

        await worker.execute_task(task)

        request = provider.created[0]
        assert request.build_command == "pnpm build"
        assert request.output_directory == "build"
        assert request.environment_variables == {"API_URL": "https://api.example.app"}

    async def test_failed_release_reports_error(self, deployment_repo, deploy_config):
        provider = SimulatedDeploymentProvider(["BUILDING", "ERROR"], error="missing package.json")
        worker = DeploymentWorker(DeploymentService(provider, deployment_repo, deploy_config))
        task = Task(id="deploy", role=WorkerRole.DEPLOYMENT, action="deploy_application", payload={"project_id": "p1"})

        result = await worker.execute_task(task)

        assert not result.success
        assert result.error == "missing package.json"
        assert result.artifacts["state"] == "failed"
