"""Tests for application wiring and service lifecycle."""

import pytest

from sitepilot.app import SitePilotApp
from sitepilot.config import parse_config
from sitepilot.core.types import WorkerRole
from sitepilot.errors import ConfigError
from sitepilot.services.base import Service
from sitepilot.services.manager import ServiceManager


class RecordingService(Service):
    def __init__(self, name, log, fail_start=False):
        self._name = name
        self._log = log
        self._fail_start = fail_start

    @property
    def service_name(self):
        return self._name

    async def start(self):
        if self._fail_start:
            raise RuntimeError("port in use")
        self._log.append(("start", self._name))

    async def stop(self):
        self._log.append(("stop", self._name))

    async def health_check(self):
        return True


class TestServiceManager:
    async def test_start_in_order_stop_in_reverse(self):
        log = []
        manager = ServiceManager()
        manager.register(RecordingService("a", log))
        manager.register(RecordingService("b", log))

        await manager.start_all()
        await manager.stop_all()

        assert log == [("start", "a"), ("start", "b"), ("stop", "b"), ("stop", "a")]

    async def test_failed_service_is_left_out(self):
        log = []
        manager = ServiceManager()
        manager.register(RecordingService("broken", log, fail_start=True))
        manager.register(RecordingService("ok", log))

        await manager.start_all()

        assert [s.service_name for s in manager.all()] == ["ok"]
        assert manager.get("broken") is None
        assert await manager.health_check_all() == {"ok": True}


def _config(tmp_path, extra=""):
    return parse_config(f"storage:\n  db_path: {tmp_path}/app.db\n{extra}")


class TestSitePilotApp:
    """Tests for start/stop wiring without external services."""

    async def test_offline_app_answers_with_heuristics(self, tmp_path):
        app = SitePilotApp(_config(tmp_path))
        await app.start()
        try:
            response = await app.api.chat({"message": "สวัสดีครับ", "userId": "u1"})
        finally:
            await app.stop()

        assert response["type"] == "chat"
        assert response["metadata"]["classifier"] == "heuristic"
        assert app.providers.names() == []

    async def test_deployment_requires_token(self, tmp_path):
        app = SitePilotApp(_config(tmp_path))
        await app.start()
        try:
            assert app.workers.get(WorkerRole.DEPLOYMENT) is None
            assert app.service_manager.all() == []
        finally:
            await app.stop()

    async def test_configured_workers_and_deployment(self, tmp_path):
        extra = (
            "workers:\n  frontend:\n    url: http://localhost:9001/tasks\n"
            "deployment:\n  api_token: tok\n  main_domain: example.app\n"
        )
        app = SitePilotApp(_config(tmp_path, extra))
        await app.start()
        try:
            assert set(app.workers.roles()) == {WorkerRole.FRONTEND, WorkerRole.DEPLOYMENT}
            assert app.service_manager.get("deployment") is not None
        finally:
            await app.stop()

    async def test_unknown_provider_name_is_rejected(self, tmp_path):
        app = SitePilotApp(_config(tmp_path, "provider_order: [openai, mystery]\n"))
        with pytest.raises(ConfigError):
            await app.start()
        await app.db.close()
