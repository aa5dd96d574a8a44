"""Service lifecycle manager."""

from __future__ import annotations

from sitepilot.log import get_logger
from sitepilot.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts services in registration order and stops them in reverse."""

    def __init__(self) -> None:
        self._services: list[Service] = []

    def register(self, service: Service) -> None:
        self._services.append(service)

    def get(self, name: str) -> Service | None:
        for service in self._services:
            if service.service_name == name:
                return service
        return None

    def all(self) -> list[Service]:
        return list(self._services)

    async def start_all(self) -> None:
        """Start all services. A service that fails to start is logged and left out."""
        started: list[Service] = []
        for service in self._services:
            try:
                await service.start()
                started.append(service)
            except Exception as e:
                logger.warning("service_unavailable", service=service.service_name, error=str(e))
        self._services = started
        logger.info("all_services_started", services=[s.service_name for s in started])

    async def stop_all(self) -> None:
        for service in reversed(self._services):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_error", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {service.service_name: await service.health_check() for service in self._services}
