"""Deployment record repository."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from sitepilot.core.types import DeployState
from sitepilot.log import get_logger
from sitepilot.storage.database import Database
from sitepilot.storage.models import DeploymentRecord, utcnow

logger = get_logger(__name__)


class DeploymentRepository:
    """One record per deploy target; re-deploys update the existing row."""

    def __init__(self, db: Database):
        self._db = db

    async def find_by_target(self, project_id: str, target: str) -> Optional[DeploymentRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM deployments WHERE project_id = ? AND target = ?",
            (project_id, target),
        )
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        cursor = await self._db.conn.execute("SELECT * FROM deployments WHERE id = ?", (deployment_id,))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def list_for_project(self, project_id: str) -> list[DeploymentRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM deployments WHERE project_id = ? ORDER BY updated_at DESC",
            (project_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def begin_deployment(
        self,
        project_id: str,
        provider: str,
        target: Optional[str],
        metadata: dict[str, Any],
    ) -> DeploymentRecord:
        """Create a queued record, or reset the existing record for ``target``.

        Prior metadata is kept and extended with the new keys.
        """
        existing = await self.find_by_target(project_id, target) if target else None
        if existing is None:
            record = DeploymentRecord(
                id=uuid.uuid4().hex,
                project_id=project_id,
                provider=provider,
                target=target,
                metadata=dict(metadata),
            )
            await self._db.conn.execute(
                """INSERT INTO deployments
                   (id, project_id, provider, state, target, url, external_id,
                    metadata_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                self._record_to_row(record),
            )
            await self._db.conn.commit()
            logger.info("deployment_record_created", deployment_id=record.id, target=target)
            return record

        existing.provider = provider
        existing.state = DeployState.QUEUED
        existing.external_id = None
        existing.metadata = {**existing.metadata, **metadata}
        existing.metadata.pop("error", None)
        await self.save(existing)
        logger.info("deployment_record_reused", deployment_id=existing.id, target=target)
        return existing

    async def save(self, record: DeploymentRecord) -> DeploymentRecord:
        record.updated_at = utcnow()
        await self._db.conn.execute(
            """UPDATE deployments
               SET provider = ?, state = ?, url = ?, external_id = ?,
                   metadata_json = ?, updated_at = ?
               WHERE id = ?""",
            (
                record.provider,
                record.state.value,
                record.url,
                record.external_id,
                json.dumps(record.metadata, ensure_ascii=False, default=str),
                record.updated_at.isoformat(),
                record.id,
            ),
        )
        await self._db.conn.commit()
        return record

    @staticmethod
    def _record_to_row(record: DeploymentRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.project_id,
            record.provider,
            record.state.value,
            record.target,
            record.url,
            record.external_id,
            json.dumps(record.metadata, ensure_ascii=False, default=str),
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> DeploymentRecord:
        return DeploymentRecord(
            id=row["id"],
            project_id=row["project_id"],
            provider=row["provider"],
            state=DeployState(row["state"]),
            target=row["target"],
            url=row["url"],
            external_id=row["external_id"],
            metadata=json.loads(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
