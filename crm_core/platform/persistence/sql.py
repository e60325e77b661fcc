from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from crm_core.core.config import Settings
from crm_core.metrics import observe_persistence
from crm_core.platform.persistence.models import CRMSnapshot, utcnow
from crm_core.platform.persistence.snapshot import apply_snapshot, build_snapshot

if TYPE_CHECKING:
    from crm_core.crm.workspace import CRMWorkspace


logger = logging.getLogger("crm_core.persistence")

BACKEND = "sql"


class SqlSnapshotPersistence:
    """Stores the workspace snapshot as one JSON row per tenant."""

    def __init__(
        self,
        workspace: CRMWorkspace,
        session_factory: sessionmaker[Session],
        *,
        settings: Settings | None = None,
    ) -> None:
        self.workspace = workspace
        self.session_factory = session_factory
        self.settings = settings or workspace.settings

    def save(self) -> None:
        if not self.settings.persistence_enabled:
            return
        document = build_snapshot(self.workspace, self.settings.snapshot_version)
        with self.session_factory() as session:
            row = session.get(CRMSnapshot, self.workspace.tenant_id)
            if row is None:
                row = CRMSnapshot(tenant_id=self.workspace.tenant_id)
                session.add(row)
            row.version = document["metadata"]["version"]
            row.total_records = document["metadata"]["total_records"]
            row.payload = document
            row.saved_at = utcnow()
            session.commit()

        observe_persistence(backend=BACKEND, operation="save", status="ok")
        logger.info(
            "persistence.saved",
            extra={"tenant_id": self.workspace.tenant_id, "count": document["metadata"]["total_records"]},
        )

    def load(self) -> bool:
        if not self.settings.persistence_enabled:
            return False
        with self.session_factory() as session:
            payload = session.scalar(
                select(CRMSnapshot.payload).where(CRMSnapshot.tenant_id == self.workspace.tenant_id)
            )
        if payload is None:
            return False

        count = apply_snapshot(self.workspace, payload, self.settings.snapshot_version)
        observe_persistence(backend=BACKEND, operation="load", status="ok")
        logger.info("persistence.loaded", extra={"tenant_id": self.workspace.tenant_id, "count": count})
        return True

    def clear(self) -> None:
        if not self.settings.persistence_enabled:
            return
        with self.session_factory() as session:
            session.execute(delete(CRMSnapshot).where(CRMSnapshot.tenant_id == self.workspace.tenant_id))
            session.commit()
        observe_persistence(backend=BACKEND, operation="clear", status="ok")
        logger.info("persistence.cleared", extra={"tenant_id": self.workspace.tenant_id})
