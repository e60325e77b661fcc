from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from crm_core.core.config import Settings, get_settings
from crm_core.crm.errors import PersistenceError
from crm_core.metrics import observe_persistence
from crm_core.platform.persistence.snapshot import apply_snapshot, build_snapshot

if TYPE_CHECKING:
    from crm_core.crm.workspace import CRMWorkspace


logger = logging.getLogger("crm_core.persistence")

BACKEND = "json_file"


class JsonFilePersistence:
    """Whole-workspace snapshot kept in a single JSON document on disk."""

    def __init__(
        self,
        workspace: CRMWorkspace,
        path: str | Path | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.workspace = workspace
        self.settings = settings or workspace.settings or get_settings()
        self.path = Path(path or self.settings.persistence_path)

    @property
    def enabled(self) -> bool:
        return self.settings.persistence_enabled

    def save(self) -> None:
        if not self.enabled:
            return
        document = build_snapshot(self.workspace, self.settings.snapshot_version)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as exc:
            observe_persistence(backend=BACKEND, operation="save", status="error")
            raise PersistenceError(f"Failed to write snapshot to {self.path}") from exc

        observe_persistence(backend=BACKEND, operation="save", status="ok")
        logger.info(
            "persistence.saved",
            extra={"path": str(self.path), "count": document["metadata"]["total_records"]},
        )

    def load(self) -> bool:
        if not self.enabled or not self.path.exists():
            return False

        document = self._read(self.path)
        count = apply_snapshot(self.workspace, document, self.settings.snapshot_version)
        observe_persistence(backend=BACKEND, operation="load", status="ok")
        logger.info("persistence.loaded", extra={"path": str(self.path), "count": count})
        return True

    def clear(self) -> None:
        if not self.enabled:
            return
        self.path.unlink(missing_ok=True)
        observe_persistence(backend=BACKEND, operation="clear", status="ok")
        logger.info("persistence.cleared", extra={"path": str(self.path)})

    def backup(self) -> Path:
        if not self.path.exists():
            raise PersistenceError(f"No snapshot to back up at {self.path}")
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
        target = self.path.with_name(f"backup-{stamp}.json")
        shutil.copyfile(self.path, target)
        logger.info("persistence.backup_created", extra={"path": str(target)})
        return target

    def restore(self, backup_path: str | Path) -> bool:
        source = Path(backup_path)
        self._read(source)
        shutil.copyfile(source, self.path)
        logger.info("persistence.restored", extra={"path": str(source)})
        return self.load()

    def statistics(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "total_records": self.workspace.total_records(),
            "entities": {kind.value: repository.count() for kind, repository in self.workspace.repositories().items()},
            "uniqueness_constraints": len(self.workspace.uniqueness),
            "history_entries": len(self.workspace.audit_log),
            "last_saved": None,
            "size_bytes": 0,
        }
        if self.path.exists():
            stats["size_bytes"] = self.path.stat().st_size
            stats["last_saved"] = (self._read(self.path).get("metadata") or {}).get("last_saved")
        return stats

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            observe_persistence(backend=BACKEND, operation="load", status="error")
            raise PersistenceError(f"Snapshot at {path} is unreadable") from exc
        if not isinstance(document, dict):
            raise PersistenceError(f"Snapshot at {path} is not a JSON object")
        return document
