from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from crm_core.crm.errors import PersistenceError
from crm_core.crm.models import EntityKind
from crm_core.platform.audit.schemas import HistoryEntry
from crm_core.platform.uniqueness.schemas import UniquenessConstraint

if TYPE_CHECKING:
    from crm_core.crm.workspace import CRMWorkspace


logger = logging.getLogger("crm_core.persistence")

_SECTION_ALIASES = {"uniquenessConstraints": "uniqueness_constraints", "historyEntries": "history_entries"}
_METADATA_ALIASES = {"lastSaved": "last_saved", "totalRecords": "total_records"}


class PersistenceAdapter(Protocol):
    def load(self) -> bool:
        ...

    def save(self) -> None:
        ...

    def clear(self) -> None:
        ...


def _version_parts(version: str) -> tuple[int, int] | None:
    try:
        major, minor, *_ = (int(part) for part in version.split("."))
    except ValueError:
        return None
    return major, minor


def is_version_compatible(stored: str, current: str) -> bool:
    """Same major version, and the running code is at least as new on minor."""

    stored_parts = _version_parts(stored)
    current_parts = _version_parts(current)
    if stored_parts is None or current_parts is None:
        return False
    stored_major, stored_minor = stored_parts
    current_major, current_minor = current_parts
    return stored_major == current_major and current_minor >= stored_minor


def build_snapshot(workspace: CRMWorkspace, version: str) -> dict[str, Any]:
    return {
        "entities": {kind.value: repository.to_json() for kind, repository in workspace.repositories().items()},
        "uniqueness_constraints": workspace.uniqueness.to_json(),
        "history_entries": workspace.audit_log.to_json(),
        "metadata": {
            "version": version,
            "last_saved": datetime.now(timezone.utc).isoformat(),
            "total_records": workspace.total_records(),
        },
    }


def normalize_layout(document: Mapping[str, Any]) -> dict[str, Any]:
    """Bring any known snapshot layout to the nested snake_case one, keeping every record."""

    normalized = dict(document)
    for alias, name in _SECTION_ALIASES.items():
        if alias in normalized:
            normalized.setdefault(name, normalized.pop(alias))

    entities = normalized.get("entities") or {}
    if not isinstance(entities, Mapping):
        raise PersistenceError("Snapshot 'entities' must map entity kinds to record lists")
    entities = dict(entities)
    # Flat snapshots keep each kind's records at the top level.
    for kind in EntityKind:
        if kind.value not in entities and isinstance(normalized.get(kind.value), list):
            entities[kind.value] = normalized.pop(kind.value)
    for kind_name, rows in entities.items():
        if not isinstance(rows, list):
            raise PersistenceError(f"Snapshot records for '{kind_name}' must be a list")
    normalized["entities"] = entities

    for section in ("uniqueness_constraints", "history_entries"):
        if normalized.get(section) is not None and not isinstance(normalized[section], list):
            raise PersistenceError(f"Snapshot '{section}' must be a list")

    metadata = normalized.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise PersistenceError("Snapshot 'metadata' must be an object")
    metadata = dict(metadata)
    for alias, name in _METADATA_ALIASES.items():
        if alias in metadata:
            metadata.setdefault(name, metadata.pop(alias))
    normalized["metadata"] = metadata
    return normalized


def migrate_snapshot(document: Mapping[str, Any], version: str) -> dict[str, Any]:
    """Backfill missing sections of an older or foreign snapshot, keeping every record."""

    migrated = normalize_layout(document)
    migrated.setdefault("uniqueness_constraints", [])
    migrated.setdefault("history_entries", [])

    metadata = migrated["metadata"]
    metadata.setdefault("last_saved", datetime.now(timezone.utc).isoformat())
    metadata.setdefault("total_records", sum(len(rows) for rows in migrated["entities"].values()))
    metadata["version"] = version
    return migrated


def apply_snapshot(workspace: CRMWorkspace, document: Mapping[str, Any], version: str) -> int:
    """Replace the workspace state with the snapshot; returns the number of records loaded.

    Every section is validated before the workspace is touched, so a rejected
    snapshot leaves the current state in place.
    """

    document = normalize_layout(document)
    stored_version = document["metadata"].get("version")
    if stored_version and is_version_compatible(stored_version, version):
        logger.info("persistence.loading", extra={"version": stored_version})
    else:
        logger.warning("persistence.migrating", extra={"version": stored_version})
        document = migrate_snapshot(document, version)

    entities = document["entities"]
    repositories = workspace.repositories()
    try:
        staged = {kind: repository.stage(entities.get(kind.value) or []) for kind, repository in repositories.items()}
        constraints = [UniquenessConstraint.model_validate(row) for row in document.get("uniqueness_constraints") or []]
        entries = [HistoryEntry.model_validate(row) for row in document.get("history_entries") or []]
    except ValidationError as exc:
        raise PersistenceError(f"Snapshot could not be applied: {exc.error_count()} invalid rows") from exc

    foreign = sorted(entry.id for entry in entries if entry.tenant_id != workspace.tenant_id)
    if foreign:
        raise PersistenceError(f"History entries {foreign} belong to another tenant than '{workspace.tenant_id}'")

    workspace.clear()
    for kind, repository in repositories.items():
        repository.replace(staged[kind], reindex=not constraints)
    if constraints:
        workspace.uniqueness.restore(constraints)
    workspace.audit_log.restore(entries)
    return workspace.total_records()
