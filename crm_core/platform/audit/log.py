from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic_core import to_jsonable_python

from crm_core.metrics import observe_history_entry, observe_integrity_failures
from crm_core.platform.audit.schemas import (
    ActivitySummary,
    AuditStatistics,
    DailyActivity,
    EntityHistory,
    EntitySnapshot,
    FieldChangeCount,
    HistoryEntry,
    HistoryOperation,
    HistoryQuery,
    IntegrityReport,
)


logger = logging.getLogger("crm_core.audit")

_ID_PREFIX = "hist_"
_PLACEHOLDER_CHECKSUM = "0" * 64
_RECENT_ACTIVITY_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_jsonable(data: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if data is None:
        return None
    return to_jsonable_python(dict(data))


def diff_fields(before: Mapping[str, Any] | None, after: Mapping[str, Any] | None) -> list[str]:
    """Top-level keys whose JSON-normalized values differ between two snapshots."""

    before_json = to_jsonable(before) or {}
    after_json = to_jsonable(after) or {}
    keys = set(before_json) | set(after_json)
    return sorted(key for key in keys if before_json.get(key) != after_json.get(key))


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_checksum(entry: HistoryEntry) -> str:
    payload = entry.model_dump(mode="json", exclude={"checksum"})
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def _sequence(entry_id: str) -> int:
    try:
        return int(entry_id.removeprefix(_ID_PREFIX))
    except ValueError:
        return 0


class AuditLog:
    """Append-only history of mutating operations, one checksum per entry."""

    def __init__(self, tenant_id: str, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.tenant_id = tenant_id
        self._clock = clock
        self._entries: dict[str, HistoryEntry] = {}
        self._next_id = 1
        self._last_created_at: datetime | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def log_entry(
        self,
        entity_type: str,
        entity_id: str,
        operation: HistoryOperation | str,
        user_id: str,
        *,
        user_name: str | None = None,
        user_role: str | None = None,
        before_data: Mapping[str, Any] | None = None,
        after_data: Mapping[str, Any] | None = None,
        changed_fields: list[str] | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> HistoryEntry:
        before_json = to_jsonable(before_data)
        after_json = to_jsonable(after_data)
        if changed_fields is None:
            changed_fields = diff_fields(before_json, after_json)

        # Entry ids and timestamps must advance together even if the clock steps back.
        created_at = self._clock()
        if self._last_created_at is not None and created_at < self._last_created_at:
            created_at = self._last_created_at

        draft = HistoryEntry(
            id=f"{_ID_PREFIX}{self._next_id}",
            tenant_id=self.tenant_id,
            entity_type=str(entity_type),
            entity_id=entity_id,
            operation=HistoryOperation(operation),
            user_id=user_id,
            user_name=user_name,
            user_role=user_role,
            changed_fields=list(changed_fields),
            before_data=before_json,
            after_data=after_json,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
            checksum=_PLACEHOLDER_CHECKSUM,
            created_at=created_at,
        )
        entry = draft.model_copy(update={"checksum": compute_checksum(draft)})

        self._entries[entry.id] = entry
        self._next_id += 1
        self._last_created_at = created_at
        observe_history_entry(entity_type=entry.entity_type, operation=entry.operation.value)
        return entry.model_copy(deep=True)

    def get_history(self, query: HistoryQuery | None = None) -> list[HistoryEntry]:
        query = query or HistoryQuery()
        results = [entry for entry in self._entries.values() if self._matches(entry, query)]
        results.sort(key=lambda entry: (entry.created_at, _sequence(entry.id)), reverse=True)

        if query.offset:
            results = results[query.offset :]
        if query.limit is not None:
            results = results[: query.limit]
        return [entry.model_copy(deep=True) for entry in results]

    @staticmethod
    def _matches(entry: HistoryEntry, query: HistoryQuery) -> bool:
        if query.entity_type is not None and entry.entity_type != str(query.entity_type):
            return False
        if query.entity_id is not None and entry.entity_id != query.entity_id:
            return False
        if query.user_id is not None and entry.user_id != query.user_id:
            return False
        if query.operation is not None and entry.operation != query.operation:
            return False
        if query.from_date is not None and entry.created_at < query.from_date:
            return False
        if query.to_date is not None and entry.created_at > query.to_date:
            return False
        return True

    def get_entity_history(self, entity_type: str, entity_id: str) -> EntityHistory:
        entries = self.get_history(HistoryQuery(entity_type=str(entity_type), entity_id=entity_id))
        return EntityHistory(
            entity_type=str(entity_type),
            entity_id=entity_id,
            snapshots=[
                EntitySnapshot(
                    created_at=entry.created_at,
                    operation=entry.operation,
                    data=entry.after_data or entry.before_data or {},
                    user_id=entry.user_id,
                    user_name=entry.user_name,
                )
                for entry in entries
            ],
        )

    def reconstruct_entity_at(self, entity_type: str, entity_id: str, at: datetime) -> dict[str, Any] | None:
        """Replay the entity's history up to ``at``; None if it did not exist then."""

        entries = self.get_history(HistoryQuery(entity_type=str(entity_type), entity_id=entity_id, to_date=at))
        entries.reverse()
        if not entries:
            return None

        state: dict[str, Any] | None = None
        for entry in entries:
            if entry.operation == HistoryOperation.CREATE:
                state = dict(entry.after_data or {})
            elif entry.operation == HistoryOperation.UPDATE:
                state = {**(state or {}), **(entry.after_data or {})}
            elif entry.operation == HistoryOperation.DELETE:
                state = None
        return state

    def get_activity_summary(self, entity_type: str, entity_id: str) -> ActivitySummary:
        entries = self.get_history(HistoryQuery(entity_type=str(entity_type), entity_id=entity_id))
        operations = Counter(entry.operation.value for entry in entries)
        field_counts = Counter(field for entry in entries for field in entry.changed_fields)
        latest = entries[0] if entries else None
        return ActivitySummary(
            total_changes=len(entries),
            last_modified=latest.created_at if latest else None,
            last_modified_by=latest.user_id if latest else None,
            last_modified_by_name=latest.user_name if latest else None,
            operations=dict(operations),
            frequent_fields=[FieldChangeCount(field=field, count=count) for field, count in field_counts.most_common()],
        )

    def verify_integrity(self) -> IntegrityReport:
        corrupted = [entry.id for entry in self._entries.values() if compute_checksum(entry) != entry.checksum]
        if corrupted:
            observe_integrity_failures(len(corrupted))
            logger.error(
                "audit.integrity_violation",
                extra={"tenant_id": self.tenant_id, "count": len(corrupted)},
            )
        return IntegrityReport(valid=not corrupted, corrupted_entry_ids=corrupted)

    def get_statistics(self) -> AuditStatistics:
        entries = list(self._entries.values())
        daily = Counter(entry.created_at.date().isoformat() for entry in entries)
        recent = sorted(daily.items(), key=lambda item: item[0], reverse=True)[:_RECENT_ACTIVITY_DAYS]
        return AuditStatistics(
            total_entries=len(entries),
            entities_covered=len({(entry.entity_type, entry.entity_id) for entry in entries}),
            operation_breakdown=dict(Counter(entry.operation.value for entry in entries)),
            entity_type_breakdown=dict(Counter(entry.entity_type for entry in entries)),
            recent_activity=[DailyActivity(date=day, count=count) for day, count in recent],
        )

    def to_json(self) -> list[dict[str, Any]]:
        return [entry.model_dump(mode="json") for entry in self._entries.values()]

    def from_json(self, rows: Iterable[Mapping[str, Any]]) -> None:
        self.restore([HistoryEntry.model_validate(row) for row in rows])

    def restore(self, entries: Iterable[HistoryEntry]) -> None:
        """Replace the log with persisted entries, stored checksums kept as-is."""

        self.clear()
        for entry in entries:
            self._entries[entry.id] = entry
            self._next_id = max(self._next_id, _sequence(entry.id) + 1)
            if self._last_created_at is None or entry.created_at > self._last_created_at:
                self._last_created_at = entry.created_at

    def clear(self) -> None:
        self._entries.clear()
        self._next_id = 1
        self._last_created_at = None
