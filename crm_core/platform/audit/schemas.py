from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HistoryOperation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    entity_type: str
    entity_id: str
    operation: HistoryOperation
    user_id: str
    user_name: str | None = None
    user_role: str | None = None
    changed_fields: list[str] = Field(default_factory=list)
    before_data: dict[str, Any] | None = None
    after_data: dict[str, Any] | None = None
    reason: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    checksum: str = Field(pattern=r"^[0-9a-f]{64}$")
    created_at: datetime


class HistoryQuery(BaseModel):
    entity_type: str | None = None
    entity_id: str | None = None
    user_id: str | None = None
    operation: HistoryOperation | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class IntegrityReport(BaseModel):
    valid: bool
    corrupted_entry_ids: list[str] = Field(default_factory=list)


class DailyActivity(BaseModel):
    date: str
    count: int


class AuditStatistics(BaseModel):
    total_entries: int
    entities_covered: int
    operation_breakdown: dict[str, int]
    entity_type_breakdown: dict[str, int]
    recent_activity: list[DailyActivity]


class EntitySnapshot(BaseModel):
    created_at: datetime
    operation: HistoryOperation
    data: dict[str, Any]
    user_id: str
    user_name: str | None = None


class EntityHistory(BaseModel):
    entity_type: str
    entity_id: str
    snapshots: list[EntitySnapshot]


class FieldChangeCount(BaseModel):
    field: str
    count: int


class ActivitySummary(BaseModel):
    total_changes: int
    last_modified: datetime | None = None
    last_modified_by: str | None = None
    last_modified_by_name: str | None = None
    operations: dict[str, int]
    frequent_fields: list[FieldChangeCount]
