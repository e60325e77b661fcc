from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, TypeVar

from crm_core.crm.models import EntityRecord
from crm_core.crm.schemas import Pagination


RecordT = TypeVar("RecordT", bound=EntityRecord)


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def matches_filter(record: EntityRecord, filters: Mapping[str, Any]) -> bool:
    return all(_comparable(getattr(record, key, None)) == _comparable(value) for key, value in filters.items())


def apply_filter(records: Iterable[RecordT], filters: Mapping[str, Any] | None) -> list[RecordT]:
    if not filters:
        return list(records)
    return [record for record in records if matches_filter(record, filters)]


def matches_query(record: EntityRecord, query: str, fields: Sequence[str]) -> bool:
    needle = query.casefold()
    for field_name in fields:
        value = getattr(record, field_name, None)
        if value is None:
            continue
        if needle in str(_comparable(value)).casefold():
            return True
    return False


def apply_search(records: Iterable[RecordT], query: str | None, fields: Sequence[str]) -> list[RecordT]:
    if not query or not query.strip():
        return list(records)
    return [record for record in records if matches_query(record, query.strip(), fields)]


def sort_records(records: list[RecordT], sort_by: str | None, sort_order: str) -> list[RecordT]:
    key_name = sort_by or "created_at"
    reverse = sort_order == "desc"
    present = [record for record in records if getattr(record, key_name, None) is not None]
    missing = [record for record in records if getattr(record, key_name, None) is None]
    present.sort(key=lambda record: _comparable(getattr(record, key_name)), reverse=reverse)
    return present + missing


def paginate(records: list[RecordT], page: int, limit: int) -> tuple[list[RecordT], Pagination]:
    total = len(records)
    total_pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    return records[start : start + limit], Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )
