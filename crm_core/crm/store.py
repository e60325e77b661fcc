from __future__ import annotations

from collections.abc import Iterator
from typing import Generic, TypeVar

from crm_core.crm.models import EntityRecord


RecordT = TypeVar("RecordT", bound=EntityRecord)


class EntityStore(Generic[RecordT]):
    """Keyed in-memory holder of one entity kind's records."""

    def __init__(self) -> None:
        self._items: dict[str, RecordT] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._items

    def __iter__(self) -> Iterator[RecordT]:
        return iter(list(self._items.values()))

    def get(self, entity_id: str) -> RecordT | None:
        return self._items.get(entity_id)

    def put(self, record: RecordT) -> None:
        self._items[record.id] = record

    def delete(self, entity_id: str) -> RecordT | None:
        return self._items.pop(entity_id, None)

    def values(self) -> list[RecordT]:
        return list(self._items.values())

    def clear(self) -> None:
        self._items.clear()
