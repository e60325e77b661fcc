from __future__ import annotations


class CRMError(Exception):
    """Base error for repository-level failures that are raised rather than returned."""


class EntityNotFoundError(CRMError):
    """Raised for unknown ids and for ids the caller is not allowed to read."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} '{entity_id}' not found")


class PersistenceError(CRMError):
    """Raised when a persisted snapshot cannot be read or applied."""
