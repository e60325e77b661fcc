from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from crm_core.core.config import get_settings
from crm_core.metrics import observe_uniqueness_conflict
from crm_core.platform.uniqueness.normalize import is_phone_field, match_key, normalize_value
from crm_core.platform.uniqueness.schemas import (
    Conflict,
    ConflictResolution,
    MergeResolution,
    ModifyResolution,
    OverrideResolution,
    SkipResolution,
    UniquenessConstraint,
)


logger = logging.getLogger("crm_core.uniqueness")

_MAX_MODIFY_ATTEMPTS = 50

ConstraintKey = tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UniquenessIndex:
    """Tenant-wide registry of tracked field values shared by every entity kind.

    A key is (field, match key of the normalized value). At most one entity
    owns a key at a time; checking a value against an owner with a different
    id reports a conflict regardless of the owner's entity type.
    """

    def __init__(self, tenant_id: str, *, phone_match_digits: int | None = None) -> None:
        self.tenant_id = tenant_id
        if phone_match_digits is None:
            phone_match_digits = get_settings().phone_match_digits
        self._phone_match_digits = phone_match_digits
        self._constraints: dict[ConstraintKey, UniquenessConstraint] = {}

    def __len__(self) -> int:
        return len(self._constraints)

    def _key(self, field: str, normalized_value: str) -> ConstraintKey:
        return field, match_key(field, normalized_value, phone_match_digits=self._phone_match_digits)

    def _lookup(self, field: str, value: str) -> UniquenessConstraint | None:
        normalized = normalize_value(field, value)
        if not normalized:
            return None
        return self._constraints.get(self._key(field, normalized))

    def add_constraint(
        self,
        field: str,
        entity_type: str,
        entity_id: str,
        value: str,
        verified: bool = False,
    ) -> UniquenessConstraint | None:
        if not value or not value.strip():
            return None
        normalized = normalize_value(field, value)
        if not normalized:
            return None

        now = utcnow()
        constraint = UniquenessConstraint(
            field=field,
            entity_type=str(entity_type),
            entity_id=entity_id,
            value=value.strip(),
            normalized_value=normalized,
            verified=verified,
            created_at=now,
            updated_at=now,
        )
        self._constraints[self._key(field, normalized)] = constraint
        return constraint

    def remove_constraints_for_entity(self, entity_type: str, entity_id: str) -> int:
        stale = [
            key
            for key, constraint in self._constraints.items()
            if constraint.entity_type == str(entity_type) and constraint.entity_id == entity_id
        ]
        for key in stale:
            del self._constraints[key]
        return len(stale)

    def check_conflicts(
        self,
        field: str,
        value: str,
        exclude_entity_id: str | None = None,
        entity_type: str | None = None,
    ) -> Conflict | None:
        if not value or not value.strip():
            return None

        existing = self._lookup(field, value)
        if existing is None or existing.entity_id == exclude_entity_id:
            return None

        observe_uniqueness_conflict(field=field, entity_type=str(entity_type or existing.entity_type))
        logger.info(
            "uniqueness.conflict",
            extra={
                "tenant_id": self.tenant_id,
                "field": field,
                "entity_type": str(entity_type) if entity_type else None,
                "entity_id": existing.entity_id,
            },
        )
        return Conflict(
            field=field,
            value=value.strip(),
            existing_entity_id=existing.entity_id,
            existing_entity_type=existing.entity_type,
            existing_verified=existing.verified,
            suggested_resolutions=self._suggest_resolutions(field, value.strip(), existing, entity_type),
        )

    def update_verification_status(self, field: str, value: str, verified: bool) -> bool:
        existing = self._lookup(field, value)
        if existing is None:
            return False
        key = self._key(field, existing.normalized_value)
        self._constraints[key] = existing.model_copy(update={"verified": verified, "updated_at": utcnow()})
        return True

    def owner_of(self, field: str, value: str) -> UniquenessConstraint | None:
        existing = self._lookup(field, value)
        return existing.model_copy() if existing is not None else None

    def constraints_for_entity(self, entity_type: str, entity_id: str) -> list[UniquenessConstraint]:
        return [
            constraint.model_copy()
            for constraint in self._constraints.values()
            if constraint.entity_type == str(entity_type) and constraint.entity_id == entity_id
        ]

    def get_all_constraints(self) -> list[UniquenessConstraint]:
        return [constraint.model_copy() for constraint in self._constraints.values()]

    def to_json(self) -> list[dict[str, Any]]:
        return [constraint.model_dump(mode="json") for constraint in self._constraints.values()]

    def from_json(self, rows: Iterable[dict[str, Any]]) -> None:
        self.restore([UniquenessConstraint.model_validate(row) for row in rows])

    def restore(self, constraints: Iterable[UniquenessConstraint]) -> None:
        self._constraints.clear()
        for constraint in constraints:
            self._constraints[self._key(constraint.field, constraint.normalized_value)] = constraint

    def clear(self) -> None:
        self._constraints.clear()

    def _suggest_resolutions(
        self,
        field: str,
        value: str,
        existing: UniquenessConstraint,
        entity_type: str | None,
    ) -> list[ConflictResolution]:
        resolutions: list[ConflictResolution] = []
        if entity_type is None or str(entity_type) == existing.entity_type:
            resolutions.append(MergeResolution(target_entity_id=existing.entity_id, fields_to_merge=[field]))

        modified = self._suggest_modified_value(field, value)
        if modified is not None:
            resolutions.append(ModifyResolution(modified_values={field: modified}))

        resolutions.append(
            OverrideResolution(
                reason=f"{field} '{value}' is already used by {existing.entity_type} '{existing.entity_id}'",
            )
        )
        resolutions.append(SkipResolution())
        return resolutions

    def _suggest_modified_value(self, field: str, value: str) -> str | None:
        if is_phone_field(field):
            return None

        for attempt in range(2, _MAX_MODIFY_ATTEMPTS + 2):
            if "@" in value:
                local, _, domain = value.rpartition("@")
                candidate = f"{local}+{attempt}@{domain}"
            else:
                candidate = f"{value}-{attempt}"
            if self._lookup(field, candidate) is None:
                return candidate
        return None
