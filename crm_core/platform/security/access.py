from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TypeVar

from crm_core.audit import SecurityEventLog
from crm_core.crm.models import EntityKind, EntityRecord
from crm_core.metrics import observe_access_denied
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError
from crm_core.platform.security.policies import (
    Operation,
    PermissionRule,
    PermissionScope,
    PolicyBackend,
    StaticPolicyBackend,
)


logger = logging.getLogger("crm_core.security")

RecordT = TypeVar("RecordT", bound=EntityRecord)


def is_owned_or_assigned(user: RBACUser, entity_id: str | None, entity: EntityRecord | None) -> bool:
    if entity is not None:
        if entity.assigned_user_id == user.id or entity.created_by == user.id:
            return True
        entity_id = entity.id
    return entity_id is not None and entity_id in user.assigned_entity_ids


class AccessController:
    """Resolves (role, operation, ownership) to allow or deny for one tenant."""

    def __init__(
        self,
        policy: PolicyBackend | None = None,
        *,
        security_events: SecurityEventLog | None = None,
    ) -> None:
        self._policy = policy or StaticPolicyBackend()
        self._security_events = security_events

    def rule_for(self, user: RBACUser, entity_type: EntityKind, operation: Operation) -> PermissionRule:
        return self._policy.rule_for(user.role, entity_type, operation)

    def can(
        self,
        user: RBACUser,
        operation: Operation,
        entity_type: EntityKind,
        entity_id: str | None = None,
        entity: EntityRecord | None = None,
    ) -> bool:
        rule = self.rule_for(user, entity_type, operation)
        if not rule.allowed:
            return False
        if rule.scope == PermissionScope.ALL:
            return True
        if rule.scope == PermissionScope.NONE:
            return False

        # A record that does not exist yet has no owner; creation is scoped by forced self-assignment.
        if operation == Operation.CREATE and entity is None and entity_id is None:
            return True
        return is_owned_or_assigned(user, entity_id, entity)

    def check(
        self,
        user: RBACUser,
        operation: Operation,
        entity_type: EntityKind,
        entity_id: str | None = None,
        entity: EntityRecord | None = None,
    ) -> PermissionRule:
        """Return the matching rule or raise AccessDeniedError."""

        if self.can(user, operation, entity_type, entity_id, entity):
            return self.rule_for(user, entity_type, operation)

        resolved_id = entity.id if entity is not None else entity_id
        self.record_denial(user, operation, entity_type, resolved_id)
        raise AccessDeniedError(
            user_id=user.id,
            operation=operation.value,
            entity_type=entity_type.value,
            entity_id=resolved_id,
        )

    def filter(self, user: RBACUser, entity_type: EntityKind, items: Iterable[RecordT]) -> list[RecordT]:
        """Drop every item the user may not read, without raising."""

        rule = self.rule_for(user, entity_type, Operation.READ)
        if rule.allowed and rule.scope == PermissionScope.ALL:
            return list(items)
        return [item for item in items if self.can(user, Operation.READ, entity_type, item.id, item)]

    def forces_self_assignment(self, user: RBACUser, entity_type: EntityKind) -> bool:
        rule = self.rule_for(user, entity_type, Operation.CREATE)
        return rule.allowed and rule.scope == PermissionScope.ASSIGNED_OR_OWN

    def record_denial(
        self,
        user: RBACUser,
        operation: Operation,
        entity_type: EntityKind,
        entity_id: str | None,
    ) -> None:
        observe_access_denied(entity_type=entity_type.value, operation=operation.value, role=user.role.value)
        logger.warning(
            "access.denied",
            extra={
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "operation": operation.value,
                "user_id": user.id,
                "role": user.role.value,
            },
        )
        if self._security_events is None:
            return
        self._security_events.record(
            "access.denied",
            actor_user_id=user.id,
            role=user.role.value,
            resource=entity_type.value,
            operation=operation.value,
            entity_id=entity_id,
            correlation_id=user.correlation_id,
        )
