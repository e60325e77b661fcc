from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Protocol

from crm_core.crm.models import EntityKind


class Role(StrEnum):
    ADMIN = "admin"
    SENIOR_SALES_MANAGER = "senior_sales_manager"
    JUNIOR_SALES_MANAGER = "junior_sales_manager"


class Operation(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PermissionScope(StrEnum):
    ALL = "ALL"
    ASSIGNED_OR_OWN = "ASSIGNED_OR_OWN"
    NONE = "NONE"


@dataclass(frozen=True, slots=True)
class PermissionRule:
    allowed: bool
    scope: PermissionScope


ALLOW_ALL = PermissionRule(allowed=True, scope=PermissionScope.ALL)
ALLOW_OWN = PermissionRule(allowed=True, scope=PermissionScope.ASSIGNED_OR_OWN)
DENY = PermissionRule(allowed=False, scope=PermissionScope.NONE)

OperationRules = Mapping[Operation, PermissionRule]
PermissionProfile = Mapping[Role, Mapping[EntityKind, OperationRules]]


def _rules(read: PermissionRule, create: PermissionRule, update: PermissionRule, delete: PermissionRule) -> OperationRules:
    return MappingProxyType(
        {
            Operation.READ: read,
            Operation.CREATE: create,
            Operation.UPDATE: update,
            Operation.DELETE: delete,
        }
    )


def _role_profile(default: OperationRules, overrides: dict[EntityKind, OperationRules] | None = None) -> Mapping[EntityKind, OperationRules]:
    overrides = overrides or {}
    return MappingProxyType({kind: overrides.get(kind, default) for kind in EntityKind})


# Pipelines are tenant configuration: everyone reads them, only admins change them.
_PIPELINE_READ_ONLY = _rules(read=ALLOW_ALL, create=DENY, update=DENY, delete=DENY)

DEFAULT_PERMISSION_PROFILES: PermissionProfile = MappingProxyType(
    {
        Role.ADMIN: _role_profile(_rules(read=ALLOW_ALL, create=ALLOW_ALL, update=ALLOW_ALL, delete=ALLOW_ALL)),
        Role.SENIOR_SALES_MANAGER: _role_profile(
            _rules(read=ALLOW_ALL, create=ALLOW_ALL, update=ALLOW_OWN, delete=ALLOW_OWN),
            {EntityKind.PIPELINE: _PIPELINE_READ_ONLY},
        ),
        Role.JUNIOR_SALES_MANAGER: _role_profile(
            _rules(read=ALLOW_OWN, create=ALLOW_OWN, update=ALLOW_OWN, delete=ALLOW_OWN),
            {EntityKind.PIPELINE: _PIPELINE_READ_ONLY},
        ),
    }
)


def assert_exhaustive(profiles: PermissionProfile) -> None:
    """Fail fast when a profile table misses any (role, kind, operation) triple."""

    missing: list[str] = []
    for role in Role:
        role_profile = profiles.get(role)
        for kind in EntityKind:
            kind_rules = role_profile.get(kind) if role_profile is not None else None
            for operation in Operation:
                if kind_rules is None or operation not in kind_rules:
                    missing.append(f"{role.value}/{kind.value}/{operation.value}")
    if missing:
        raise RuntimeError(f"Permission profile is not exhaustive; missing: {', '.join(missing)}")


assert_exhaustive(DEFAULT_PERMISSION_PROFILES)


class PolicyBackend(Protocol):
    """Pluggable source of permission rules."""

    def rule_for(self, role: Role, entity_type: EntityKind, operation: Operation) -> PermissionRule:
        ...


class StaticPolicyBackend:
    """Policy backend over a closed, exhaustive role/kind/operation table."""

    def __init__(self, profiles: PermissionProfile | None = None) -> None:
        resolved = profiles if profiles is not None else DEFAULT_PERMISSION_PROFILES
        assert_exhaustive(resolved)
        self._profiles = resolved

    def rule_for(self, role: Role, entity_type: EntityKind, operation: Operation) -> PermissionRule:
        return self._profiles[Role(role)][EntityKind(entity_type)][Operation(operation)]
