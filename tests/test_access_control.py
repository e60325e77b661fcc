from __future__ import annotations

from datetime import datetime, timezone
from types import MappingProxyType

import pytest

from crm_core.audit import SecurityEventLog
from crm_core.crm.models import EntityKind, Organisation, Pipeline
from crm_core.platform.security.access import AccessController
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError, AuthorizationError
from crm_core.platform.security.policies import (
    DEFAULT_PERMISSION_PROFILES,
    Operation,
    PermissionScope,
    Role,
    StaticPolicyBackend,
    assert_exhaustive,
)


NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _organisation(entity_id: str, *, created_by: str = "admin-1", assigned_user_id: str = "admin-1") -> Organisation:
    return Organisation(
        id=entity_id,
        tenant_id="tenant_001",
        created_at=NOW,
        updated_at=NOW,
        created_by=created_by,
        updated_by=created_by,
        assigned_user_id=assigned_user_id,
        name=f"Org {entity_id}",
    )


@pytest.fixture()
def events() -> SecurityEventLog:
    return SecurityEventLog()


@pytest.fixture()
def access(events: SecurityEventLog) -> AccessController:
    return AccessController(security_events=events)


def test_default_profiles_cover_every_role_kind_and_operation() -> None:
    assert_exhaustive(DEFAULT_PERMISSION_PROFILES)

    for role in Role:
        for kind in EntityKind:
            assert set(DEFAULT_PERMISSION_PROFILES[role][kind]) == set(Operation)


def test_incomplete_profile_is_rejected() -> None:
    partial = MappingProxyType({Role.ADMIN: DEFAULT_PERMISSION_PROFILES[Role.ADMIN]})

    with pytest.raises(RuntimeError, match="not exhaustive"):
        StaticPolicyBackend(partial)


def test_admin_may_do_everything(access: AccessController) -> None:
    admin = RBACUser(id="admin-1", role=Role.ADMIN)
    foreign = _organisation("org-1", created_by="someone", assigned_user_id="someone")

    for operation in Operation:
        assert access.can(admin, operation, EntityKind.ORGANISATION, foreign.id, foreign)
        assert access.can(admin, operation, EntityKind.PIPELINE)


def test_senior_reads_all_but_updates_only_own(access: AccessController) -> None:
    senior = RBACUser(id="senior-1", role=Role.SENIOR_SALES_MANAGER)
    foreign = _organisation("org-1", created_by="admin-1", assigned_user_id="admin-1")
    own = _organisation("org-2", created_by="senior-1", assigned_user_id="senior-1")

    assert access.can(senior, Operation.READ, EntityKind.ORGANISATION, foreign.id, foreign)
    assert not access.can(senior, Operation.UPDATE, EntityKind.ORGANISATION, foreign.id, foreign)
    assert access.can(senior, Operation.UPDATE, EntityKind.ORGANISATION, own.id, own)
    assert access.can(senior, Operation.CREATE, EntityKind.ORGANISATION)
    assert not access.can(senior, Operation.CREATE, EntityKind.PIPELINE)


def test_junior_scope_accepts_assignment_creation_or_explicit_grant(access: AccessController) -> None:
    junior = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER, assigned_entity_ids=["org-3"])
    assigned = _organisation("org-1", assigned_user_id="junior-1")
    created = _organisation("org-2", created_by="junior-1")
    granted = _organisation("org-3")
    foreign = _organisation("org-4")

    for entity in (assigned, created, granted):
        assert access.can(junior, Operation.UPDATE, EntityKind.ORGANISATION, entity.id, entity)
    assert not access.can(junior, Operation.UPDATE, EntityKind.ORGANISATION, foreign.id, foreign)
    assert access.can(junior, Operation.READ, EntityKind.ORGANISATION, "org-3")
    assert not access.can(junior, Operation.READ, EntityKind.ORGANISATION, "org-4")


def test_junior_creates_under_forced_self_assignment(access: AccessController) -> None:
    junior = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER)
    senior = RBACUser(id="senior-1", role=Role.SENIOR_SALES_MANAGER)

    assert access.can(junior, Operation.CREATE, EntityKind.CONTACT)
    assert access.forces_self_assignment(junior, EntityKind.CONTACT)
    assert not access.forces_self_assignment(senior, EntityKind.CONTACT)
    assert access.rule_for(junior, EntityKind.CONTACT, Operation.CREATE).scope == PermissionScope.ASSIGNED_OR_OWN


def test_pipelines_are_read_only_below_admin(access: AccessController) -> None:
    junior = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER)
    pipeline = Pipeline(
        id="pipe-1",
        tenant_id="tenant_001",
        created_at=NOW,
        updated_at=NOW,
        created_by="junior-1",
        updated_by="junior-1",
        assigned_user_id="junior-1",
        name="Default",
    )

    assert access.can(junior, Operation.READ, EntityKind.PIPELINE, pipeline.id, pipeline)
    for operation in (Operation.CREATE, Operation.UPDATE, Operation.DELETE):
        assert not access.can(junior, operation, EntityKind.PIPELINE, pipeline.id, pipeline)


def test_check_raises_permission_error_and_records_denial(access: AccessController, events: SecurityEventLog) -> None:
    junior = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER, correlation_id="corr-42")
    foreign = _organisation("org-9")

    with pytest.raises(AccessDeniedError) as exc_info:
        access.check(junior, Operation.UPDATE, EntityKind.ORGANISATION, foreign.id, foreign)

    assert isinstance(exc_info.value, AuthorizationError)
    assert "permission" in str(exc_info.value)
    assert exc_info.value.operation == "update"
    assert exc_info.value.entity_type == "organisations"
    assert exc_info.value.entity_id == "org-9"

    denials = events.by_action("access.denied")
    assert len(denials) == 1
    assert denials[0].actor_user_id == "junior-1"
    assert denials[0].entity_id == "org-9"
    assert denials[0].resource == "organisations"
    assert denials[0].operation == "update"
    assert denials[0].role == "junior_sales_manager"
    assert denials[0].correlation_id == "corr-42"


def test_check_returns_matching_rule_when_allowed(access: AccessController, events: SecurityEventLog) -> None:
    admin = RBACUser(id="admin-1", role="admin")

    rule = access.check(admin, Operation.DELETE, EntityKind.DEAL, "deal-1")

    assert rule.allowed
    assert rule.scope == PermissionScope.ALL
    assert events.entries == []


def test_filter_drops_unreadable_items_silently(access: AccessController, events: SecurityEventLog) -> None:
    junior = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER)
    items = [
        _organisation("org-1", assigned_user_id="junior-1"),
        _organisation("org-2"),
        _organisation("org-3", created_by="junior-1"),
    ]

    visible = access.filter(junior, EntityKind.ORGANISATION, items)

    assert [item.id for item in visible] == ["org-1", "org-3"]
    assert events.entries == []
