from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import ValidationError

from crm_core.core.config import Settings, get_settings
from crm_core.crm.errors import EntityNotFoundError, PersistenceError
from crm_core.crm.models import (
    IMMUTABLE_FIELDS,
    SYSTEM_FIELDS,
    Contact,
    Deal,
    EntityKind,
    EntityRecord,
    Lead,
    Organisation,
    OrganisationType,
    Pipeline,
    Task,
)
from crm_core.crm.schemas import ListQuery, Page, ValidationIssue, ValidationResult, WriteResult
from crm_core.crm.search import apply_filter, apply_search, paginate, sort_records
from crm_core.crm.store import EntityStore
from crm_core.crm.validators import BusinessValidator
from crm_core.metrics import observe_repository_operation
from crm_core.otel import entity_span, get_tracer
from crm_core.platform.audit.log import AuditLog, diff_fields, utcnow
from crm_core.platform.audit.schemas import HistoryEntry, HistoryOperation, HistoryQuery
from crm_core.platform.security.access import AccessController
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError
from crm_core.platform.security.policies import Operation, PermissionScope, Role
from crm_core.platform.uniqueness.index import UniquenessIndex
from crm_core.platform.uniqueness.normalize import extract_values, path_present
from crm_core.platform.uniqueness.schemas import Conflict


logger = logging.getLogger("crm_core.repository")
tracer = get_tracer("crm_core.repository")

RecordT = TypeVar("RecordT", bound=EntityRecord)

_BUMP_FIELDS = frozenset({"updated_at", "updated_by"})


def schema_issues(exc: ValidationError) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        issues.append(ValidationIssue(field=location or None, code="SCHEMA_INVALID", message=error["msg"]))
    return issues


class RepositoryFacade(Generic[RecordT]):
    """Single entry point for one entity kind.

    Every write goes through the same sequence: permission check, business
    validation, uniqueness check, store mutation, index refresh, history
    entry. The sequence after the permission check runs under the tenant's
    write lock, which every facade of a workspace shares.
    """

    model: ClassVar[type[EntityRecord]]

    def __init__(
        self,
        *,
        tenant_id: str,
        access: AccessController,
        uniqueness: UniquenessIndex,
        audit_log: AuditLog,
        validator: BusinessValidator | None = None,
        write_lock: asyncio.Lock | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.tenant_id = tenant_id
        self.access = access
        self.uniqueness = uniqueness
        self.audit_log = audit_log
        self.validator = validator
        self.store: EntityStore[RecordT] = EntityStore()
        self._write_lock = write_lock or asyncio.Lock()
        self._settings = settings or get_settings()
        self._clock = clock

    @property
    def kind(self) -> EntityKind:
        return self.model.kind

    # Writes

    async def create(
        self,
        data: Mapping[str, Any],
        *,
        user: RBACUser,
        skip_uniqueness_check: bool = False,
        skip_history_log: bool = False,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> WriteResult[RecordT]:
        with self._operation("create", user) as span:
            self.access.check(user, Operation.CREATE, self.kind)
            payload = {key: value for key, value in data.items() if key not in SYSTEM_FIELDS}

            async with self._write_lock:
                issues: list[ValidationIssue] = []
                conflicts: list[Conflict] = []
                if not skip_uniqueness_check:
                    issues.extend((await self._validate_create(payload)).errors)
                    conflicts = self._find_conflicts(payload)

                now = self._clock()
                candidate = {
                    **payload,
                    "id": str(uuid.uuid4()),
                    "tenant_id": self.tenant_id,
                    "created_at": now,
                    "updated_at": now,
                    "created_by": user.id,
                    "updated_by": user.id,
                    "assigned_user_id": self._assignee(user, payload),
                    "verified": self._initial_verified(user, payload),
                }
                record = self._build(candidate, issues)
                if issues or conflicts or record is None:
                    self._observe("create", "rejected")
                    return WriteResult.failed(issues, conflicts)

                span.set_attribute("entity_id", record.id)
                self.store.put(record)
                self._index(record)
                if not skip_history_log:
                    self.audit_log.log_entry(
                        self.kind,
                        record.id,
                        HistoryOperation.CREATE,
                        user.id,
                        user_name=self._user_name(user),
                        user_role=user.role.value,
                        before_data=None,
                        after_data=record.model_dump(mode="json"),
                        reason=reason,
                        ip_address=ip_address,
                        user_agent=user_agent,
                    )

            self._observe("create", "success")
            logger.info("repository.created", extra=self._log_extra("create", user, record.id))
            return WriteResult.ok(record.model_copy(deep=True))

    async def update(
        self,
        entity_id: str,
        partial_data: Mapping[str, Any],
        *,
        user: RBACUser,
        skip_uniqueness_check: bool = False,
        skip_history_log: bool = False,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> WriteResult[RecordT]:
        with self._operation("update", user, entity_id):
            existing = self._require(entity_id)
            self.access.check(user, Operation.UPDATE, self.kind, entity_id, existing)

            async with self._write_lock:
                # Another writer may have replaced, reassigned or removed the record while we waited.
                existing = self._require(entity_id)
                self.access.check(user, Operation.UPDATE, self.kind, entity_id, existing)
                changes = {key: value for key, value in partial_data.items() if key not in _BUMP_FIELDS}

                issues = [
                    ValidationIssue(field=key, code="IMMUTABLE_FIELD", message=f"Field '{key}' cannot be changed")
                    for key in sorted(IMMUTABLE_FIELDS & changes.keys())
                ]
                if "verified" in changes and not user.is_admin:
                    issues.append(
                        ValidationIssue(field="verified", code="VERIFIED_ADMIN_ONLY", message="Only admins can change verification")
                    )

                conflicts: list[Conflict] = []
                if not skip_uniqueness_check:
                    issues.extend((await self._validate_update(entity_id, changes, existing)).errors)
                    conflicts = self._find_conflicts(changes, exclude_entity_id=entity_id, only_present=True)

                candidate = self._build({**existing.model_dump(), **changes}, issues)
                if issues or conflicts or candidate is None:
                    self._observe("update", "rejected")
                    return WriteResult.failed(issues, conflicts)

                before = existing.model_dump(mode="json", exclude=_BUMP_FIELDS)
                changed_fields = diff_fields(before, candidate.model_dump(mode="json", exclude=_BUMP_FIELDS))
                if not changed_fields:
                    self._observe("update", "unchanged")
                    return WriteResult.ok(existing.model_copy(deep=True))

                record = candidate.model_copy(update={"updated_at": self._clock(), "updated_by": user.id})
                self.store.put(record)
                self._index(record)
                if not skip_history_log:
                    self.audit_log.log_entry(
                        self.kind,
                        record.id,
                        HistoryOperation.UPDATE,
                        user.id,
                        user_name=self._user_name(user),
                        user_role=user.role.value,
                        before_data=existing.model_dump(mode="json"),
                        after_data=record.model_dump(mode="json"),
                        changed_fields=changed_fields,
                        reason=reason,
                        ip_address=ip_address,
                        user_agent=user_agent,
                    )

            self._observe("update", "success")
            logger.info("repository.updated", extra=self._log_extra("update", user, record.id))
            return WriteResult.ok(record.model_copy(deep=True))

    async def remove(
        self,
        entity_id: str,
        *,
        user: RBACUser,
        skip_history_log: bool = False,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> WriteResult[RecordT]:
        with self._operation("remove", user, entity_id):
            existing = self._require(entity_id)
            self.access.check(user, Operation.DELETE, self.kind, entity_id, existing)

            async with self._write_lock:
                existing = self._require(entity_id)
                self.access.check(user, Operation.DELETE, self.kind, entity_id, existing)
                if self.validator is not None:
                    verdict = await self.validator.validate_delete(entity_id, existing)
                    if not verdict.valid:
                        self._observe("remove", "rejected")
                        return WriteResult.failed(verdict.errors)

                self.uniqueness.remove_constraints_for_entity(self.kind, entity_id)
                if not skip_history_log:
                    self.audit_log.log_entry(
                        self.kind,
                        entity_id,
                        HistoryOperation.DELETE,
                        user.id,
                        user_name=self._user_name(user),
                        user_role=user.role.value,
                        before_data=existing.model_dump(mode="json"),
                        after_data=None,
                        reason=reason,
                        ip_address=ip_address,
                        user_agent=user_agent,
                    )
                self.store.delete(entity_id)

            self._observe("remove", "success")
            logger.info("repository.removed", extra=self._log_extra("remove", user, entity_id))
            return WriteResult.ok(existing.model_copy(deep=True))

    async def verify_field(self, entity_id: str, field: str, *, user: RBACUser) -> WriteResult[RecordT]:
        """Mark a record and its indexed values for ``field`` as verified. Admin only."""

        with self._operation("verify_field", user, entity_id):
            if not user.is_admin:
                self.access.record_denial(user, Operation.UPDATE, self.kind, entity_id)
                self._observe("verify_field", "rejected")
                return WriteResult.failed([ValidationIssue(code="ADMIN_ONLY", message="Only admins can verify fields")])

            existing = self._require(entity_id)
            if field not in self.model.tracked_fields and field not in self.model.model_fields:
                return WriteResult.failed(
                    [ValidationIssue(field=field, code="UNKNOWN_FIELD", message=f"Unknown field '{field}'")]
                )

            async with self._write_lock:
                existing = self._require(entity_id)
                record = existing.model_copy(
                    update={"verified": True, "updated_at": self._clock(), "updated_by": user.id}
                )
                self.store.put(record)
                for value in extract_values(record.model_dump(), field):
                    self.uniqueness.update_verification_status(field, value, True)
                self.audit_log.log_entry(
                    self.kind,
                    entity_id,
                    HistoryOperation.UPDATE,
                    user.id,
                    user_name=self._user_name(user),
                    user_role=user.role.value,
                    before_data=existing.model_dump(mode="json"),
                    after_data=record.model_dump(mode="json"),
                    changed_fields=diff_fields(
                        existing.model_dump(mode="json", exclude=_BUMP_FIELDS),
                        record.model_dump(mode="json", exclude=_BUMP_FIELDS),
                    ),
                    reason=f"Verified field: {field}",
                )

            self._observe("verify_field", "success")
            logger.info("repository.field_verified", extra={**self._log_extra("verify_field", user, entity_id), "field": field})
            return WriteResult.ok(record.model_copy(deep=True))

    # Reads

    async def get(self, entity_id: str, *, user: RBACUser) -> RecordT:
        with self._operation("get", user, entity_id):
            return self._readable(entity_id, user).model_copy(deep=True)

    async def list(self, filter: Mapping[str, Any] | None = None, *, user: RBACUser) -> list[RecordT]:
        with self._operation("list", user):
            visible = self.access.filter(user, self.kind, self.store.values())
            return [record.model_copy(deep=True) for record in apply_filter(visible, filter)]

    async def search(
        self,
        query: str,
        fields: Iterable[str] | None = None,
        *,
        user: RBACUser,
    ) -> list[RecordT]:
        with self._operation("search", user):
            visible = self.access.filter(user, self.kind, self.store.values())
            search_fields = list(fields) if fields is not None else list(self.model.search_fields)
            return [record.model_copy(deep=True) for record in apply_search(visible, query, search_fields)]

    async def list_paginated(self, query: ListQuery | None = None, *, user: RBACUser) -> Page[RecordT]:
        query = query or ListQuery()
        with self._operation("list_paginated", user):
            visible = self.access.filter(user, self.kind, self.store.values())
            matched = apply_search(apply_filter(visible, query.filter), query.search, self.model.search_fields)
            ordered = sort_records(matched, query.sort_by, query.sort_order)
            window, pagination = paginate(ordered, query.page, query.limit)
            return Page(data=[record.model_copy(deep=True) for record in window], pagination=pagination)

    async def get_history(self, entity_id: str, *, user: RBACUser) -> list[HistoryEntry]:
        with self._operation("get_history", user, entity_id):
            query = HistoryQuery(entity_type=self.kind, entity_id=entity_id)
            if entity_id in self.store:
                self._readable(entity_id, user)
                return self.audit_log.get_history(query)

            # Removed records keep their trail; only tenant-wide readers may see it.
            rule = self.access.rule_for(user, self.kind, Operation.READ)
            history = self.audit_log.get_history(query)
            if history and rule.allowed and rule.scope == PermissionScope.ALL:
                return history
            raise EntityNotFoundError(self.kind.value, entity_id)

    # Persistence helpers

    def seed(self, records: Iterable[Mapping[str, Any] | EntityRecord]) -> int:
        """Load records as-is, bypassing permissions and history. Rows without a tenant join this one."""

        rows = []
        for item in records:
            row = item.model_dump() if isinstance(item, EntityRecord) else dict(item)
            row.setdefault("tenant_id", self.tenant_id)
            rows.append(row)
        staged = self.stage(rows)
        for record in staged:
            self.store.put(record)
            self._index(record)
        return len(staged)

    def stage(self, rows: Iterable[Mapping[str, Any]]) -> list[RecordT]:
        """Validate persisted rows against the model and this tenant without touching the store."""

        records: list[RecordT] = []
        for row in rows:
            record = self.model.model_validate(row)
            if record.tenant_id != self.tenant_id:
                raise PersistenceError(
                    f"{self.kind.value} '{record.id}' belongs to tenant '{record.tenant_id}', not '{self.tenant_id}'"
                )
            records.append(record)  # type: ignore[arg-type]
        return records

    def replace(self, records: Iterable[RecordT], *, reindex: bool = True) -> None:
        self.clear(purge_index=reindex)
        for record in records:
            self.store.put(record)
            if reindex:
                self._index(record)

    def to_json(self) -> list[dict[str, Any]]:
        return [record.model_dump(mode="json") for record in self.store.values()]

    def from_json(self, rows: Iterable[Mapping[str, Any]], *, reindex: bool = True) -> None:
        self.replace(self.stage(rows), reindex=reindex)

    def clear(self, *, purge_index: bool = True) -> None:
        if purge_index:
            for record in self.store.values():
                self.uniqueness.remove_constraints_for_entity(self.kind, record.id)
        self.store.clear()

    def count(self) -> int:
        return len(self.store)

    def reindex(self) -> None:
        for record in self.store.values():
            self._index(record)

    # Internals

    @contextmanager
    def _operation(self, operation: str, user: RBACUser, entity_id: str | None = None) -> Iterator[Any]:
        with entity_span(
            tracer,
            f"crm.repository.{operation}",
            entity_type=self.kind.value,
            user_id=user.id,
            correlation_id=user.correlation_id,
            entity_id=entity_id,
        ) as span:
            try:
                yield span
            except AccessDeniedError:
                self._observe(operation, "denied")
                raise
            except EntityNotFoundError:
                self._observe(operation, "not_found")
                raise

    def _observe(self, operation: str, outcome: str) -> None:
        observe_repository_operation(entity_type=self.kind.value, operation=operation, outcome=outcome)

    def _log_extra(self, operation: str, user: RBACUser, entity_id: str | None) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "entity_type": self.kind.value,
            "entity_id": entity_id,
            "operation": operation,
            "user_id": user.id,
            "role": user.role.value,
        }

    def _require(self, entity_id: str) -> RecordT:
        record = self.store.get(entity_id)
        if record is None:
            raise EntityNotFoundError(self.kind.value, entity_id)
        return record

    def _readable(self, entity_id: str, user: RBACUser) -> RecordT:
        record = self._require(entity_id)
        if not self.access.can(user, Operation.READ, self.kind, entity_id, record):
            self.access.record_denial(user, Operation.READ, self.kind, entity_id)
            raise EntityNotFoundError(self.kind.value, entity_id)
        return record

    def _build(self, candidate: Mapping[str, Any], issues: list[ValidationIssue]) -> RecordT | None:
        try:
            return self.model.model_validate(candidate)  # type: ignore[return-value]
        except ValidationError as exc:
            issues.extend(schema_issues(exc))
            return None

    def _assignee(self, user: RBACUser, payload: Mapping[str, Any]) -> str:
        if self.access.forces_self_assignment(user, self.kind):
            return user.id
        return payload.get("assigned_user_id") or user.id

    def _initial_verified(self, user: RBACUser, payload: Mapping[str, Any]) -> bool:
        if user.is_admin:
            return bool(payload.get("verified", False))
        return user.role == Role.JUNIOR_SALES_MANAGER and self._settings.junior_creates_verified

    def _user_name(self, user: RBACUser) -> str | None:
        if user.name:
            return user.name
        return user.id if self._settings.audit_user_name_fallback else None

    async def _validate_create(self, payload: Mapping[str, Any]) -> ValidationResult:
        if self.validator is None:
            return ValidationResult.ok()
        return await self.validator.validate_create(payload)

    async def _validate_update(
        self,
        entity_id: str,
        changes: Mapping[str, Any],
        existing: RecordT,
    ) -> ValidationResult:
        if self.validator is None:
            return ValidationResult.ok()
        return await self.validator.validate_update(entity_id, changes, existing)

    def _find_conflicts(
        self,
        data: Mapping[str, Any],
        *,
        exclude_entity_id: str | None = None,
        only_present: bool = False,
    ) -> list[Conflict]:
        conflicts: list[Conflict] = []
        for path in self.model.tracked_fields:
            if only_present and not path_present(data, path):
                continue
            for value in extract_values(data, path):
                conflict = self.uniqueness.check_conflicts(
                    path,
                    value,
                    exclude_entity_id=exclude_entity_id,
                    entity_type=self.kind,
                )
                if conflict is not None:
                    conflicts.append(conflict)
        return conflicts

    def _index(self, record: RecordT) -> None:
        self.uniqueness.remove_constraints_for_entity(self.kind, record.id)
        snapshot = record.model_dump()
        for path in self.model.tracked_fields:
            for value in extract_values(snapshot, path):
                self.uniqueness.add_constraint(path, self.kind, record.id, value, verified=record.verified)


class OrganisationRepository(RepositoryFacade[Organisation]):
    model = Organisation

    async def get_by_type(self, organisation_type: OrganisationType | str, *, user: RBACUser) -> list[Organisation]:
        return await self.list({"type": OrganisationType(organisation_type)}, user=user)


class ContactRepository(RepositoryFacade[Contact]):
    model = Contact

    async def list_for_organisation(self, organisation_id: str, *, user: RBACUser) -> list[Contact]:
        return await self.list({"organisation_id": organisation_id}, user=user)


class LeadRepository(RepositoryFacade[Lead]):
    model = Lead


class DealRepository(RepositoryFacade[Deal]):
    model = Deal

    async def list_by_stage(self, stage_id: str, *, user: RBACUser) -> list[Deal]:
        return await self.list({"stage_id": stage_id}, user=user)


class TaskRepository(RepositoryFacade[Task]):
    model = Task

    async def list_for_target(self, target_type: EntityKind, target_id: str, *, user: RBACUser) -> list[Task]:
        return await self.list({"target_type": target_type, "target_id": target_id}, user=user)


class PipelineRepository(RepositoryFacade[Pipeline]):
    model = Pipeline

    async def get_default(self, *, user: RBACUser) -> Pipeline | None:
        defaults = await self.list({"is_default": True}, user=user)
        return defaults[0] if defaults else None


REPOSITORY_CLASSES: dict[EntityKind, type[RepositoryFacade[Any]]] = {
    EntityKind.ORGANISATION: OrganisationRepository,
    EntityKind.CONTACT: ContactRepository,
    EntityKind.LEAD: LeadRepository,
    EntityKind.DEAL: DealRepository,
    EntityKind.TASK: TaskRepository,
    EntityKind.PIPELINE: PipelineRepository,
}
