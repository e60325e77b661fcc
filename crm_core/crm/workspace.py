from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from crm_core.audit import SecurityEventLog
from crm_core.core.config import Settings, get_settings
from crm_core.crm.models import EntityKind
from crm_core.crm.repositories import (
    REPOSITORY_CLASSES,
    ContactRepository,
    DealRepository,
    LeadRepository,
    OrganisationRepository,
    PipelineRepository,
    RepositoryFacade,
    TaskRepository,
)
from crm_core.crm.validators import BusinessValidator, default_validators
from crm_core.platform.audit.log import AuditLog, utcnow
from crm_core.platform.security.access import AccessController
from crm_core.platform.security.policies import PolicyBackend
from crm_core.platform.uniqueness.index import UniquenessIndex


class CRMWorkspace:
    """Composition root for one tenant: shared services plus one facade per entity kind."""

    def __init__(
        self,
        tenant_id: str | None = None,
        *,
        settings: Settings | None = None,
        policy: PolicyBackend | None = None,
        validators: Mapping[EntityKind, BusinessValidator] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.tenant_id = tenant_id or self.settings.default_tenant_id
        self.security_events = SecurityEventLog()
        self.access = AccessController(policy, security_events=self.security_events)
        self.uniqueness = UniquenessIndex(self.tenant_id, phone_match_digits=self.settings.phone_match_digits)
        self.audit_log = AuditLog(self.tenant_id, clock=clock)
        self.write_lock = asyncio.Lock()

        resolved_validators = default_validators() if validators is None else dict(validators)
        self._repositories: dict[EntityKind, RepositoryFacade[Any]] = {
            kind: repository_class(
                tenant_id=self.tenant_id,
                access=self.access,
                uniqueness=self.uniqueness,
                audit_log=self.audit_log,
                validator=resolved_validators.get(kind),
                write_lock=self.write_lock,
                settings=self.settings,
                clock=clock,
            )
            for kind, repository_class in REPOSITORY_CLASSES.items()
        }

    def repository(self, kind: EntityKind | str) -> RepositoryFacade[Any]:
        return self._repositories[EntityKind(kind)]

    def repositories(self) -> dict[EntityKind, RepositoryFacade[Any]]:
        return dict(self._repositories)

    @property
    def organisations(self) -> OrganisationRepository:
        return self._repositories[EntityKind.ORGANISATION]  # type: ignore[return-value]

    @property
    def contacts(self) -> ContactRepository:
        return self._repositories[EntityKind.CONTACT]  # type: ignore[return-value]

    @property
    def leads(self) -> LeadRepository:
        return self._repositories[EntityKind.LEAD]  # type: ignore[return-value]

    @property
    def deals(self) -> DealRepository:
        return self._repositories[EntityKind.DEAL]  # type: ignore[return-value]

    @property
    def tasks(self) -> TaskRepository:
        return self._repositories[EntityKind.TASK]  # type: ignore[return-value]

    @property
    def pipelines(self) -> PipelineRepository:
        return self._repositories[EntityKind.PIPELINE]  # type: ignore[return-value]

    def total_records(self) -> int:
        return sum(repository.count() for repository in self._repositories.values())

    def clear(self) -> None:
        for repository in self._repositories.values():
            repository.clear(purge_index=False)
        self.uniqueness.clear()
        self.audit_log.clear()
        self.security_events.clear()
