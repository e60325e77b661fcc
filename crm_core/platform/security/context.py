from __future__ import annotations

from dataclasses import dataclass, field

from crm_core.platform.security.policies import Role


@dataclass(slots=True)
class RBACUser:
    """Caller identity used by access control and audit attribution."""

    id: str
    role: Role
    assigned_entity_ids: list[str] = field(default_factory=list)
    name: str | None = None
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
