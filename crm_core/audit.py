from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from crm_core.context import get_correlation_id


class SecurityEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: str
    actor_user_id: str
    role: str
    resource: str
    operation: str
    entity_id: str | None = None
    correlation_id: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SecurityEventLog:
    """Trail of security decisions that never reach the data layer (denied attempts)."""

    def __init__(self) -> None:
        self._events: list[SecurityEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def entries(self) -> list[SecurityEvent]:
        return list(self._events)

    def record(
        self,
        action: str,
        *,
        actor_user_id: str,
        role: str,
        resource: str,
        operation: str,
        entity_id: str | None = None,
        correlation_id: str | None = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            action=action,
            actor_user_id=actor_user_id,
            role=role,
            resource=resource,
            operation=operation,
            entity_id=entity_id,
            correlation_id=correlation_id or get_correlation_id(),
        )
        self._events.append(event)
        return event

    def by_action(self, action: str) -> list[SecurityEvent]:
        return [event for event in self._events if event.action == action]

    def clear(self) -> None:
        self._events.clear()
