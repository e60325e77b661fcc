from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for access-control failures."""


class AccessDeniedError(AuthorizationError):
    """Raised when a role or ownership scope does not permit an operation."""

    def __init__(self, user_id: str, operation: str, entity_type: str, entity_id: str | None = None) -> None:
        self.user_id = user_id
        self.operation = operation
        self.entity_type = entity_type
        self.entity_id = entity_id
        target = f"{entity_type} '{entity_id}'" if entity_id else entity_type
        super().__init__(f"Access denied: user '{user_id}' does not have permission to {operation} {target}")
