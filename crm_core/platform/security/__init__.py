from crm_core.platform.security.access import AccessController, is_owned_or_assigned
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError, AuthorizationError
from crm_core.platform.security.policies import (
    DEFAULT_PERMISSION_PROFILES,
    Operation,
    PermissionRule,
    PermissionScope,
    PolicyBackend,
    Role,
    StaticPolicyBackend,
)

__all__ = [
    "AccessController",
    "AccessDeniedError",
    "AuthorizationError",
    "DEFAULT_PERMISSION_PROFILES",
    "Operation",
    "PermissionRule",
    "PermissionScope",
    "PolicyBackend",
    "RBACUser",
    "Role",
    "StaticPolicyBackend",
    "is_owned_or_assigned",
]
