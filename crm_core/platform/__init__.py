from crm_core.platform.security.access import AccessController
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError, AuthorizationError
from crm_core.platform.security.policies import Operation, PermissionScope, PolicyBackend, Role, StaticPolicyBackend

__all__ = [
    "AccessController",
    "AccessDeniedError",
    "AuthorizationError",
    "Operation",
    "PermissionScope",
    "PolicyBackend",
    "RBACUser",
    "Role",
    "StaticPolicyBackend",
]
