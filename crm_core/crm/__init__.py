from crm_core.crm.errors import CRMError, EntityNotFoundError, PersistenceError
from crm_core.crm.models import ENTITY_MODELS, EntityKind
from crm_core.crm.schemas import ListQuery, Page, ValidationIssue, ValidationResult, WriteResult

__all__ = [
    "CRMError",
    "ENTITY_MODELS",
    "EntityKind",
    "EntityNotFoundError",
    "ListQuery",
    "Page",
    "PersistenceError",
    "ValidationIssue",
    "ValidationResult",
    "WriteResult",
]
