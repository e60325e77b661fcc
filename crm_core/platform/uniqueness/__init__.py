from crm_core.platform.uniqueness.index import UniquenessIndex
from crm_core.platform.uniqueness.normalize import normalize_phone, normalize_text, normalize_value
from crm_core.platform.uniqueness.schemas import (
    Conflict,
    ConflictResolution,
    MergeResolution,
    ModifyResolution,
    OverrideResolution,
    SkipResolution,
    UniquenessConstraint,
)

__all__ = [
    "Conflict",
    "ConflictResolution",
    "MergeResolution",
    "ModifyResolution",
    "OverrideResolution",
    "SkipResolution",
    "UniquenessConstraint",
    "UniquenessIndex",
    "normalize_phone",
    "normalize_text",
    "normalize_value",
]
