from crm_core.platform.persistence.json_file import JsonFilePersistence
from crm_core.platform.persistence.models import CRMSnapshot
from crm_core.platform.persistence.snapshot import (
    PersistenceAdapter,
    apply_snapshot,
    build_snapshot,
    is_version_compatible,
    migrate_snapshot,
    normalize_layout,
)
from crm_core.platform.persistence.sql import SqlSnapshotPersistence

__all__ = [
    "CRMSnapshot",
    "JsonFilePersistence",
    "PersistenceAdapter",
    "SqlSnapshotPersistence",
    "apply_snapshot",
    "build_snapshot",
    "is_version_compatible",
    "migrate_snapshot",
    "normalize_layout",
]
