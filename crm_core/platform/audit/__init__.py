from crm_core.platform.audit.log import AuditLog, compute_checksum, diff_fields
from crm_core.platform.audit.schemas import (
    AuditStatistics,
    HistoryEntry,
    HistoryOperation,
    HistoryQuery,
    IntegrityReport,
)

__all__ = [
    "AuditLog",
    "AuditStatistics",
    "HistoryEntry",
    "HistoryOperation",
    "HistoryQuery",
    "IntegrityReport",
    "compute_checksum",
    "diff_fields",
]
