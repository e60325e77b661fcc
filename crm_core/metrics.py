from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest


crm_repository_operations_total = Counter(
    "crm_repository_operations_total",
    "Total repository operations by entity type, operation and outcome",
    ["entity_type", "operation", "outcome"],
)

crm_access_denied_total = Counter(
    "crm_access_denied_total",
    "Total access-control denials",
    ["entity_type", "operation", "role"],
)

crm_uniqueness_conflicts_total = Counter(
    "crm_uniqueness_conflicts_total",
    "Total uniqueness conflicts detected",
    ["field", "entity_type"],
)

crm_history_entries_total = Counter(
    "crm_history_entries_total",
    "Total history entries written",
    ["entity_type", "operation"],
)

crm_audit_integrity_failures_total = Counter(
    "crm_audit_integrity_failures_total",
    "Total history entries failing checksum verification",
)

crm_persistence_operations_total = Counter(
    "crm_persistence_operations_total",
    "Total persistence adapter operations by backend, operation and status",
    ["backend", "operation", "status"],
)


def observe_repository_operation(entity_type: str, operation: str, outcome: str) -> None:
    crm_repository_operations_total.labels(entity_type=entity_type, operation=operation, outcome=outcome).inc()


def observe_access_denied(entity_type: str, operation: str, role: str) -> None:
    crm_access_denied_total.labels(entity_type=entity_type, operation=operation, role=role).inc()


def observe_uniqueness_conflict(field: str, entity_type: str) -> None:
    crm_uniqueness_conflicts_total.labels(field=field, entity_type=entity_type).inc()


def observe_history_entry(entity_type: str, operation: str) -> None:
    crm_history_entries_total.labels(entity_type=entity_type, operation=operation).inc()


def observe_integrity_failures(count: int) -> None:
    if count > 0:
        crm_audit_integrity_failures_total.inc(count)


def observe_persistence(backend: str, operation: str, status: str) -> None:
    crm_persistence_operations_total.labels(backend=backend, operation=operation, status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
