from __future__ import annotations

import logging

from crm_core.core.config import Settings, get_settings
from crm_core.crm.workspace import CRMWorkspace
from crm_core.logging import configure_logging
from crm_core.metrics import generate_metrics_payload, metrics_content_type
from crm_core.otel import setup_otel
from crm_core.platform.persistence.json_file import JsonFilePersistence


logger = logging.getLogger("crm_core.lifecycle")


def create_workspace(
    tenant_id: str | None = None,
    *,
    settings: Settings | None = None,
    load_snapshot: bool = False,
) -> CRMWorkspace:
    """Configure logging and tracing, then build a tenant workspace, optionally from disk."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)
    setup_otel(settings)

    workspace = CRMWorkspace(tenant_id, settings=settings)
    loaded = False
    if load_snapshot:
        loaded = JsonFilePersistence(workspace, settings=settings).load()

    logger.info(
        "workspace.ready",
        extra={"tenant_id": workspace.tenant_id, "count": workspace.total_records(), "outcome": "loaded" if loaded else "empty"},
    )
    return workspace


def metrics_snapshot(settings: Settings | None = None) -> tuple[bytes, str] | None:
    """Prometheus exposition payload and content type, or None when metrics are disabled."""

    settings = settings or get_settings()
    if not settings.metrics_enabled:
        return None
    return generate_metrics_payload(), metrics_content_type()
