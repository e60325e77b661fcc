from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import REGISTRY

from crm_core import main
from crm_core.context import get_log_context, reset_correlation_id, set_correlation_id
from crm_core.core.config import Settings
from crm_core.crm.workspace import CRMWorkspace
from crm_core.logging import CorrelationIdFilter, JsonLogFormatter
from crm_core.otel import setup_inmemory_otel
from crm_core.platform.security.context import RBACUser
from crm_core.platform.security.errors import AccessDeniedError
from crm_core.platform.security.policies import Role


ADMIN = RBACUser(id="admin-1", role=Role.ADMIN, correlation_id="corr-admin")
JUNIOR = RBACUser(id="junior-1", role=Role.JUNIOR_SALES_MANAGER)


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("crm-core")
    exporter.clear()
    return exporter


@pytest.fixture()
def workspace() -> CRMWorkspace:
    return CRMWorkspace("tenant_001", settings=Settings(persistence_enabled=False))


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_repository_spans_carry_entity_and_correlation(
    workspace: CRMWorkspace,
    span_exporter: InMemorySpanExporter,
) -> None:
    created = await workspace.organisations.create({"name": "Acme"}, user=ADMIN)
    assert created.data is not None

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "crm.repository.create"]
    assert spans
    attributes = spans[-1].attributes or {}
    assert attributes.get("entity_type") == "organisations"
    assert attributes.get("entity_id") == created.data.id
    assert attributes.get("user_id") == "admin-1"
    assert attributes.get("correlation_id") == "corr-admin"


@pytest.mark.asyncio
async def test_denials_and_conflicts_are_counted(workspace: CRMWorkspace) -> None:
    denied_labels = {"entity_type": "organisations", "operation": "update", "role": "junior_sales_manager"}
    conflict_labels = {"field": "email", "entity_type": "organisations"}
    outcome_labels = {"entity_type": "organisations", "operation": "update", "outcome": "denied"}
    denied_before = _sample("crm_access_denied_total", denied_labels)
    conflicts_before = _sample("crm_uniqueness_conflicts_total", conflict_labels)
    outcome_before = _sample("crm_repository_operations_total", outcome_labels)

    created = await workspace.organisations.create({"name": "Acme", "email": "m@x.com"}, user=ADMIN)
    assert created.data is not None
    await workspace.organisations.create({"name": "Copy", "email": "m@x.com"}, user=ADMIN)
    with pytest.raises(AccessDeniedError):
        await workspace.organisations.update(created.data.id, {"name": "x"}, user=JUNIOR)

    assert _sample("crm_access_denied_total", denied_labels) == denied_before + 1
    assert _sample("crm_uniqueness_conflicts_total", conflict_labels) == conflicts_before + 1
    assert _sample("crm_repository_operations_total", outcome_labels) == outcome_before + 1


@pytest.mark.asyncio
async def test_repository_logs_structured_fields(workspace: CRMWorkspace, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    created = await workspace.contacts.create({"first_name": "Ada", "last_name": "Lovelace"}, user=ADMIN)
    assert created.data is not None
    with pytest.raises(AccessDeniedError):
        await workspace.contacts.remove(created.data.id, user=JUNIOR)

    created_logs = [record for record in caplog.records if record.getMessage() == "repository.created"]
    assert created_logs
    assert getattr(created_logs[0], "entity_type", None) == "contacts"
    assert getattr(created_logs[0], "entity_id", None) == created.data.id

    denied = [record for record in caplog.records if record.name == "crm_core.security"]
    assert denied and denied[0].levelno == logging.WARNING
    assert getattr(denied[0], "operation", None) == "delete"


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "crm_core.repository",
            "levelname": "INFO",
            "msg": "repository.updated",
            "entity_type": "deals",
            "entity_id": "deal-1",
            "password": "hunter2",
            "correlation_id": "corr-1",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "repository.updated"
    assert payload["correlation_id"] == "corr-1"
    assert payload["fields"] == {"entity_type": "deals", "entity_id": "deal-1"}


def test_correlation_filter_reads_context() -> None:
    token = set_correlation_id("ctx-7")
    try:
        record = logging.makeLogRecord({"msg": "x"})
        CorrelationIdFilter().filter(record)
        assert getattr(record, "correlation_id") == "ctx-7"
        assert get_log_context()["correlation_id"] == "ctx-7"
    finally:
        reset_correlation_id(token)


def test_create_workspace_configures_and_loads(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    levels: list[str | None] = []
    monkeypatch.setattr(main, "configure_logging", lambda level_name=None: levels.append(level_name))
    settings = Settings(
        log_level="DEBUG",
        persistence_path=str(tmp_path / "data.json"),
        metrics_enabled=False,
    )

    workspace = main.create_workspace("tenant_009", settings=settings, load_snapshot=True)

    assert levels == ["DEBUG"]
    assert workspace.tenant_id == "tenant_009"
    assert workspace.total_records() == 0
    assert main.metrics_snapshot(settings) is None


def test_metrics_snapshot_exposes_counters() -> None:
    snapshot = main.metrics_snapshot(Settings(metrics_enabled=True))

    assert snapshot is not None
    payload, content_type = snapshot
    assert b"crm_repository_operations_total" in payload
    assert content_type.startswith("text/plain")
