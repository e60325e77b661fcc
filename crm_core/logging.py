from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crm_core.context import get_correlation_id, get_tenant_id
from crm_core.core.config import get_settings


_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_ENVELOPE_FIELDS = ("correlation_id", "tenant_id")
_ENTITY_FIELDS = frozenset({"entity_type", "entity_id", "operation", "outcome", "field", "count"})
_ACTOR_FIELDS = frozenset({"user_id", "role"})
_STORAGE_FIELDS = frozenset({"path", "version", "error"})
_MAX_ERROR_LENGTH = 500


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the correlation and tenant ids of the running task."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        if not getattr(record, "tenant_id", None):
            record.tenant_id = get_tenant_id()
        return True


def _structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    allowed = _ENTITY_FIELDS | _ACTOR_FIELDS | _STORAGE_FIELDS
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key in allowed and key not in _STANDARD_ATTRS
    }
    error = fields.get("error")
    if isinstance(error, str) and len(error) > _MAX_ERROR_LENGTH:
        fields["error"] = error[:_MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _ENVELOPE_FIELDS:
            payload[key] = getattr(record, key, None)

        fields = _structured_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging(level_name: str | None = None) -> None:
    """Route every logger through a single JSON handler on stdout. Safe to call repeatedly."""
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crm_configured", False):
        return

    level = logging.getLevelName((level_name or get_settings().log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    root_logger._crm_configured = True  # type: ignore[attr-defined]
