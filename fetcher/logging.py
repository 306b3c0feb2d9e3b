"""Structured logging helpers for fetch operations."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from core.models import FetchLog
from core.structured_logging import emit_json_event


def _isoformat(value: datetime | None) -> str | None:
    """Serialize datetimes for logs."""
    if value is None:
        return None
    return value.isoformat()


def fetch_log_to_dict(fetch_log: FetchLog) -> dict[str, Any]:
    """Convert FetchLog to a JSON-safe dictionary."""
    return {
        "id": fetch_log.id,
        "url": fetch_log.url,
        "final_url": fetch_log.final_url,
        "status_code": fetch_log.status_code,
        "latency_ms": fetch_log.latency_ms,
        "bytes_received": fetch_log.bytes_received,
        "redirect_count": fetch_log.redirect_count,
        "error_code": fetch_log.error_code.value if fetch_log.error_code else None,
        "timestamp": _isoformat(fetch_log.created_at),
    }


def emit_event(event_type: str, **payload: Any) -> str:
    """Emit a structured event log line and return it for testability."""
    level = payload.pop("level", None)
    return emit_json_event(event_type, level=level, component="agent", **payload)


def emit_fetch_log(fetch_log: FetchLog) -> str:
    """Emit a structured JSON log line and return it for testability."""
    line = json.dumps(fetch_log_to_dict(fetch_log), ensure_ascii=True, sort_keys=True)
    print(line)
    return line
