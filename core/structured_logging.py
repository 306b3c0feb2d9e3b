"""Structured JSON event lines emitted by the agent, requests and the CLI."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any


LEVELS = ("debug", "info", "warning", "error")

# Default severity per event; unlisted events log at info
EVENT_LEVELS: dict[str, str] = {
    "blacklist_refreshed": "info",
    "blacklist_refresh_failed": "warning",
    "robots_fetched": "info",
    "robots_fetch_failed": "warning",
    "robots_cache_corrupt": "warning",
    "request_redirect": "debug",
    "fetch_declined": "info",
    "cli_fetch_failed": "error",
    "cli_error": "error",
}


def event_level(event_type: str, level: str | None = None) -> str:
    """Resolve the level for an event, validating explicit overrides."""
    resolved = (level or EVENT_LEVELS.get(event_type, "info")).lower()
    if resolved not in LEVELS:
        raise ValueError(f"Unknown log level {level!r} for event {event_type}")
    return resolved


def emit_json_event(
    event_type: str,
    *,
    level: str | None = None,
    component: str = "agent",
    **payload: Any,
) -> str:
    """Emit one JSON event line to stdout and return the rendered line."""
    event: dict[str, Any] = {
        "event_type": event_type,
        "level": event_level(event_type, level),
        "component": component,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    event.update(payload)
    line = json.dumps(event, ensure_ascii=True, sort_keys=True, default=str)
    print(line)
    return line
