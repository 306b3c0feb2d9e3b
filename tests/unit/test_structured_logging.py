"""Unit tests for structured JSON event lines."""

from __future__ import annotations

import json

import pytest

from core.structured_logging import emit_json_event, event_level
from fetcher.logging import emit_event


@pytest.mark.unit
@pytest.mark.parametrize(
    ("event_type", "expected"),
    [
        ("blacklist_refreshed", "info"),
        ("robots_fetch_failed", "warning"),
        ("request_redirect", "debug"),
        ("cli_error", "error"),
        ("something_new", "info"),
    ],
)
def test_event_level_defaults(event_type: str, expected: str):
    assert event_level(event_type) == expected


@pytest.mark.unit
def test_event_level_explicit_override_is_validated():
    assert event_level("robots_fetched", "WARNING") == "warning"
    with pytest.raises(ValueError):
        event_level("robots_fetched", "loud")


@pytest.mark.unit
def test_emit_json_event_writes_one_line(capsys):
    returned = emit_json_event("robots_cache_corrupt", component="agent", key="giles:robots:http:a")
    printed = capsys.readouterr().out.strip()

    assert printed == returned
    event = json.loads(printed)
    assert event["event_type"] == "robots_cache_corrupt"
    assert event["level"] == "warning"
    assert event["component"] == "agent"
    assert event["key"] == "giles:robots:http:a"
    assert "timestamp" in event


@pytest.mark.unit
def test_emit_event_takes_level_from_payload(capsys):
    emit_event("blacklist_refresh_failed", level="error", size=3)
    event = json.loads(capsys.readouterr().out)

    assert event["level"] == "error"
    assert event["component"] == "agent"
    assert event["size"] == 3
