"""End-to-end tests for the giles command line."""

from __future__ import annotations

import json

import pytest

import giles.cli as cli_module
from core.errors import RobotsPolicyViolationError
from core.models import FetchResult
from fetcher.cache import InMemoryPolicyCache
from giles.cli import main as cli_main


def _json_lines(stdout: str) -> list[dict]:
    """Parse JSON log lines emitted by CLI commands."""
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    return [json.loads(line) for line in lines]


class FakeAgent:
    """Agent stand-in returning a canned outcome for make_request."""

    instances: list["FakeAgent"] = []
    outcome: object = None

    def __init__(self, **options: object) -> None:
        self.options = options
        self.requested: list[str] = []
        self.closed = False
        FakeAgent.instances.append(self)

    def make_request(self, url: str):
        self.requested.append(url)
        if isinstance(FakeAgent.outcome, Exception):
            raise FakeAgent.outcome
        return FakeAgent.outcome

    def __enter__(self) -> "FakeAgent":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.closed = True


@pytest.fixture
def fake_agent(monkeypatch):
    FakeAgent.instances = []
    FakeAgent.outcome = None
    monkeypatch.setattr(cli_module, "Agent", FakeAgent)
    return FakeAgent


@pytest.mark.integration
def test_check_robots_command_reports_each_path(tmp_path, capsys):
    robots_file = tmp_path / "robots.txt"
    robots_file.write_text(
        "User-agent: *\nDisallow: /a/\nAllow: /a/b$\nSitemap: https://example.com/s.xml\n",
        encoding="utf-8",
    )

    exit_code = cli_main(["check-robots", str(robots_file), "/a/b", "/a/c", "/other"])
    events = _json_lines(capsys.readouterr().out)

    assert exit_code == 0
    checks = {event["path"]: event["allowed"] for event in events if event["event_type"] == "robots_check"}
    assert checks == {"/a/b": True, "/a/c": False, "/other": True}
    serialized = [event for event in events if event["event_type"] == "robots_serialized"][0]
    assert serialized["rules"] == "1^/a/b$\n0^/a/"
    assert serialized["sitemaps"] == ["https://example.com/s.xml"]


@pytest.mark.integration
def test_check_robots_missing_file_exits_nonzero(tmp_path, capsys):
    exit_code = cli_main(["check-robots", str(tmp_path / "absent.txt"), "/"])
    events = _json_lines(capsys.readouterr().out)

    assert exit_code == 1
    assert events[-1]["event_type"] == "cli_error"
    assert events[-1]["error_type"] == "FileNotFoundError"


@pytest.mark.integration
def test_fetch_command_completed(fake_agent, capsys):
    fake_agent.outcome = FetchResult(
        data="<html>hi</html>",
        redirect_chain=["https://example.com/", "https://example.com/home"],
        status_code=200,
        bytes_received=15,
    )

    exit_code = cli_main(["fetch", "https://example.com/", "--memory-cache", "--include-body"])
    events = _json_lines(capsys.readouterr().out)

    assert exit_code == 0
    assert events[-1]["event_type"] == "cli_fetch_completed"
    assert events[-1]["final_url"] == "https://example.com/home"
    assert events[-1]["data"] == "<html>hi</html>"

    agent = fake_agent.instances[0]
    assert agent.requested == ["https://example.com/"]
    assert agent.closed is True
    assert isinstance(agent.options["cache_connection"], InMemoryPolicyCache)


@pytest.mark.integration
def test_fetch_command_declined(fake_agent, capsys):
    exit_code = cli_main(["fetch", "https://blocked.example/", "--redis-url", "redis://cache:6379/1"])
    events = _json_lines(capsys.readouterr().out)

    assert exit_code == 3
    assert events[-1]["event_type"] == "cli_fetch_declined"
    assert fake_agent.instances[0].options["cache_connection"] == "redis://cache:6379/1"


@pytest.mark.integration
def test_fetch_command_failed(fake_agent, capsys):
    fake_agent.outcome = RobotsPolicyViolationError(
        "Redirect blocked by robots.txt",
        url="https://other.example/private",
        redirect_chain=["https://example.com/", "https://other.example/private"],
    )

    exit_code = cli_main(["fetch", "https://example.com/", "--memory-cache"])
    events = _json_lines(capsys.readouterr().out)

    assert exit_code == 1
    assert events[-1]["event_type"] == "cli_fetch_failed"
    assert events[-1]["level"] == "error"
    assert events[-1]["component"] == "cli"
    assert events[-1]["error_code"] == "BLOCKED_BY_ROBOTS"
    assert events[-1]["redirect_chain"] == [
        "https://example.com/",
        "https://other.example/private",
    ]


@pytest.mark.integration
def test_no_command_prints_help(capsys):
    assert cli_main([]) == 0
    assert "giles" in capsys.readouterr().out
