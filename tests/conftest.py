"""
Shared pytest fixtures and configuration for giles tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from fetcher.agent import Agent
from fetcher.cache import InMemoryPolicyCache
from fetcher.pool import ConnectionPool


# ============================================================================
# Transport fakes
# ============================================================================

class DummyResponse:
    """Minimal streamed response object for exercising the request state machine."""

    def __init__(
        self,
        status_code: int,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        chunks: list[bytes] | None = None,
        reason: str = "",
        encoding: str | None = None,
        error: Exception | None = None,
        on_chunk: Callable[[int], None] | None = None,
        raw: object | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._chunks = chunks if chunks is not None else ([body] if body else [])
        self.reason = reason
        self.encoding = encoding
        self.error = error
        self.on_chunk = on_chunk
        self.raw = raw
        self.request: requests.PreparedRequest | None = None
        self.closed = False
        self.iterated = False

    @property
    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")

    def iter_content(self, chunk_size: int = 8192) -> Iterator[bytes]:
        self.iterated = True
        for index, chunk in enumerate(self._chunks):
            if self.closed:
                return
            if self.on_chunk:
                self.on_chunk(index)
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


class DummySession:
    """Session stub driven either by a sequence or by per-URL routes."""

    def __init__(
        self,
        responses: list[object] | None = None,
        routes: dict[str, list[object]] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.routes = {url: list(items) for url, items in (routes or {}).items()}
        self.calls: list[str] = []
        self.kwargs: list[dict[str, object]] = []
        self.closed = False

    def get(self, url: str, **kwargs: object):
        self.calls.append(url)
        self.kwargs.append(kwargs)
        if url in self.routes:
            queue = self.routes[url]
        else:
            queue = self.responses
        if not queue:
            raise AssertionError(f"No more stubbed responses available for {url}")
        next_item = queue.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        if isinstance(next_item, DummyResponse) and next_item.request is None:
            next_item.request = requests.Request("GET", url).prepare()
        return next_item

    def close(self) -> None:
        self.closed = True


def html(body: bytes = b"<html>ok</html>", **headers: str) -> DummyResponse:
    """200 text/html response."""
    merged = {"content-type": "text/html; charset=utf-8"}
    merged.update({key.replace("_", "-"): value for key, value in headers.items()})
    return DummyResponse(200, headers=merged, body=body, reason="OK")


def redirect(location: str, status: int = 302) -> DummyResponse:
    return DummyResponse(status, headers={"location": location}, reason="Found")


class RecordingCache(InMemoryPolicyCache):
    """In-memory cache that records every contract call."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    def get(self, key: str) -> str | None:
        self.calls.append(("get", key))
        return super().get(key)

    def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        self.calls.append(("set_with_ttl", key))
        super().set_with_ttl(key, ttl_seconds, value)

    def members_of(self, key: str) -> set[str]:
        self.calls.append(("members_of", key))
        return super().members_of(key)


# ============================================================================
# Fixtures: Agent wiring
# ============================================================================

@pytest.fixture
def policy_cache() -> RecordingCache:
    """Empty recording cache."""
    return RecordingCache()


@pytest.fixture
def events() -> list[tuple[str, dict[str, object]]]:
    """Captured agent events."""
    return []


@pytest.fixture
def make_agent(policy_cache, events):
    """Factory building an Agent over stub sessions; closes agents at teardown."""
    created: list[Agent] = []

    def _make(
        https: DummySession | None = None,
        http: DummySession | None = None,
        cache: object | None = None,
        **options: object,
    ) -> Agent:
        options.setdefault("log_fetches", False)
        pools = {
            "https": ConnectionPool("https", 5, session=https or DummySession()),
            "http": ConnectionPool("http", 5, session=http or DummySession()),
        }
        agent = Agent(
            cache_connection=cache if cache is not None else policy_cache,
            pools=pools,
            auto_refresh=False,
            event_hook=lambda event_type, payload: events.append((event_type, payload)),
            **options,
        )
        created.append(agent)
        return agent

    yield _make

    for agent in created:
        agent.close()


@pytest.fixture
def allow_all(policy_cache):
    """Seed the cache so robots checks for a host are unrestricted."""

    def _seed(scheme: str, host: str, rules: str = "1^/") -> None:
        policy_cache.set_with_ttl(f"giles:robots:{scheme}:{host}", 3600, rules)

    return _seed


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: end-to-end integration tests")
    config.addinivalue_line("markers", "unit: unit tests")
