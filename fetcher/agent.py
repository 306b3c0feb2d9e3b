"""Agent: blacklist snapshot, cached robots decisions, and pooled fetches."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

import requests
from pydantic import ValidationError

from core.config import GilesConfig
from core.errors import (
    ConfigError,
    FetchError,
    GilesError,
    ProtocolMismatchError,
)
from core.models import AgentOptions, FetchErrorCode, FetchLog, FetchResult, normalize_hostname
from fetcher.cache import PolicyCache, build_policy_cache
from fetcher.logging import emit_event, emit_fetch_log
from fetcher.pool import ConnectionPool
from fetcher.request import Request, origin_host, request_path, split_url
from fetcher.robots import (
    RobotsFormatError,
    check_path_from_serialized,
    parse,
    serialize_rules,
)


EventHook = Callable[[str, dict[str, object]], None]


def _read_robots_body(response: requests.Response, max_bytes: int) -> str:
    """Read robots.txt up to max_bytes; anything past that is ignored."""
    chunks: list[bytes] = []
    total = 0
    for chunk in response.iter_content(chunk_size=GilesConfig.READ_CHUNK_BYTES):
        if not chunk:
            continue
        remaining = max_bytes - total
        chunks.append(chunk[:remaining])
        total += min(len(chunk), remaining)
        if total >= max_bytes:
            break
    return b"".join(chunks).decode("utf-8", errors="replace")


class Agent:
    """
    Long-lived policy layer in front of every fetch.

    Owns the blacklist snapshot (refreshed from the cache on a timer), one
    connection pool per scheme, and the cached robots decisions. Safe to share
    between threads; each `make_request` call runs on its caller's thread.
    """

    def __init__(
        self,
        options: AgentOptions | None = None,
        *,
        event_hook: EventHook | None = None,
        pools: Mapping[str, ConnectionPool] | None = None,
        auto_refresh: bool = True,
        **fields: Any,
    ) -> None:
        """Validate options, connect the cache, build pools, start the blacklist timer."""
        if options is None:
            try:
                options = AgentOptions(**fields)
            except ValidationError as exc:
                raise ConfigError(f"Invalid agent options: {exc}") from exc
        elif fields:
            raise ConfigError("Pass either an AgentOptions instance or keyword options, not both")

        self.options = options
        self.cache: PolicyCache = build_policy_cache(options.cache_connection)
        self.user_agent = options.user_agent
        self.key_prefix = options.key_prefix
        self.event_hook = event_hook or self._default_event_logger

        self.pools: dict[str, ConnectionPool] = dict(pools or {})
        for scheme in sorted(GilesConfig.ALLOWED_PROTOCOLS):
            if scheme not in self.pools:
                self.pools[scheme] = ConnectionPool(
                    scheme,
                    options.concurrency_limit,
                    connection_options=options.connection_options,
                )

        self._static_blacklist = frozenset(options.blacklist)
        self._blacklist = self._static_blacklist

        self._stop = threading.Event()
        self._refresh_thread: threading.Thread | None = None
        self.update_blacklist()
        if auto_refresh:
            self._refresh_thread = threading.Thread(
                target=self._refresh_loop,
                name="giles-blacklist-refresh",
                daemon=True,
            )
            self._refresh_thread.start()

    @staticmethod
    def _default_event_logger(event_type: str, payload: dict[str, object]) -> None:
        """Default event sink writing to structured JSON stdout."""
        emit_event(event_type, **payload)

    def emit(self, event_type: str, **payload: object) -> None:
        self.event_hook(event_type, payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the blacklist timer and release pooled connections."""
        self._stop.set()
        thread = self._refresh_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        for pool in self.pools.values():
            pool.close()

    def __enter__(self) -> Agent:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------

    @property
    def blacklist_key(self) -> str:
        return f"{self.key_prefix}blacklist"

    @property
    def blacklist(self) -> frozenset[str]:
        """Current snapshot (never mutated in place)."""
        return self._blacklist

    def _refresh_loop(self) -> None:
        interval = self.options.blacklist_refresh_interval_ms / 1000
        while not self._stop.wait(interval):
            try:
                self.update_blacklist()
            except Exception as exc:
                # Keep the timer alive; the previous snapshot stays in force
                self.emit(
                    "blacklist_refresh_failed",
                    level="error",
                    key=self.blacklist_key,
                    error_type=type(exc).__name__,
                    message=str(exc),
                    size=len(self._blacklist),
                )

    def update_blacklist(self) -> bool:
        """Replace the snapshot from the cache; keep the old one if the cache fails."""
        try:
            members = self.cache.members_of(self.blacklist_key)
        except GilesError as exc:
            self.emit(
                "blacklist_refresh_failed",
                level="warning",
                key=self.blacklist_key,
                message=str(exc),
                size=len(self._blacklist),
            )
            return False

        fresh = frozenset(normalize_hostname(host) for host in members) - {""}
        self._blacklist = self._static_blacklist | fresh
        self.emit("blacklist_refreshed", key=self.blacklist_key, size=len(self._blacklist))
        return True

    def is_blacklisted(self, hostname: str) -> bool:
        snapshot = self._blacklist
        return normalize_hostname(hostname) in snapshot

    # ------------------------------------------------------------------
    # Robots
    # ------------------------------------------------------------------

    def robots_key(self, scheme: str, host: str) -> str:
        return f"{self.key_prefix}robots:{scheme}:{host}"

    def pool_for(self, scheme: str) -> ConnectionPool | None:
        return self.pools.get(scheme.lower())

    def check_robots(self, scheme: str, host: str, path: str) -> bool:
        """Evaluate path against the cached decision for host, fetching robots.txt on a miss."""
        scheme = scheme.lower().rstrip(":")
        serialized = self.cache.get(self.robots_key(scheme, host))
        if serialized is None:
            return self.fetch_robots(scheme, host, path)

        try:
            return check_path_from_serialized(serialized, path)
        except RobotsFormatError as exc:
            self.emit(
                "robots_cache_corrupt",
                level="warning",
                key=self.robots_key(scheme, host),
                message=str(exc),
            )
            return self.fetch_robots(scheme, host, path)

    def fetch_robots(self, scheme: str, host: str, path: str) -> bool:
        """
        Fetch and cache robots.txt for host, then evaluate path.

        Anything other than a 200 with a usable body (network error, other
        status, empty file, no group for our user agent) caches the
        unrestricted sentinel and allows the path.
        """
        scheme = scheme.lower().rstrip(":")
        pool = self.pool_for(scheme)
        if pool is None:
            raise ProtocolMismatchError(f"Request does not fit HTTP or HTTPS protocols: {scheme}")

        robots_url = f"{scheme}://{host}/robots.txt"
        timeout = self.options.connection_options.robots_timeout_ms / 1000
        status_code: int | None = None
        body = ""
        failure: str | None = None

        try:
            with pool.slot() as session:
                response = session.get(
                    robots_url,
                    headers={"User-Agent": self.user_agent},
                    stream=True,
                    allow_redirects=False,
                    timeout=timeout,
                )
                try:
                    status_code = response.status_code
                    if status_code == 200:
                        body = _read_robots_body(response, GilesConfig.ROBOTS_MAX_BYTES)
                finally:
                    response.close()
        except requests.RequestException as exc:
            failure = f"robots.txt request error for {robots_url}: {exc}"

        serialized: str | None = None
        if status_code == 200 and body.strip():
            serialized = serialize_rules(parse(body), self.user_agent)
        elif failure is None:
            failure = f"robots.txt returned {status_code} for {robots_url}"

        if not serialized:
            serialized = GilesConfig.UNRESTRICTED_RULES

        if failure:
            self.emit(
                "robots_fetch_failed",
                level="warning",
                robots_url=robots_url,
                status_code=status_code,
                message=f"{failure}; allowing",
            )
        else:
            self.emit(
                "robots_fetched",
                robots_url=robots_url,
                status_code=status_code,
                rule_count=len(serialized.splitlines()),
            )

        self.cache.set_with_ttl(
            self.robots_key(scheme, host),
            GilesConfig.ROBOTS_TTL_SECONDS,
            serialized,
        )
        return check_path_from_serialized(serialized, path)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def create_request(
        self,
        url: str,
        max_size: int | None = None,
        timeout_ms: int | None = None,
    ) -> Request:
        """Build a Request bound to this agent without running policy checks."""
        return Request(
            url,
            self,
            max_size=max_size if max_size is not None else self.options.max_size,
            timeout_ms=timeout_ms if timeout_ms is not None else self.options.timeout_ms,
            max_redirects=self.options.max_redirects,
        )

    def make_request(
        self,
        url: str,
        max_size: int | None = None,
        timeout_ms: int | None = None,
    ) -> FetchResult | None:
        """
        Fetch url if policy permits.

        Returns None when the blacklist or robots.txt declines the initial
        URL, the FetchResult on success, and raises a GilesError otherwise.
        """
        start = time.monotonic()
        try:
            parts = split_url(url)
        except FetchError as exc:
            exc.url = url
            exc.redirect_chain = [url]
            self._record(url, start, error_code=exc.error_code)
            raise
        hostname = parts.hostname or ""

        if self.is_blacklisted(hostname):
            self._record(url, start, error_code=FetchErrorCode.BLACKLISTED)
            return None

        request: Request | None = None
        try:
            scheme = parts.scheme.lower()
            if scheme not in GilesConfig.ALLOWED_PROTOCOLS:
                raise ProtocolMismatchError(
                    f"Request does not fit HTTP or HTTPS protocols: {scheme or '(none)'}",
                    url=url,
                    redirect_chain=[url],
                )
            if not hostname:
                raise FetchError("URL has no host", url=url, redirect_chain=[url])

            if not self.check_robots(scheme, origin_host(parts), request_path(parts)):
                self._record(url, start, error_code=FetchErrorCode.BLOCKED_BY_ROBOTS)
                return None

            request = self.create_request(url, max_size=max_size, timeout_ms=timeout_ms)
            result = request.execute()
        except GilesError as exc:
            self._record(url, start, request=request, error_code=exc.error_code)
            raise

        self._record(url, start, request=request)
        return result

    def _record(
        self,
        url: str,
        start: float,
        request: Request | None = None,
        error_code: FetchErrorCode | None = None,
    ) -> None:
        if error_code in (FetchErrorCode.BLACKLISTED, FetchErrorCode.BLOCKED_BY_ROBOTS) and request is None:
            self.emit("fetch_declined", url=url, reason=error_code.value)

        if not self.options.log_fetches:
            return

        chain = request.redirect_chain if request is not None else []
        emit_fetch_log(
            FetchLog(
                url=url,
                final_url=chain[-1] if chain else None,
                status_code=request.status_code if request is not None else None,
                latency_ms=int((time.monotonic() - start) * 1000),
                bytes_received=request.buffered_size if request is not None else None,
                redirect_count=max(len(chain) - 1, 0),
                error_code=error_code,
            )
        )
