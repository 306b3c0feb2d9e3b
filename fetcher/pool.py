"""Per-scheme connection pools with a bounded number of simultaneous sockets."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from http.cookiejar import DefaultCookiePolicy
from typing import Iterator

import requests
from requests.adapters import HTTPAdapter

from core.models import ConnectionOptions


def build_session(
    scheme: str,
    max_sockets: int,
    connection_options: ConnectionOptions,
) -> requests.Session:
    """Session whose adapter for `scheme` blocks once max_sockets are in use."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=max_sockets,
        pool_maxsize=max_sockets,
        max_retries=connection_options.max_retries,
        pool_block=True,
    )
    session.mount(f"{scheme}://", adapter)
    session.verify = connection_options.verify
    session.proxies.update(connection_options.proxies)
    session.trust_env = False

    # Cookies belong to each Request, never to the shared session
    session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
    return session


class ConnectionPool:
    """Admission control plus a shared session for one scheme."""

    def __init__(
        self,
        scheme: str,
        max_sockets: int,
        connection_options: ConnectionOptions | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the slot semaphore and the bounded session."""
        if max_sockets < 1:
            raise ValueError("max_sockets must be >= 1")

        self.scheme = scheme
        self.max_sockets = max_sockets
        self.session = session or build_session(
            scheme, max_sockets, connection_options or ConnectionOptions()
        )

        self._semaphore = threading.BoundedSemaphore(max_sockets)
        self._lock = threading.Lock()
        self._in_use = 0

    @property
    def in_use(self) -> int:
        """Number of slots currently held."""
        with self._lock:
            return self._in_use

    @contextmanager
    def slot(self) -> Iterator[requests.Session]:
        """Hold one socket slot for the duration of an exchange."""
        self._semaphore.acquire()
        with self._lock:
            self._in_use += 1
        try:
            yield self.session
        finally:
            with self._lock:
                self._in_use -= 1
            self._semaphore.release()

    def close(self) -> None:
        self.session.close()
