"""Per-fetch request state machine: redirects, response validation, bounded streaming."""

from __future__ import annotations

import codecs
import threading
from enum import Enum
from typing import TYPE_CHECKING, Mapping
from urllib.parse import SplitResult, urljoin, urlsplit

import requests
from requests.cookies import RequestsCookieJar, extract_cookies_to_jar, get_cookie_header
from urllib3.exceptions import ReadTimeoutError

from core.config import GilesConfig
from core.errors import (
    AbortedError,
    BadTypeError,
    BlacklistViolationError,
    FetchError,
    FetchTimeoutError,
    GilesError,
    MaxLengthError,
    NotFoundError,
    ProtocolMismatchError,
    RedirectLimitError,
    RobotsPolicyViolationError,
    UnsupportedEncodingError,
)
from core.models import FetchResult

if TYPE_CHECKING:
    from fetcher.agent import Agent


class RequestState(str, Enum):
    """Lifecycle of one fetch."""
    IDLE = "IDLE"
    SENDING = "SENDING"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    REDIRECTING = "REDIRECTING"
    RECEIVING = "RECEIVING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.IDLE: frozenset({RequestState.SENDING, RequestState.FAILED}),
    RequestState.SENDING: frozenset({RequestState.AWAITING_RESPONSE, RequestState.FAILED}),
    RequestState.AWAITING_RESPONSE: frozenset(
        {RequestState.REDIRECTING, RequestState.RECEIVING, RequestState.FAILED}
    ),
    RequestState.REDIRECTING: frozenset({RequestState.SENDING, RequestState.FAILED}),
    RequestState.RECEIVING: frozenset({RequestState.COMPLETE, RequestState.FAILED}),
    RequestState.COMPLETE: frozenset(),
    RequestState.FAILED: frozenset(),
}


def split_url(url: str) -> SplitResult:
    """urlsplit that fails with FetchError on URLs it cannot parse."""
    try:
        parts = urlsplit(url)
        # hostname and port are parsed lazily and raise on malformed netlocs
        parts.hostname
        parts.port
    except ValueError as exc:
        raise FetchError(f"Invalid URL {url!r}: {exc}") from exc
    return parts


def origin_host(parts: SplitResult) -> str:
    """Host (with port, without credentials) of a split URL, lowercased."""
    return parts.netloc.rpartition("@")[2].lower()


def request_path(parts: SplitResult) -> str:
    """Path plus query string, as robots rules see it."""
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


def _content_length(headers: Mapping[str, str]) -> int | None:
    raw = headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value >= 0 else None


def _text_encoding(response: requests.Response) -> str:
    """Charset declared in Content-Type, else UTF-8."""
    content_type = response.headers.get("content-type", "")
    if "charset=" not in content_type.lower():
        # requests assumes ISO-8859-1 for text/* without a charset
        return "utf-8"

    encoding = requests.utils.get_encoding_from_headers(response.headers) or "utf-8"
    try:
        codecs.lookup(encoding)
    except LookupError:
        return "utf-8"
    return encoding


class Request:
    """
    One fetch, driven through an explicit state machine.

    A Request is single-use: `execute()` runs it to COMPLETE or FAILED and
    either returns the FetchResult or raises the GilesError it failed with.
    `abort()` may be called from any other thread while it runs.
    """

    def __init__(
        self,
        url: str,
        agent: Agent,
        max_size: int | None = GilesConfig.MAX_BODY_BYTES,
        timeout_ms: int | None = GilesConfig.TIMEOUT_MS,
        max_redirects: int = GilesConfig.MAX_REDIRECTS,
    ) -> None:
        if not url:
            raise ValueError("URL required for Request")
        if agent is None:
            raise ValueError("Agent required for Request")

        self.url = url
        self.agent = agent
        self.max_size = max_size
        self.timeout_ms = timeout_ms
        self.max_redirects = max_redirects

        self.state = RequestState.IDLE
        self.redirect_chain: list[str] = []
        self.buffered_size = 0
        self.cookie_jar: RequestsCookieJar | None = None
        self.status_code: int | None = None

        self.result: FetchResult | None = None
        self.error: GilesError | None = None

        self._chunks: list[bytes] = []
        self._ceiling = max_size
        self._data = ""
        self._redirects = 0
        self._response: requests.Response | None = None
        self._aborted = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def settled(self) -> bool:
        return self.state in (RequestState.COMPLETE, RequestState.FAILED)

    @property
    def cookies(self) -> str | None:
        """Cookie header value for the current URL, if the jar has any."""
        if self.cookie_jar is None:
            return None
        return get_cookie_header(self.cookie_jar, requests.Request("GET", self.url).prepare())

    def execute(self) -> FetchResult:
        """Run the fetch to completion."""
        if self.state is not RequestState.IDLE:
            raise RuntimeError("Request already executed")

        try:
            while True:
                location = self._exchange()
                if location is None:
                    break
                self._redirect(location)
        except GilesError as exc:
            self._fail(exc)
            raise
        except Exception:
            if not self.settled:
                self.redirect_chain.append(self.url)
                self._transition(RequestState.FAILED)
            raise

        return self._complete()

    def abort(self) -> None:
        """Tear down the transport; the fetch fails with AbortedError."""
        if self.settled:
            return
        self._aborted.set()
        response = self._response
        if response is not None:
            response.close()

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _transition(self, state: RequestState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid request transition {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, exc: GilesError) -> None:
        self.redirect_chain.append(self.url)
        if exc.url is None:
            exc.url = self.url
        exc.redirect_chain = list(self.redirect_chain)
        self._transition(RequestState.FAILED)
        self.error = exc

    def _complete(self) -> FetchResult:
        self._transition(RequestState.COMPLETE)
        self.result = FetchResult(
            data=self._data,
            redirect_chain=list(self.redirect_chain),
            status_code=self.status_code or 200,
            bytes_received=self.buffered_size,
        )
        return self.result

    def _check_abort(self) -> None:
        if self._aborted.is_set():
            raise AbortedError("The connection was aborted.")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": GilesConfig.ACCEPT,
            "Accept-Encoding": GilesConfig.ACCEPT_ENCODING,
            "User-Agent": self.agent.user_agent,
        }
        cookies = self.cookies
        if cookies:
            headers["Cookie"] = cookies
        return headers

    def _exchange(self) -> str | None:
        """Send to the current URL; return the redirect target or None once the body is read."""
        self._transition(RequestState.SENDING)
        parts = split_url(self.url)
        pool = self.agent.pool_for(parts.scheme)
        if pool is None:
            raise ProtocolMismatchError(
                f"Request does not fit HTTP or HTTPS protocols: {parts.scheme or '(none)'}"
            )

        with pool.slot() as session:
            self._check_abort()
            response = self._send(session)
            self._response = response
            try:
                self._check_abort()
                location = self._on_response(response)
                if location is None:
                    self._transition(RequestState.RECEIVING)
                    self._receive(response)
                return location
            finally:
                self._response = None
                response.close()

    def _send(self, session: requests.Session) -> requests.Response:
        timeout = None if self.timeout_ms is None else self.timeout_ms / 1000
        try:
            response = session.get(
                self.url,
                headers=self._headers(),
                stream=True,
                allow_redirects=False,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise FetchTimeoutError(f"Timed out after {self.timeout_ms} ms") from exc
        except requests.RequestException as exc:
            self._check_abort()
            raise FetchError(f"Request failed: {exc}") from exc

        self._transition(RequestState.AWAITING_RESPONSE)
        return response

    def _store_cookies(self, response: requests.Response) -> None:
        if "set-cookie" not in response.headers:
            return
        if self.cookie_jar is None:
            self.cookie_jar = RequestsCookieJar()
        extract_cookies_to_jar(self.cookie_jar, response.request, response.raw)

    def _on_response(self, response: requests.Response) -> str | None:
        """Validate headers; return the absolute redirect target, if any."""
        self._store_cookies(response)
        self.status_code = status = response.status_code
        reason = response.reason or ""

        if status in GilesConfig.REDIRECT_STATUSES:
            location = response.headers.get("location")
            if not location:
                raise FetchError(
                    f"Redirect {status} without a Location header",
                    status_code=status,
                    reason=reason,
                )
            try:
                target = urljoin(self.url, location.strip())
            except ValueError as exc:
                raise FetchError(
                    f"Invalid redirect location {location!r}: {exc}",
                    status_code=status,
                    reason=reason,
                ) from exc
            split_url(target)
            return target

        if status == 404:
            raise NotFoundError("Not found", status_code=status, reason=reason)

        if status != 200:
            raise FetchError(f"{status} {reason}".strip(), status_code=status, reason=reason)

        content_type = response.headers.get("content-type", "")
        if not content_type.strip().lower().startswith("text/html"):
            raise BadTypeError(f"Unsupported content type: {content_type or '(none)'}")

        self._ceiling = self.max_size
        length = _content_length(response.headers)
        if length is not None:
            if self.max_size is not None and length > self.max_size:
                raise MaxLengthError(
                    f"Content-Length {length} exceeds maximum length {self.max_size}"
                )
            self._ceiling = length

        encoding = response.headers.get("content-encoding")
        if encoding and encoding.strip().lower() != "identity":
            raise UnsupportedEncodingError(f"Unsupported content encoding: {encoding}")

        return None

    def _receive(self, response: requests.Response) -> None:
        ceiling = self._ceiling
        try:
            for chunk in response.iter_content(chunk_size=GilesConfig.READ_CHUNK_BYTES):
                self._check_abort()
                if not chunk:
                    continue
                size = self.buffered_size + len(chunk)
                if ceiling is not None and size > ceiling:
                    raise MaxLengthError(f"Content exceeds maximum length {ceiling}")
                self._chunks.append(chunk)
                self.buffered_size = size
        except GilesError:
            raise
        except requests.ConnectionError as exc:
            cause = exc.args[0] if exc.args else None
            if isinstance(cause, ReadTimeoutError):
                raise FetchTimeoutError(f"Timed out after {self.timeout_ms} ms") from exc
            raise AbortedError("The connection was aborted.") from exc
        except requests.RequestException as exc:
            raise AbortedError("The connection was aborted.") from exc
        except Exception as exc:
            if self._aborted.is_set():
                raise AbortedError("The connection was aborted.") from exc
            raise

        # abort() closing the stream can end iteration without an error
        self._check_abort()

        self._data = b"".join(self._chunks).decode(_text_encoding(response), errors="replace")
        self._chunks = []
        self.redirect_chain.append(self.url)

    # ------------------------------------------------------------------
    # Redirects
    # ------------------------------------------------------------------

    def _redirect(self, location: str) -> None:
        """Move to `location`, re-checking policy when the origin changes."""
        self._transition(RequestState.REDIRECTING)
        previous = self.url
        self.redirect_chain.append(previous)
        self.url = location
        self._redirects += 1
        self._chunks = []
        self.buffered_size = 0

        previous_parts = split_url(previous)
        next_parts = split_url(location)
        same_origin = (
            previous_parts.scheme.lower() == next_parts.scheme.lower()
            and origin_host(previous_parts) == origin_host(next_parts)
        )
        self.agent.emit(
            "request_redirect",
            url=previous,
            location=location,
            hop=self._redirects,
            same_origin=same_origin,
        )

        if self._redirects > self.max_redirects:
            raise RedirectLimitError(f"redirects exceeded {self.max_redirects}")

        if same_origin:
            return

        scheme = next_parts.scheme.lower()
        if scheme not in GilesConfig.ALLOWED_PROTOCOLS:
            raise ProtocolMismatchError(f"Redirected to unsupported protocol: {scheme or '(none)'}")

        hostname = next_parts.hostname or ""
        if self.agent.is_blacklisted(hostname):
            raise BlacklistViolationError(f"Redirected to blacklisted host {hostname}")

        if not self.agent.check_robots(scheme, origin_host(next_parts), request_path(next_parts)):
            raise RobotsPolicyViolationError(f"robots.txt disallows {location}")

        self._check_abort()
