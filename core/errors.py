"""Typed errors raised by the policy layer and the request state machine."""

from __future__ import annotations

from core.models import FetchErrorCode


class GilesError(Exception):
    """Base class for every failure surfaced by giles."""

    error_code: FetchErrorCode = FetchErrorCode.FETCH_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        redirect_chain: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.redirect_chain = list(redirect_chain or [])


class ConfigError(GilesError):
    """Raised when an Agent is constructed with unusable configuration."""

    error_code = FetchErrorCode.CONFIG


class ProtocolMismatchError(GilesError):
    """Raised when a URL is neither http nor https."""

    error_code = FetchErrorCode.PROTOCOL_MISMATCH


class FetchTimeoutError(GilesError):
    """Raised when the socket timer fires."""

    error_code = FetchErrorCode.TIMEOUT


class AbortedError(GilesError):
    """Raised when the connection is torn down out of band."""

    error_code = FetchErrorCode.ABORTED


class MaxLengthError(GilesError):
    """Raised when a body is (or announces it will be) larger than allowed."""

    error_code = FetchErrorCode.BODY_TOO_LARGE


class FetchError(GilesError):
    """Raised for non-2xx responses that are not redirects."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        url: str | None = None,
        redirect_chain: list[str] | None = None,
    ) -> None:
        super().__init__(message, url=url, redirect_chain=redirect_chain)
        self.status_code = status_code
        self.reason = reason


class NotFoundError(FetchError):
    """Raised on 404."""

    error_code = FetchErrorCode.NOT_FOUND


class BadTypeError(GilesError):
    """Raised when a 200 response is not text/html."""

    error_code = FetchErrorCode.BAD_TYPE


class UnsupportedEncodingError(GilesError):
    """Raised when the body uses a content-encoding other than identity."""

    error_code = FetchErrorCode.UNSUPPORTED_ENCODING


class RobotsPolicyViolationError(GilesError):
    """Raised when a redirect lands on a path robots.txt disallows."""

    error_code = FetchErrorCode.BLOCKED_BY_ROBOTS


class BlacklistViolationError(GilesError):
    """Raised when a redirect lands on a blacklisted host."""

    error_code = FetchErrorCode.BLACKLISTED


class CacheUnavailableError(GilesError):
    """Raised when the policy cache cannot be read or written."""

    error_code = FetchErrorCode.CACHE_UNAVAILABLE


class RedirectLimitError(GilesError):
    """Raised when a fetch exceeds the configured redirect limit."""

    error_code = FetchErrorCode.REDIRECT_LIMIT
