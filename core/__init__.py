"""Core module for giles."""

from core.models import (
    AgentOptions,
    ConnectionOptions,
    FetchErrorCode,
    FetchLog,
    FetchResult,
)
from core.config import GilesConfig
from core.errors import (
    AbortedError,
    BadTypeError,
    BlacklistViolationError,
    CacheUnavailableError,
    ConfigError,
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

__all__ = [
    "AgentOptions",
    "ConnectionOptions",
    "FetchErrorCode",
    "FetchLog",
    "FetchResult",
    "GilesConfig",
    "AbortedError",
    "BadTypeError",
    "BlacklistViolationError",
    "CacheUnavailableError",
    "ConfigError",
    "FetchError",
    "FetchTimeoutError",
    "GilesError",
    "MaxLengthError",
    "NotFoundError",
    "ProtocolMismatchError",
    "RedirectLimitError",
    "RobotsPolicyViolationError",
    "UnsupportedEncodingError",
]
