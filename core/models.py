"""
Core Pydantic models for giles.

Design principles:
- Configuration is validated once, at Agent construction
- Results are plain data (no live sockets or sessions hang off them)
- Every fetch outcome can be rendered as one structured log line
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from core.config import GilesConfig


# ============================================================================
# Enums
# ============================================================================

class FetchErrorCode(str, Enum):
    """Why did a fetch fail (or get declined)?"""
    CONFIG = "CONFIG"
    PROTOCOL_MISMATCH = "PROTOCOL_MISMATCH"
    TIMEOUT = "TIMEOUT"
    ABORTED = "ABORTED"
    BODY_TOO_LARGE = "BODY_TOO_LARGE"
    NOT_FOUND = "NOT_FOUND"
    FETCH_ERROR = "FETCH_ERROR"  # Non-2xx status or network error
    BAD_TYPE = "BAD_TYPE"
    UNSUPPORTED_ENCODING = "UNSUPPORTED_ENCODING"
    BLOCKED_BY_ROBOTS = "BLOCKED_BY_ROBOTS"
    BLACKLISTED = "BLACKLISTED"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    REDIRECT_LIMIT = "REDIRECT_LIMIT"


def normalize_hostname(host: str) -> str:
    """Lowercase, trimmed, without the trailing root dot."""
    return host.strip().lower().rstrip(".")


# ============================================================================
# Configuration
# ============================================================================

class ConnectionOptions(BaseModel):
    """
    Transport settings shared by both connection pools.

    Example:
      verify = "/etc/ssl/certs/ca-bundle.crt"
      proxies = {"https": "http://proxy.internal:3128"}
    """
    verify: bool | str = True  # TLS verification flag or CA bundle path
    proxies: Dict[str, str] = Field(default_factory=dict)
    max_retries: int = Field(default=0, ge=0)  # urllib3 connect retries
    robots_timeout_ms: int = Field(default=GilesConfig.ROBOTS_TIMEOUT_MS, gt=0)


class AgentOptions(BaseModel):
    """
    Configuration for one Agent.

    `cache_connection` is required; the Agent refuses to start without it.
    It may be a PolicyCache, a redis client, a redis URL, or a dict of redis
    keyword arguments.
    """
    cache_connection: Any = None
    key_prefix: str = GilesConfig.KEY_PREFIX
    concurrency_limit: int = Field(default=GilesConfig.CONCURRENCY_LIMIT, ge=1)
    connection_options: ConnectionOptions = Field(default_factory=ConnectionOptions)
    user_agent: str = GilesConfig.USER_AGENT
    blacklist_refresh_interval_ms: int = Field(
        default=GilesConfig.BLACKLIST_REFRESH_INTERVAL_MS, gt=0
    )
    blacklist: List[str] = Field(default_factory=list)  # Seed before first refresh

    # Per-request defaults (overridable per make_request call)
    max_size: Optional[int] = Field(default=GilesConfig.MAX_BODY_BYTES, gt=0)
    timeout_ms: Optional[int] = Field(default=GilesConfig.TIMEOUT_MS, gt=0)
    max_redirects: int = Field(default=GilesConfig.MAX_REDIRECTS, ge=0)

    log_fetches: bool = True

    @field_validator("user_agent")
    @classmethod
    def validate_user_agent(cls, v: str) -> str:
        """User-Agent doubles as the robots bucket name, so it can't be blank."""
        if not v.strip():
            raise ValueError("user_agent must not be blank")
        return v.strip()

    @field_validator("blacklist")
    @classmethod
    def normalize_blacklist(cls, v: List[str]) -> List[str]:
        hosts = (normalize_hostname(host) for host in v)
        return [host for host in hosts if host]


# ============================================================================
# Fetch Results
# ============================================================================

class FetchResult(BaseModel):
    """
    Body and redirect chain of one completed fetch.

    redirect_chain lists every URL visited in order; the last entry is the
    URL the body was read from.
    """
    data: str
    redirect_chain: List[str] = Field(default_factory=list)
    status_code: int = 200
    bytes_received: int = 0

    @property
    def final_url(self) -> Optional[str]:
        return self.redirect_chain[-1] if self.redirect_chain else None


# ============================================================================
# Fetch / Network Logging
# ============================================================================

class FetchLog(BaseModel):
    """
    Log entry for a single make_request call.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    url: str
    final_url: Optional[str] = None

    status_code: Optional[int] = None  # HTTP status
    latency_ms: Optional[int] = None  # Time to completion
    bytes_received: Optional[int] = None
    redirect_count: int = 0

    error_code: Optional[FetchErrorCode] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
