"""
Default configuration for giles.

These are the baseline values every Agent starts from. Per-agent overrides
go through `core.models.AgentOptions`, which validates them against the same
constraints enforced here.

Design: defaults are conservative (bounded body size, bounded sockets,
finite timeouts). A caller has to ask explicitly for anything looser.
"""

from typing import Set


class GilesConfig:
    """
    Baseline settings for the policy layer and the request state machine.
    """

    # ========================================================================
    # Policy Cache
    # ========================================================================

    # Namespace for every key written to or read from the policy cache
    KEY_PREFIX: str = "giles:"
    """Prefix for blacklist and robots cache keys."""

    # Robots decisions are cached for a day regardless of outcome
    ROBOTS_TTL_SECONDS: int = 24 * 60 * 60
    """TTL for serialized robots decisions."""

    # Cached when robots.txt is missing, unreadable or has no matching bucket
    UNRESTRICTED_RULES: str = "1^/"
    """Serialized sentinel meaning "everything allowed"."""

    # robots.txt bodies beyond this are truncated before parsing
    ROBOTS_MAX_BYTES: int = 500_000
    """Maximum robots.txt bytes read."""

    ROBOTS_TIMEOUT_MS: int = 10_000
    """Socket timeout for robots.txt fetches (milliseconds)."""

    # ========================================================================
    # Blacklist
    # ========================================================================

    BLACKLIST_REFRESH_INTERVAL_MS: int = 10 * 60 * 1000
    """How often the blacklist snapshot is reloaded from the cache."""

    # ========================================================================
    # Transport
    # ========================================================================

    # Max simultaneous sockets per pool (one pool per scheme)
    CONCURRENCY_LIMIT: int = 5
    """Sockets per connection pool."""

    ALLOWED_PROTOCOLS: Set[str] = {"http", "https"}
    """Only HTTP(S) allowed."""

    USER_AGENT: str = "Giles"
    """User-Agent header and robots.txt bucket name."""

    ACCEPT: str = "text/html;q=0.9,*/*;q=0.8"
    """Accept header sent with every fetch."""

    # Responses are streamed; compressed bodies are refused
    ACCEPT_ENCODING: str = "identity"
    """Accept-Encoding header sent with every fetch."""

    # ========================================================================
    # Request Limits
    # ========================================================================

    MAX_BODY_BYTES: int = 5_000_000
    """Default body ceiling (5 MB of HTML)."""

    TIMEOUT_MS: int = 30_000
    """Default socket timeout (milliseconds)."""

    MAX_REDIRECTS: int = 10
    """Maximum redirect hops per fetch."""

    READ_CHUNK_BYTES: int = 8192
    """Chunk size used when streaming bodies."""

    # Status codes that trigger a redirect; anything else non-200 is an error
    REDIRECT_STATUSES: Set[int] = {301, 302, 303, 307}
    """Redirect status codes that are followed."""

    @classmethod
    def validate(cls) -> None:
        """
        Validate configuration at startup.

        Raises:
            AssertionError: If any constraint is violated.
        """
        assert cls.KEY_PREFIX, "KEY_PREFIX must not be empty"

        assert cls.ROBOTS_TTL_SECONDS > 0, "ROBOTS_TTL_SECONDS must be > 0"

        assert cls.ROBOTS_MAX_BYTES > 0, "ROBOTS_MAX_BYTES must be > 0"

        assert (
            cls.BLACKLIST_REFRESH_INTERVAL_MS > 0
        ), "BLACKLIST_REFRESH_INTERVAL_MS must be > 0"

        assert cls.CONCURRENCY_LIMIT >= 1, "CONCURRENCY_LIMIT must be >= 1"

        assert cls.MAX_BODY_BYTES > 0, "MAX_BODY_BYTES must be > 0"

        assert cls.TIMEOUT_MS > 0, "TIMEOUT_MS must be > 0"

        assert cls.MAX_REDIRECTS >= 0, "MAX_REDIRECTS must be >= 0"

        assert (
            cls.ALLOWED_PROTOCOLS <= {"http", "https"}
        ), "ALLOWED_PROTOCOLS may only contain http and https"


# Validate at module import time
GilesConfig.validate()
