"""Policy cache contract plus Redis and in-memory adapters."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from typing import Protocol, runtime_checkable

import redis

from core.errors import CacheUnavailableError, ConfigError


@runtime_checkable
class PolicyCache(Protocol):
    """Key/value store with TTL and set membership, as consumed by the Agent."""

    def get(self, key: str) -> str | None:
        ...

    def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        ...

    def members_of(self, key: str) -> set[str]:
        ...


def _decode(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisPolicyCache:
    """PolicyCache backed by a redis-py client (GET / SETEX / SMEMBERS)."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> RedisPolicyCache:
        """Build from redis://host:port/db or rediss:// (TLS)."""
        kwargs.setdefault("socket_timeout", 2.0)
        kwargs.setdefault("socket_connect_timeout", 2.0)
        return cls(redis.Redis.from_url(url, **kwargs))

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
            return None if value is None else _decode(value)
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"cache read failed for {key}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise CacheUnavailableError(f"cache value for {key} is not UTF-8: {exc}") from exc

    def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"cache write failed for {key}: {exc}") from exc

    def members_of(self, key: str) -> set[str]:
        try:
            return {_decode(member) for member in self._client.smembers(key)}
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"cache read failed for {key}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise CacheUnavailableError(f"cache member of {key} is not UTF-8: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class InMemoryPolicyCache:
    """Process-local PolicyCache with TTL expiry; handy for tests and single workers."""

    def __init__(self, clock_fn: Callable[[], float] | None = None) -> None:
        self._clock = clock_fn or time.monotonic
        self._lock = threading.Lock()
        self._values: dict[str, tuple[str, float]] = {}
        self._sets: dict[str, frozenset[str]] = {}
        self.fail_with: Exception | None = None

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise CacheUnavailableError(str(self.fail_with)) from self.fail_with

    def get(self, key: str) -> str | None:
        self._check_available()
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._values[key]
                return None
            return value

    def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        self._check_available()
        with self._lock:
            self._values[key] = (value, self._clock() + ttl_seconds)

    def members_of(self, key: str) -> set[str]:
        self._check_available()
        with self._lock:
            return set(self._sets.get(key, frozenset()))

    def add_members(self, key: str, *values: str) -> None:
        with self._lock:
            self._sets[key] = self._sets.get(key, frozenset()) | frozenset(values)

    def ttl_of(self, key: str) -> float | None:
        """Seconds until key expires, or None when absent."""
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            return entry[1] - self._clock()


def build_policy_cache(connection: object) -> PolicyCache:
    """Turn an Agent's cache_connection setting into a PolicyCache."""
    if connection is None:
        raise ConfigError("A cache connection is required to create an Agent")

    if isinstance(connection, redis.Redis):
        return RedisPolicyCache(connection)

    if isinstance(connection, PolicyCache):
        return connection

    if isinstance(connection, str):
        if not connection.startswith(("redis://", "rediss://", "unix://")):
            raise ConfigError(f"Unsupported cache connection URL: {connection}")
        return RedisPolicyCache.from_url(connection)

    if isinstance(connection, Mapping):
        return RedisPolicyCache(redis.Redis(**dict(connection)))

    raise ConfigError(f"Unsupported cache connection: {type(connection).__name__}")
