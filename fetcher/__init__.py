"""Fetcher subsystem: robots rules, policy cache, pooled request state machine."""

from fetcher.agent import Agent
from fetcher.cache import InMemoryPolicyCache, PolicyCache, RedisPolicyCache, build_policy_cache
from fetcher.logging import emit_event, emit_fetch_log
from fetcher.pool import ConnectionPool
from fetcher.request import Request, RequestState
from fetcher.robots import (
    PathRule,
    RuleSet,
    check_path,
    check_path_from_serialized,
    parse,
    serialize_rules,
)

__all__ = [
    "Agent",
    "InMemoryPolicyCache",
    "PolicyCache",
    "RedisPolicyCache",
    "build_policy_cache",
    "emit_event",
    "emit_fetch_log",
    "ConnectionPool",
    "Request",
    "RequestState",
    "PathRule",
    "RuleSet",
    "check_path",
    "check_path_from_serialized",
    "parse",
    "serialize_rules",
]
