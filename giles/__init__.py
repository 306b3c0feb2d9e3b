"""Giles: policy-enforcing crawl client."""

from core.errors import GilesError
from core.models import AgentOptions, FetchResult
from fetcher import Agent, InMemoryPolicyCache, RedisPolicyCache

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentOptions",
    "FetchResult",
    "GilesError",
    "InMemoryPolicyCache",
    "RedisPolicyCache",
    "__version__",
]
