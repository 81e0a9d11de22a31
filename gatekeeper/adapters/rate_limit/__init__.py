"""Rate limit counter adapters.

Two strategies share one interface: a Redis sliding-window counter shared
across instances, and a per-process fixed-window counter used when the
store is unconfigured or failing.
"""

from gatekeeper.adapters.rate_limit.base import AbstractCounter, RateLimitResult
from gatekeeper.adapters.rate_limit.in_memory import InMemoryWindowStore, LocalFallbackCounter
from gatekeeper.adapters.rate_limit.redis_counter import RedisSlidingWindowCounter

__all__ = [
    "AbstractCounter",
    "InMemoryWindowStore",
    "LocalFallbackCounter",
    "RateLimitResult",
    "RedisSlidingWindowCounter",
]
