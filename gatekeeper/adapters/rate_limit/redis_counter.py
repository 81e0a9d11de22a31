"""Redis-backed sliding-window counter shared by every gatekeeper instance.

Each client key owns one sorted set whose members are admitted requests
scored by their arrival time in milliseconds. One admit runs a MULTI/EXEC
transaction that:

1. drops members older than the window
2. adds the current request
3. reads the set size and the oldest remaining member
4. refreshes the key's expiry to the window length

If the size exceeds the limit the request is denied and its member removed
again, so rejected attempts never consume quota. Because the transaction is
atomic, two concurrent requests competing for the last slot cannot both see
a count within the limit.

Any transport error, store error or timeout while recording the request
surfaces as ``StoreUnavailableError`` so the caller can fall back. Once the
verdict is known it stands: a failed removal of a rejected member is only
logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gatekeeper.adapters.rate_limit.base import AbstractCounter, RateLimitResult
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.logging import hash_client_key
from gatekeeper.core.policies import Policy

logger = logging.getLogger(__name__)


class RedisSlidingWindowCounter(AbstractCounter):
    """Sliding-window log counter stored in Redis sorted sets.

    Args:
        client: Async Redis client (``decode_responses=True`` expected).
        key_prefix: Namespace for all counter keys.
        timeout_seconds: Upper bound for one admit, including the round trip.
        clock: Time source returning UNIX time in seconds.
    """

    mode = "distributed"

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "gatekeeper:ratelimit",
        timeout_seconds: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._client = client
        self._key_prefix = key_prefix
        self._timeout = timeout_seconds
        self._clock = clock

    def _store_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def _record(self, store_key: str, member: str, now_ms: int, window_ms: int) -> tuple[int, list]:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(store_key, "-inf", now_ms - window_ms)
            pipe.zadd(store_key, {member: now_ms})
            pipe.zcard(store_key)
            pipe.zrange(store_key, 0, 0, withscores=True)
            pipe.pexpire(store_key, window_ms)
            _, _, count, oldest, _ = await pipe.execute()
        return count, oldest

    async def _discard(self, key: str, store_key: str, member: str) -> None:
        """Remove a rejected member; the verdict stands even if this fails."""
        try:
            await asyncio.wait_for(self._client.zrem(store_key, member), timeout=self._timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            logger.warning(
                "rate_limit.cleanup_failed",
                extra={"key_hash": hash_client_key(key), "error_type": type(exc).__name__},
            )

    async def admit(self, key: str, policy: Policy) -> RateLimitResult:
        """Count one request within the sliding window.

        Raises:
            StoreUnavailableError: On timeout or any Redis/transport failure
                while recording the request.
        """
        store_key = self._store_key(key)
        window_ms = policy.window_seconds * 1000
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"

        try:
            count, oldest = await asyncio.wait_for(
                self._record(store_key, member, now_ms, window_ms), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                code="store_timeout",
                message="Shared counter store did not answer in time",
                details={"backend": "redis", "timeout_s": self._timeout},
            ) from exc
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(
                code="store_error",
                message="Shared counter store request failed",
                details={"backend": "redis", "error_type": type(exc).__name__},
            ) from exc

        oldest_ms = float(oldest[0][1]) if oldest else float(now_ms)
        reset_at = (oldest_ms + window_ms) / 1000

        if count > policy.limit:
            await self._discard(key, store_key, member)
            return RateLimitResult(
                allowed=False,
                limit=policy.limit,
                remaining=0,
                reset_at=reset_at,
            )

        return RateLimitResult(
            allowed=True,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            reset_at=reset_at,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
