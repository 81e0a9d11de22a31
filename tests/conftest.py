"""Pytest configuration and fixtures shared across all test modules.

Environment is pinned before any gatekeeper import so the global settings
never pick up real store credentials: tests run in fallback-only mode unless
they build a distributed counter explicitly around ``FakeRedis``.
"""

import asyncio
import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_TOKEN", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers sorted-set commands and applies them back to back on execute."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._commands.clear()

    def zremrangebyscore(self, key, min_score, max_score) -> "FakePipeline":
        self._commands.append(("zremrangebyscore", (key, min_score, max_score)))
        return self

    def zadd(self, key, mapping) -> "FakePipeline":
        self._commands.append(("zadd", (key, mapping)))
        return self

    def zcard(self, key) -> "FakePipeline":
        self._commands.append(("zcard", (key,)))
        return self

    def zrange(self, key, start, end, withscores=False) -> "FakePipeline":
        self._commands.append(("zrange", (key, start, end, withscores)))
        return self

    def pexpire(self, key, milliseconds) -> "FakePipeline":
        self._commands.append(("pexpire", (key, milliseconds)))
        return self

    async def execute(self) -> list:
        if self._redis.execute_delay:
            await asyncio.sleep(self._redis.execute_delay)
        if self._redis.fail_with is not None:
            raise self._redis.fail_with
        return [getattr(self._redis, f"_{name}")(*args) for name, args in self._commands]


class FakeRedis:
    """Minimal in-process stand-in for the sorted-set commands the counter uses."""

    def __init__(self, clock=None) -> None:
        self._clock = clock
        self.sorted_sets: dict[str, dict[str, float]] = {}
        self.expire_at_ms: dict[str, float] = {}
        self.fail_with: Exception | None = None
        self.execute_delay: float = 0.0
        self.zrem_fail_with: Exception | None = None
        self.closed = False

    def _now_ms(self) -> float:
        return self._clock() * 1000 if self._clock else 0.0

    def _live(self, key: str) -> dict[str, float]:
        deadline = self.expire_at_ms.get(key)
        if deadline is not None and self._now_ms() >= deadline:
            self.sorted_sets.pop(key, None)
            self.expire_at_ms.pop(key, None)
        return self.sorted_sets.setdefault(key, {})

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def _zremrangebyscore(self, key, min_score, max_score) -> int:
        members = self._live(key)
        low, high = float(min_score), float(max_score)
        doomed = [m for m, score in members.items() if low <= score <= high]
        for member in doomed:
            del members[member]
        return len(doomed)

    def _zadd(self, key, mapping) -> int:
        members = self._live(key)
        added = sum(1 for m in mapping if m not in members)
        members.update({m: float(s) for m, s in mapping.items()})
        return added

    def _zcard(self, key) -> int:
        return len(self._live(key))

    def _zrange(self, key, start, end, withscores):
        ordered = sorted(self._live(key).items(), key=lambda item: item[1])
        stop = None if end == -1 else end + 1
        window = ordered[start:stop]
        return window if withscores else [m for m, _ in window]

    def _pexpire(self, key, milliseconds) -> bool:
        self.expire_at_ms[key] = self._now_ms() + milliseconds
        return True

    async def zrem(self, key, *members) -> int:
        if self.zrem_fail_with is not None:
            raise self.zrem_fail_with
        live = self._live(key)
        return sum(1 for m in members if live.pop(m, None) is not None)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def broken_redis(clock: FakeClock) -> FakeRedis:
    redis = FakeRedis(clock)
    redis.fail_with = RedisConnectionError("connection refused")
    return redis
