"""Unit tests for the Redis sliding-window counter."""

import asyncio
import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from gatekeeper.adapters.rate_limit.redis_counter import RedisSlidingWindowCounter
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.policies import Policy


@pytest.fixture
def counter(fake_redis, clock) -> RedisSlidingWindowCounter:
    return RedisSlidingWindowCounter(fake_redis, key_prefix="test", timeout_seconds=1.0, clock=clock)


@pytest.mark.asyncio
async def test_admits_limit_then_denies(counter) -> None:
    policy = Policy(limit=3, window_seconds=60)

    results = [await counter.admit("k", policy) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, True]
    assert [r.remaining for r in results] == [2, 1, 0]

    denied = await counter.admit("k", policy)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.limit == 3


@pytest.mark.asyncio
async def test_denied_requests_do_not_consume_quota(counter, fake_redis) -> None:
    policy = Policy(limit=2, window_seconds=60)

    for _ in range(5):
        await counter.admit("k", policy)

    assert len(fake_redis.sorted_sets["test:k"]) == 2


@pytest.mark.asyncio
async def test_window_slides_instead_of_resetting(counter, clock) -> None:
    policy = Policy(limit=2, window_seconds=10)

    assert (await counter.admit("k", policy)).allowed is True  # t=0
    clock.advance(5)
    assert (await counter.admit("k", policy)).allowed is True  # t=5
    clock.advance(4)
    assert (await counter.admit("k", policy)).allowed is False  # t=9

    # First request leaves the window, only one slot frees up
    clock.advance(1.001)
    assert (await counter.admit("k", policy)).allowed is True
    clock.advance(0.5)
    assert (await counter.admit("k", policy)).allowed is False


@pytest.mark.asyncio
async def test_reset_at_tracks_oldest_request(counter, clock) -> None:
    policy = Policy(limit=1, window_seconds=30)
    start = clock.now

    await counter.admit("k", policy)
    clock.advance(12)
    denied = await counter.admit("k", policy)

    assert denied.reset_at == pytest.approx(start + 30)
    assert denied.retry_after_seconds(clock.now) == 18


@pytest.mark.asyncio
async def test_keys_do_not_share_quota(counter) -> None:
    policy = Policy(limit=1, window_seconds=60)

    assert (await counter.admit("1.1.1.1#/api/leads", policy)).allowed is True
    assert (await counter.admit("1.1.1.1#/api/leads", policy)).allowed is False
    assert (await counter.admit("2.2.2.2#/api/leads", policy)).allowed is True
    assert (await counter.admit("1.1.1.1#/api/upload", policy)).allowed is True


@pytest.mark.asyncio
async def test_key_expiry_follows_window(counter, fake_redis, clock) -> None:
    await counter.admit("k", Policy(limit=5, window_seconds=90))

    assert fake_redis.expire_at_ms["test:k"] == pytest.approx(clock.now * 1000 + 90_000)


@pytest.mark.asyncio
async def test_transport_failure_raises_store_unavailable(broken_redis, clock) -> None:
    counter = RedisSlidingWindowCounter(broken_redis, clock=clock)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await counter.admit("k", Policy(limit=1, window_seconds=60))

    assert exc_info.value.code == "store_error"
    assert exc_info.value.details["error_type"] == "ConnectionError"


@pytest.mark.asyncio
async def test_store_error_reply_raises_store_unavailable(fake_redis, clock) -> None:
    fake_redis.fail_with = ResponseError("NOAUTH Authentication required")
    counter = RedisSlidingWindowCounter(fake_redis, clock=clock)

    with pytest.raises(StoreUnavailableError):
        await counter.admit("k", Policy(limit=1, window_seconds=60))


@pytest.mark.asyncio
async def test_slow_store_times_out(fake_redis, clock) -> None:
    fake_redis.execute_delay = 0.5
    counter = RedisSlidingWindowCounter(fake_redis, timeout_seconds=0.05, clock=clock)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await counter.admit("k", Policy(limit=1, window_seconds=60))

    assert exc_info.value.code == "store_timeout"


@pytest.mark.asyncio
async def test_aclose_closes_client(counter, fake_redis) -> None:
    await counter.aclose()

    assert fake_redis.closed is True


def test_rejects_non_positive_timeout(fake_redis) -> None:
    with pytest.raises(ValueError):
        RedisSlidingWindowCounter(fake_redis, timeout_seconds=0)


@pytest.mark.asyncio
async def test_concurrent_requests_never_overshoot_limit(counter, fake_redis) -> None:
    fake_redis.execute_delay = 0.01
    policy = Policy(limit=3, window_seconds=60)

    results = await asyncio.gather(*(counter.admit("k", policy) for _ in range(8)))

    assert sum(r.allowed for r in results) == 3
    assert len(fake_redis.sorted_sets["test:k"]) == 3


@pytest.mark.asyncio
async def test_denial_stands_when_cleanup_fails(counter, fake_redis, caplog) -> None:
    policy = Policy(limit=2, window_seconds=60)
    for _ in range(2):
        await counter.admit("k", policy)

    fake_redis.zrem_fail_with = RedisConnectionError("connection reset")
    with caplog.at_level(logging.WARNING):
        denied = await counter.admit("k", policy)

    assert denied.allowed is False
    assert denied.remaining == 0
    assert any(r.message == "rate_limit.cleanup_failed" for r in caplog.records)
