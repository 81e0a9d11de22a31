"""Factory for the counter strategies used by the decision engine."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from gatekeeper.adapters.rate_limit.base import AbstractCounter
from gatekeeper.adapters.rate_limit.in_memory import LocalFallbackCounter
from gatekeeper.adapters.rate_limit.redis_counter import RedisSlidingWindowCounter
from gatekeeper.core.config import Settings, settings as global_settings

logger = logging.getLogger(__name__)


def create_redis_client(cfg: Settings) -> Redis:
    """Build an async Redis client from store settings.

    Socket timeouts match the admit timeout so a dead store cannot hold a
    connection open longer than one request is allowed to wait.
    """
    store = cfg.store
    return Redis.from_url(
        store.url,
        password=store.token,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=store.timeout_seconds,
        socket_connect_timeout=store.timeout_seconds,
    )


def create_counters(
    cfg: Settings | None = None,
) -> tuple[AbstractCounter, LocalFallbackCounter | None]:
    """Select the counter strategy once, based on configuration presence.

    Returns:
        ``(primary, fallback)``. With store credentials the primary is the
        Redis sliding-window counter and the fallback the local counter.
        Without them the local counter is primary and there is no fallback.
    """
    cfg = cfg or global_settings
    local = LocalFallbackCounter(sweep_probability=cfg.app.fallback_sweep_probability)

    if not cfg.store.configured:
        logger.info("rate_limit.mode_selected", extra={"mode": local.mode})
        return local, None

    distributed = RedisSlidingWindowCounter(
        create_redis_client(cfg),
        key_prefix=cfg.store.key_prefix,
        timeout_seconds=cfg.store.timeout_seconds,
    )
    logger.info("rate_limit.mode_selected", extra={"mode": distributed.mode})
    return distributed, local
