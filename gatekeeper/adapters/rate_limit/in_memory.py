"""In-memory fixed-window counter used when the shared store is unavailable.

Notes:
- Per-process only: with N active instances the effective ceiling is
  ``limit * N``. This is the accepted cost of degraded mode.
- Fixed window: a client can burst up to twice the limit by straddling a
  window reset.
- Thread-safe: one lock serializes every read-modify-write on the store.
- Expired entries are dropped lazily on access and by a probabilistic sweep,
  so no background scheduler is needed.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.rate_limit.base import AbstractCounter, RateLimitResult
from gatekeeper.core.logging import hash_client_key
from gatekeeper.core.policies import Policy

logger = logging.getLogger(__name__)


@dataclass
class WindowEntry:
    count: int
    reset_at: float


class InMemoryWindowStore:
    """Owned mapping from client key to its current fixed window."""

    def __init__(self) -> None:
        self._entries: dict[str, WindowEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> WindowEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: WindowEntry) -> None:
        self._entries[key] = entry

    def sweep(self, now: float) -> int:
        """Remove every entry whose window has ended. Returns the number removed."""
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)


class LocalFallbackCounter(AbstractCounter):
    """Fixed-window counter held in process memory.

    Args:
        store: Entry store; a fresh one is created when omitted.
        clock: Time source returning UNIX time in seconds.
        sweep_probability: Chance per admit of sweeping expired entries.
        rng: Source of uniform floats in ``[0, 1)`` for the sweep decision.
    """

    mode = "fallback"

    def __init__(
        self,
        *,
        store: InMemoryWindowStore | None = None,
        clock: Callable[[], float] = time.time,
        sweep_probability: float = 0.01,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not 0 <= sweep_probability <= 1:
            raise ValueError("sweep_probability must be within [0, 1]")

        self._store = store if store is not None else InMemoryWindowStore()
        self._clock = clock
        self._sweep_probability = sweep_probability
        self._rng = rng
        self._lock = threading.RLock()

    @property
    def store(self) -> InMemoryWindowStore:
        return self._store

    def sweep(self) -> int:
        with self._lock:
            removed = self._store.sweep(self._clock())
        if removed:
            logger.debug("rate_limit.fallback_sweep", extra={"removed": removed})
        return removed

    def consume(self, key: str, policy: Policy) -> RateLimitResult:
        """Synchronously count one request for ``key`` under ``policy``.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        if self._sweep_probability and self._rng() < self._sweep_probability:
            self.sweep()

        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.reset_at <= now:
                entry = WindowEntry(count=0, reset_at=now + policy.window_seconds)
            # Stop counting once over the limit; the window is already exhausted
            entry.count = min(entry.count + 1, policy.limit + 1)
            self._store.set(key, entry)
            count, reset_at = entry.count, entry.reset_at

        allowed = count <= policy.limit
        if not allowed:
            logger.debug(
                "rate_limit.fallback_blocked",
                extra={"key_hash": hash_client_key(key), "count": count},
            )
        return RateLimitResult(
            allowed=allowed,
            limit=policy.limit,
            remaining=max(0, policy.limit - count),
            reset_at=reset_at,
        )

    async def admit(self, key: str, policy: Policy) -> RateLimitResult:
        return self.consume(key, policy)
