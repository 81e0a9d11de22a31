"""Rate limit decision engine.

Wires policy resolution, client identity and the counter strategies into a
single verdict per request.

Failure semantics:
- The primary counter is chosen once at startup (distributed when store
  credentials exist, local otherwise).
- If the distributed counter fails, the same admit is retried against the
  local counter. The gatekeeper never fails open (admit everything) nor
  closed (reject everything) because of a store outage.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from gatekeeper.adapters.rate_limit.base import AbstractCounter, RateLimitResult
from gatekeeper.adapters.rate_limit.factory import create_counters
from gatekeeper.core.client_identity import build_client_key, resolve_client_ip
from gatekeeper.core.config import Settings, settings
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.logging import hash_client_key
from gatekeeper.core.policies import Policy, PolicyTable, default_policy_table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Final verdict for one request.

    Attributes:
        allowed: Whether the request may be forwarded.
        limit: Requests allowed per window for the matched policy.
        remaining: Requests left in the window.
        reset_at: UNIX epoch seconds when capacity frees up.
        retry_after: Seconds the client should wait (0 when allowed).
        pattern: Route pattern that selected the policy.
        mode: Counter that produced the verdict ("distributed" or "fallback").
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    pattern: str
    mode: str

    def quota_headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimitDecisionEngine:
    """Produce admit/reject verdicts for API requests.

    Args:
        policies: Route-to-policy table.
        primary: Counter tried first.
        fallback: Counter used when ``primary`` fails; None when the primary
            is already the local counter.
        clock: Time source used for ``retry_after``.
    """

    def __init__(
        self,
        *,
        policies: PolicyTable,
        primary: AbstractCounter,
        fallback: AbstractCounter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._policies = policies
        self._primary = primary
        self._fallback = fallback
        self._clock = clock

    @property
    def mode(self) -> str:
        return self._primary.mode

    async def _admit(self, key: str, policy: Policy) -> tuple[RateLimitResult, str]:
        try:
            return await self._primary.admit(key, policy), self._primary.mode
        except StoreUnavailableError as exc:
            if self._fallback is None:
                raise
            logger.warning(
                "rate_limit.store_unavailable",
                extra={
                    "error_code": exc.code,
                    "error_message": exc.message,
                    "details": exc.details,
                    "key_hash": hash_client_key(key),
                },
            )
        except Exception:
            if self._fallback is None:
                raise
            logger.exception(
                "rate_limit.counter_error",
                extra={"key_hash": hash_client_key(key), "counter": self._primary.mode},
            )

        return await self._fallback.admit(key, policy), self._fallback.mode

    async def decide(self, path: str, headers: Mapping[str, str]) -> RateLimitDecision:
        """Resolve policy and client key for a request and count it.

        Args:
            path: Request path (no query string).
            headers: Case-insensitive request headers.

        Returns:
            RateLimitDecision from whichever counter answered.
        """
        match = self._policies.resolve(path)
        key = build_client_key(resolve_client_ip(headers), match.pattern)

        result, mode = await self._admit(key, match.policy)
        # A rejected client is always told to wait at least one second
        retry_after = 0 if result.allowed else max(1, result.retry_after_seconds(self._clock()))

        log_extra = {
            "key_hash": hash_client_key(key),
            "pattern": match.pattern,
            "mode": mode,
            "limit": result.limit,
            "remaining": result.remaining,
            "window_s": match.policy.window_seconds,
        }
        if result.allowed:
            logger.debug("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": retry_after})

        return RateLimitDecision(
            allowed=result.allowed,
            limit=result.limit,
            remaining=result.remaining,
            reset_at=result.reset_at_epoch,
            retry_after=retry_after,
            pattern=match.pattern,
            mode=mode,
        )

    async def aclose(self) -> None:
        await self._primary.aclose()
        if self._fallback is not None:
            await self._fallback.aclose()


def build_decision_engine(
    cfg: Settings | None = None,
    policies: PolicyTable | None = None,
) -> RateLimitDecisionEngine:
    """Build an engine with counters selected from configuration."""
    primary, fallback = create_counters(cfg or settings)
    return RateLimitDecisionEngine(
        policies=policies or default_policy_table,
        primary=primary,
        fallback=fallback,
    )


_engine: RateLimitDecisionEngine | None = None


def get_decision_engine() -> RateLimitDecisionEngine:
    """Return the process-wide engine, building it on first use.

    The fallback counter's state lives inside this instance, so it must be
    shared by every request the process handles.
    """
    global _engine

    if _engine is None:
        _engine = build_decision_engine()
    return _engine
