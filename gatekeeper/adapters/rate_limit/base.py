"""Counter interfaces.

The decision engine depends on this abstraction only, so the shared-store
counter and the per-process fallback are interchangeable strategies.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from gatekeeper.core.policies import Policy


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a single admit operation.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when blocked).
        reset_at: UNIX epoch seconds (float) when capacity frees up again.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    @property
    def reset_at_epoch(self) -> int:
        """``reset_at`` rounded up to whole seconds, as sent in headers."""
        return int(math.ceil(self.reset_at))

    def retry_after_seconds(self, now: float) -> int:
        """Whole seconds until ``reset_at``, floored at zero."""
        return max(0, int(math.ceil(self.reset_at - now)))


class AbstractCounter(ABC):
    """Interface for rate limit counters."""

    #: Short label used in logs and the health endpoint
    mode: str = "unknown"

    @abstractmethod
    async def admit(self, key: str, policy: Policy) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Client key (client address combined with matched pattern).
            policy: Limit and window to enforce.

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any held connections. No-op by default."""
