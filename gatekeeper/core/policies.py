"""Route-to-policy resolution.

A policy table is an ordered list of ``(pattern, limit, window)`` entries
plus a mandatory default. Patterns match a request path either exactly or
as a prefix. Resolution order:

1. exact match on the full path
2. the longest configured pattern that is a prefix of the path
3. the default policy

The table is built once at startup and never mutated afterwards; every
invalid entry is a ``ConfigurationAppError`` raised at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from gatekeeper.core.errors import ConfigurationAppError

DEFAULT_PATTERN = "default"

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def parse_window(window: str) -> int:
    """Convert a ``"<amount> <unit>"`` window string into seconds.

    Units are ``s``, ``m``, ``h`` and ``d``.

    Examples:
        >>> parse_window("15 m")
        900
        >>> parse_window("1 h")
        3600

    Raises:
        ConfigurationAppError: If the string is malformed or non-positive.
    """
    parts = window.split()
    if len(parts) != 2 or parts[1] not in _UNIT_SECONDS:
        raise ConfigurationAppError(
            code="invalid_window",
            message=f"Window must look like '<amount> <s|m|h|d>', got {window!r}",
            details={"window": window},
        )
    try:
        amount = int(parts[0])
    except ValueError:
        raise ConfigurationAppError(
            code="invalid_window",
            message=f"Window amount must be an integer, got {parts[0]!r}",
            details={"window": window},
        ) from None
    if amount < 1:
        raise ConfigurationAppError(
            code="invalid_window",
            message="Window amount must be >= 1",
            details={"window": window},
        )
    return amount * _UNIT_SECONDS[parts[1]]


@dataclass(frozen=True)
class Policy:
    """Maximum ``limit`` requests per ``window_seconds`` for one client key."""

    limit: int
    window_seconds: int

    @classmethod
    def from_window(cls, limit: int, window: str) -> "Policy":
        return cls(limit=limit, window_seconds=parse_window(window))


@dataclass(frozen=True)
class PolicyMatch:
    """The policy chosen for a path together with the pattern that selected it.

    ``pattern`` partitions counters: two paths resolved through the same
    pattern share one quota per client.
    """

    pattern: str
    policy: Policy


class PolicyTable:
    """Immutable mapping from route patterns to policies.

    Args:
        entries: ``(pattern, limit, window)`` tuples, window as ``"1 h"`` etc.
            The special pattern ``"default"`` supplies the catch-all policy
            and must be present exactly once.
    """

    def __init__(self, entries: Iterable[tuple[str, int, str]]) -> None:
        policies: dict[str, Policy] = {}
        default: Policy | None = None

        for pattern, limit, window in entries:
            if limit < 1:
                raise ConfigurationAppError(
                    code="invalid_limit",
                    message=f"Limit for {pattern!r} must be >= 1",
                    details={"pattern": pattern},
                )
            policy = Policy.from_window(limit, window)
            if pattern == DEFAULT_PATTERN:
                default = policy
                continue
            if not pattern.startswith("/"):
                raise ConfigurationAppError(
                    code="invalid_pattern",
                    message=f"Route pattern must start with '/', got {pattern!r}",
                    details={"pattern": pattern},
                )
            policies[pattern] = policy

        if default is None:
            raise ConfigurationAppError(
                code="missing_default_policy",
                message="Policy table must define a 'default' entry",
            )

        self._exact = policies
        self._default = default
        # Longest first so the first prefix hit is the most specific one
        self._prefixes = sorted(policies.items(), key=lambda item: len(item[0]), reverse=True)

    @property
    def default(self) -> Policy:
        return self._default

    def __len__(self) -> int:
        return len(self._exact) + 1

    def resolve(self, path: str) -> PolicyMatch:
        """Resolve the policy for a request path. Always succeeds."""
        policy = self._exact.get(path)
        if policy is not None:
            return PolicyMatch(pattern=path, policy=policy)

        for pattern, policy in self._prefixes:
            if path.startswith(pattern):
                return PolicyMatch(pattern=pattern, policy=policy)

        return PolicyMatch(pattern=DEFAULT_PATTERN, policy=self._default)


DEFAULT_POLICY_ENTRIES: tuple[tuple[str, int, str], ...] = (
    # Account creation and OTP: brute-force / SMS cost protection
    ("/api/auth/register", 5, "1 h"),
    ("/api/auth/otp/send", 5, "1 h"),
    ("/api/auth/otp/verify", 10, "15 m"),
    ("/api/user/change-password", 5, "1 h"),
    # AI-assisted content (paid upstream calls)
    ("/api/ai/parse-document", 20, "1 h"),
    ("/api/ai/classify-equipment", 30, "1 h"),
    ("/api/ai/generate-listing", 20, "1 h"),
    ("/api/ai/suggest-price", 30, "1 h"),
    # General writes
    ("/api/leads", 20, "1 h"),
    ("/api/upload", 50, "1 h"),
    ("/api/equipment", 30, "1 h"),
    ("/api/booking-requests", 20, "1 h"),
    (DEFAULT_PATTERN, 100, "1 m"),
)

default_policy_table = PolicyTable(DEFAULT_POLICY_ENTRIES)
