"""Client identity derivation for rate limiting.

The client address comes from proxy headers, first non-empty wins:

1. first entry of ``X-Forwarded-For``
2. ``X-Real-IP``
3. first entry of ``X-Vercel-Forwarded-For``
4. loopback placeholder (local/dev execution)

These headers are client-controlled and therefore spoofable; header-based
attribution is an accepted limitation of edge rate limiting.
"""

from __future__ import annotations

from typing import Mapping

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"
PLATFORM_FORWARDED_HEADER = "x-vercel-forwarded-for"

LOOPBACK_PLACEHOLDER = "127.0.0.1"

# Cannot occur in a URL path (fragment marker) nor in an IPv4/IPv6 address
KEY_DELIMITER = "#"


def _first_in_chain(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """Derive the client address from request headers.

    Args:
        headers: Case-insensitive request headers (e.g. Starlette ``Headers``).

    Returns:
        str: The resolved address, never empty.
    """
    forwarded = _first_in_chain(headers.get(FORWARDED_FOR_HEADER))
    if forwarded:
        return forwarded

    real_ip = (headers.get(REAL_IP_HEADER) or "").strip()
    if real_ip:
        return real_ip

    platform = _first_in_chain(headers.get(PLATFORM_FORWARDED_HEADER))
    if platform:
        return platform

    return LOOPBACK_PLACEHOLDER


def build_client_key(client_ip: str, pattern: str) -> str:
    """Combine a client address and a matched route pattern into a counter key.

    The same client hitting routes resolved through different patterns gets
    independent quotas.
    """
    return f"{client_ip}{KEY_DELIMITER}{pattern}"
