"""Geographic and locale context for incoming requests.

Signals come from the edge platform's geo headers, ``Accept-Language`` and
the locale cookie. Every branch has a terminal default, so resolution never
fails; the output is response metadata only and never changes rate limit
decisions.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping

COUNTRY_HEADER = "x-vercel-ip-country"
CITY_HEADER = "x-vercel-ip-city"
REGION_HEADER = "x-vercel-ip-country-region"

DEFAULT_COUNTRY = "DEFAULT"

SUPPORTED_LOCALES: tuple[str, ...] = ("ar", "en")


@dataclass(frozen=True)
class CountryProfile:
    currency: str
    locale: str
    timezone: str


COUNTRY_PROFILES: dict[str, CountryProfile] = {
    "SA": CountryProfile(currency="SAR", locale="ar", timezone="Asia/Riyadh"),
    "BH": CountryProfile(currency="BHD", locale="ar", timezone="Asia/Bahrain"),
    DEFAULT_COUNTRY: CountryProfile(currency="SAR", locale="en", timezone="Asia/Riyadh"),
}

# Middle East countries served from the regional edge
REGIONAL_COUNTRIES = frozenset({"SA", "BH", "AE", "KW", "QA", "OM", "JO", "EG", "LB"})


@dataclass(frozen=True)
class GeoContext:
    """Display context derived for a single request."""

    country: str
    locale: str
    currency: str
    timezone: str
    city: str | None = None
    region: str | None = None
    is_regional: bool = False

    def as_headers(self, *, full: bool = True) -> dict[str, str]:
        """Render as ``X-User-*`` headers.

        API responses only carry country and locale (``full=False``).
        """
        headers = {
            "X-User-Country": self.country,
            "X-User-Locale": self.locale,
        }
        if not full:
            return headers

        headers["X-User-Currency"] = self.currency
        headers["X-User-Timezone"] = self.timezone
        if self.city:
            headers["X-User-City"] = self.city
        if self.region:
            headers["X-User-Region"] = self.region
        return headers


def country_profile(country: str) -> CountryProfile:
    return COUNTRY_PROFILES.get(country, COUNTRY_PROFILES[DEFAULT_COUNTRY])


def _parse_quality(params: list[str]) -> float:
    for param in params:
        name, _, value = param.strip().partition("=")
        if name.strip().lower() != "q":
            continue
        try:
            quality = float(value)
        except ValueError:
            return 0.0
        # nan/inf would break the sort; treat them as malformed
        if not math.isfinite(quality):
            return 0.0
        return min(quality, 1.0)
    return 1.0


def parse_accept_language(header: str) -> list[str]:
    """Return primary language subtags ordered by descending quality.

    Entries without ``q`` weigh 1.0 and values above 1 are clamped. Malformed,
    non-finite or zero quality values are dropped. Ties keep header order.

    Example:
        >>> parse_accept_language("fr;q=0.5,ar;q=0.9,en;q=0.8")
        ['ar', 'en', 'fr']
    """
    weighted: list[tuple[float, str]] = []
    for entry in header.split(","):
        tag, *params = entry.strip().split(";")
        code = tag.strip().split("-")[0].lower()
        if not code:
            continue
        quality = _parse_quality(params)
        if quality <= 0:
            continue
        weighted.append((quality, code))

    weighted.sort(key=lambda item: item[0], reverse=True)
    return [code for _, code in weighted]


def resolve_locale(
    *,
    cookie_locale: str | None,
    accept_language: str | None,
    country: str,
) -> str:
    """Pick a supported locale: cookie, then ``Accept-Language``, then country default."""
    if cookie_locale in SUPPORTED_LOCALES:
        return cookie_locale

    if accept_language:
        for code in parse_accept_language(accept_language):
            if code in SUPPORTED_LOCALES:
                return code

    return country_profile(country).locale


def resolve_geo_context(headers: Mapping[str, str], cookie_locale: str | None = None) -> GeoContext:
    """Build the request's :class:`GeoContext` from headers and the locale cookie."""
    country = (headers.get(COUNTRY_HEADER) or "").strip().upper() or DEFAULT_COUNTRY
    profile = country_profile(country)
    locale = resolve_locale(
        cookie_locale=cookie_locale,
        accept_language=headers.get("accept-language"),
        country=country,
    )
    return GeoContext(
        country=country,
        locale=locale,
        currency=profile.currency,
        timezone=profile.timezone,
        city=headers.get(CITY_HEADER) or None,
        region=headers.get(REGION_HEADER) or None,
        is_regional=country in REGIONAL_COUNTRIES,
    )
