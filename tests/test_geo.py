"""Unit tests for geo and locale resolution."""

import pytest
from starlette.datastructures import Headers

from gatekeeper.core.geo import (
    DEFAULT_COUNTRY,
    parse_accept_language,
    resolve_geo_context,
    resolve_locale,
)


class TestParseAcceptLanguage:
    def test_orders_by_quality(self) -> None:
        assert parse_accept_language("fr;q=0.5,ar;q=0.9,en;q=0.8") == ["ar", "en", "fr"]

    def test_missing_quality_defaults_to_one(self) -> None:
        assert parse_accept_language("en-US,ar;q=0.9") == ["en", "ar"]

    def test_ties_keep_header_order(self) -> None:
        assert parse_accept_language("de,en,ar") == ["de", "en", "ar"]

    def test_malformed_and_zero_quality_dropped(self) -> None:
        assert parse_accept_language("ar;q=abc, en;q=0, fr;q=0.3") == ["fr"]

    def test_non_finite_quality_dropped(self) -> None:
        assert parse_accept_language("ar;q=nan, en;q=0.5, fr;q=inf, de;q=-inf") == ["en"]

    def test_quality_above_one_clamped(self) -> None:
        assert parse_accept_language("en, ar;q=7") == ["en", "ar"]

    def test_garbage_does_not_raise(self) -> None:
        assert parse_accept_language(",,;;,") == []


class TestResolveLocale:
    def test_highest_supported_quality_wins(self) -> None:
        locale = resolve_locale(
            cookie_locale=None,
            accept_language="fr;q=0.5,ar;q=0.9,en;q=0.8",
            country=DEFAULT_COUNTRY,
        )
        assert locale == "ar"

    def test_country_default_without_signals(self) -> None:
        assert resolve_locale(cookie_locale=None, accept_language=None, country="SA") == "ar"
        assert resolve_locale(cookie_locale=None, accept_language=None, country="US") == "en"

    def test_cookie_takes_precedence(self) -> None:
        locale = resolve_locale(cookie_locale="en", accept_language="ar", country="SA")
        assert locale == "en"

    def test_unsupported_cookie_ignored(self) -> None:
        locale = resolve_locale(cookie_locale="fr", accept_language="ar", country="US")
        assert locale == "ar"

    def test_unsupported_languages_fall_back_to_country(self) -> None:
        locale = resolve_locale(cookie_locale=None, accept_language="fr,de;q=0.8", country="BH")
        assert locale == "ar"


class TestResolveGeoContext:
    def test_defaults_without_headers(self) -> None:
        geo = resolve_geo_context(Headers({}))

        assert geo.country == DEFAULT_COUNTRY
        assert geo.locale == "en"
        assert geo.currency == "SAR"
        assert geo.timezone == "Asia/Riyadh"
        assert geo.city is None
        assert geo.region is None
        assert geo.is_regional is False

    def test_bahrain_profile(self) -> None:
        geo = resolve_geo_context(
            Headers(
                {
                    "x-vercel-ip-country": "BH",
                    "x-vercel-ip-city": "Manama",
                    "x-vercel-ip-country-region": "13",
                }
            )
        )

        assert geo.country == "BH"
        assert geo.locale == "ar"
        assert geo.currency == "BHD"
        assert geo.timezone == "Asia/Bahrain"
        assert geo.city == "Manama"
        assert geo.region == "13"
        assert geo.is_regional is True

    @pytest.mark.parametrize(("country", "regional"), [("AE", True), ("EG", True), ("US", False)])
    def test_regional_classification(self, country: str, regional: bool) -> None:
        geo = resolve_geo_context(Headers({"x-vercel-ip-country": country}))

        assert geo.is_regional is regional
        assert geo.currency == "SAR"

    def test_cookie_locale_used(self) -> None:
        geo = resolve_geo_context(Headers({"x-vercel-ip-country": "SA"}), cookie_locale="en")
        assert geo.locale == "en"

    def test_headers_rendering(self) -> None:
        geo = resolve_geo_context(Headers({"x-vercel-ip-country": "SA", "x-vercel-ip-city": "Riyadh"}))

        assert geo.as_headers(full=False) == {"X-User-Country": "SA", "X-User-Locale": "ar"}
        full = geo.as_headers()
        assert full["X-User-Currency"] == "SAR"
        assert full["X-User-Timezone"] == "Asia/Riyadh"
        assert full["X-User-City"] == "Riyadh"
        assert "X-User-Region" not in full
