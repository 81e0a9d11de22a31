"""Gatekeeper HTTP middleware.

Runs in front of every route and walks a single request through:

1. static asset → forwarded untouched (no geo, no rate limit)
2. page route → geo/locale headers, locale cookie, cache hints
3. ``/api/cron`` → forwarded untouched (cron jobs authenticate themselves)
4. ``/api/auth/*`` callbacks → forwarded untouched, except registration and
   OTP endpoints which stay rate limited
5. any other API route → decision engine; 429 on rejection, otherwise the
   downstream response gains quota and country/locale headers

Usage:
    app.middleware("http")(GatekeeperDispatcher(engine))
"""

from __future__ import annotations

import re

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from gatekeeper.core.config import Settings, settings as global_settings
from gatekeeper.core.geo import GeoContext, resolve_geo_context
from gatekeeper.core.rate_limit import RateLimitDecision, RateLimitDecisionEngine

STATIC_PREFIXES = ("/_next/", "/static/")
STATIC_EXTENSION_RE = re.compile(
    r"\.(ico|png|jpg|jpeg|gif|webp|avif|svg|woff|woff2|ttf|eot|css|js)$",
    re.IGNORECASE,
)

CACHEABLE_PATHS = frozenset({"/", "/search"})
CACHEABLE_PREFIXES = ("/equipment/",)
REGIONAL_EDGE_HINT = "me-south-1"

RATE_LIMIT_ERROR = "Too many requests"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def is_static_asset(path: str) -> bool:
    return path.startswith(STATIC_PREFIXES) or bool(STATIC_EXTENSION_RE.search(path))


def is_api_route(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


def is_rate_limit_exempt(path: str) -> bool:
    """Cron routes and auth callbacks skip per-client limiting."""
    if path.startswith("/api/cron"):
        return True
    return path.startswith("/api/auth/") and "register" not in path and "otp" not in path


def is_cacheable_page(path: str) -> bool:
    return path in CACHEABLE_PATHS or path.startswith(CACHEABLE_PREFIXES)


def build_rejection_response(decision: RateLimitDecision, geo: GeoContext) -> JSONResponse:
    """Structured 429 with quota and backoff headers."""
    headers = {
        **decision.quota_headers(),
        **geo.as_headers(full=False),
        "Retry-After": str(decision.retry_after),
    }
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": RATE_LIMIT_ERROR,
            "message": RATE_LIMIT_MESSAGE,
            "retryAfter": decision.retry_after,
        },
        headers=headers,
    )


class GatekeeperDispatcher:
    """Per-request entry point classifying traffic and enforcing limits.

    Args:
        engine: Decision engine shared by all requests of this process.
        cfg: Settings; the global instance when omitted.
    """

    def __init__(self, engine: RateLimitDecisionEngine, *, cfg: Settings | None = None) -> None:
        self._engine = engine
        self._settings = cfg or global_settings

    @property
    def engine(self) -> RateLimitDecisionEngine:
        return self._engine

    def _geo(self, request: Request) -> GeoContext:
        cookie_locale = request.cookies.get(self._settings.app.locale_cookie_name)
        return resolve_geo_context(request.headers, cookie_locale)

    async def _handle_page(self, request: Request, call_next) -> Response:
        geo = self._geo(request)
        response: Response = await call_next(request)
        response.headers.update(geo.as_headers())

        cookie_name = self._settings.app.locale_cookie_name
        if request.cookies.get(cookie_name) != geo.locale:
            response.set_cookie(
                cookie_name,
                geo.locale,
                max_age=self._settings.app.locale_cookie_max_age_seconds,
                path="/",
                samesite="lax",
            )

        if is_cacheable_page(request.url.path):
            response.headers["X-Edge-Cache-Tag"] = f"locale:{geo.locale},country:{geo.country}"
            if geo.is_regional:
                response.headers["X-Edge-Region"] = REGIONAL_EDGE_HINT

        return response

    async def _handle_api(self, request: Request, call_next) -> Response:
        geo = self._geo(request)

        if not self._settings.app.rate_limit_enabled:
            response: Response = await call_next(request)
            response.headers.update(geo.as_headers(full=False))
            return response

        decision = await self._engine.decide(request.url.path, request.headers)
        if not decision.allowed:
            return build_rejection_response(decision, geo)

        response = await call_next(request)
        response.headers.update(decision.quota_headers())
        response.headers.update(geo.as_headers(full=False))
        return response

    async def __call__(self, request: Request, call_next) -> Response:
        path = request.url.path

        if is_static_asset(path):
            return await call_next(request)

        if not is_api_route(path):
            return await self._handle_page(request, call_next)

        if is_rate_limit_exempt(path):
            return await call_next(request)

        return await self._handle_api(request, call_next)
