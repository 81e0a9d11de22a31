from __future__ import annotations

"""Application factory for the gatekeeper FastAPI app.

Centralizes app construction (middleware order, handlers, routers) so tests
can build isolated apps with their own decision engine.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from gatekeeper.api.routes import health_router
from gatekeeper.core.config import Settings, settings as global_settings
from gatekeeper.core.dispatcher import GatekeeperDispatcher
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_id_middleware
from gatekeeper.core.rate_limit import RateLimitDecisionEngine, get_decision_engine


def create_app(
    engine: RateLimitDecisionEngine | None = None,
    *,
    cfg: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Downstream routers are mounted on the returned app; the gatekeeper
    middleware sits in front of all of them.

    Args:
        engine: Decision engine to use; the process-wide one when omitted.
        cfg: Settings; the global instance when omitted.

    Returns:
        Configured FastAPI app.
    """
    cfg = cfg or global_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    engine = engine or get_decision_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await engine.aclose()

    app = FastAPI(
        title="Edge Gatekeeper",
        description=(
            "Edge request gatekeeper: per-client rate limiting backed by a "
            "shared Redis counter with in-process fallback, plus country, "
            "locale and currency classification for downstream consumers."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )
    app.state.rate_limit_engine = engine

    # Added first = inner; the request id wraps the gatekeeper so its logs correlate
    app.middleware("http")(GatekeeperDispatcher(engine, cfg=cfg))
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)

    return app
