from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. Also reports which
    counter currently backs rate limiting: ``distributed`` when the shared
    store is configured, ``fallback`` for per-process counting.

    Returns:
        dict: ``status`` and ``rate_limit_mode``.
    """

    mode = request.app.state.rate_limit_engine.mode
    return {"status": "ok", "rate_limit_mode": mode}
