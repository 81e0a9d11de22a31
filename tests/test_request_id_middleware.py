from __future__ import annotations

from fastapi.testclient import TestClient

from gatekeeper.adapters.rate_limit.in_memory import LocalFallbackCounter
from gatekeeper.core.app_factory import create_app
from gatekeeper.core.policies import default_policy_table
from gatekeeper.core.rate_limit import RateLimitDecisionEngine


client = TestClient(
    create_app(
        RateLimitDecisionEngine(
            policies=default_policy_table,
            primary=LocalFallbackCounter(sweep_probability=0),
        )
    )
)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_rejections_carry_request_id():
    app = create_app(
        RateLimitDecisionEngine(
            policies=default_policy_table,
            primary=LocalFallbackCounter(sweep_probability=0),
        )
    )
    local_client = TestClient(app)

    responses = [
        local_client.post("/api/auth/register", headers={"X-Request-ID": f"req-{i}"}) for i in range(6)
    ]

    assert responses[-1].status_code == 429
    assert responses[-1].headers["X-Request-ID"] == "req-5"
