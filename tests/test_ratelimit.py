from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from bookstore_platform.api.server import create_app
from bookstore_platform.ratelimit import FixedWindowLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_fixed_window():
    clock = FakeClock()
    limiter = FixedWindowLimiter(max_requests=2, window_seconds=60, message="slow down", clock=clock)

    assert limiter.hit("a")
    assert limiter.hit("a")
    assert not limiter.hit("a")
    # Keys are independent.
    assert limiter.hit("b")

    clock.now += 30
    assert limiter.retry_after("a") == 30
    assert not limiter.hit("a")

    clock.now += 30
    assert limiter.hit("a")


def test_auth_endpoints_are_limited(cfg):
    limited = replace(cfg, RATE_LIMIT_ENABLED=True, RATE_LIMIT_AUTH_MAX=2)
    with TestClient(create_app(limited)) as client:
        body = {"email": "nobody@example.com", "password": "x"}
        assert client.post("/api/auth/login", json=body).status_code == 404
        assert client.post("/api/auth/login", json=body).status_code == 404
        r = client.post("/api/auth/login", json=body)
        assert r.status_code == 429
        assert r.json()["detail"] == "rate_limited"
        assert r.json()["retryAfter"] > 0
        # Public catalog reads are not behind the auth limiter.
        assert client.get("/api/books").status_code == 200
