from __future__ import annotations

import pytest
from fastapi import HTTPException

from estates import rate_limit
from estates.rate_limit import RateLimiter


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch):
    c = Clock()
    monkeypatch.setattr(rate_limit.time, "monotonic", c)
    return c


def test_sliding_window(clock):
    rl = RateLimiter()
    for _ in range(3):
        rl.hit(key="k", limit=3, window_seconds=60)
    with pytest.raises(HTTPException) as exc:
        rl.hit(key="k", limit=3, window_seconds=60, detail="slow down")
    assert exc.value.status_code == 429
    assert exc.value.detail == "slow down"
    assert exc.value.headers == {"Retry-After": "60"}

    clock.now += 61
    rl.hit(key="k", limit=3, window_seconds=60)


def test_keys_are_independent(clock):
    rl = RateLimiter()
    rl.hit(key="a", limit=1, window_seconds=60)
    rl.hit(key="b", limit=1, window_seconds=60)
    with pytest.raises(HTTPException):
        rl.hit(key="a", limit=1, window_seconds=60)


def test_reset(clock):
    rl = RateLimiter()
    rl.hit(key="a", limit=1, window_seconds=60)
    rl.reset()
    rl.hit(key="a", limit=1, window_seconds=60)


def test_api_budget_is_per_client_ip(client, monkeypatch):
    monkeypatch.setattr("estates.rate_limit.rate_limit_per_minute", lambda: 1)
    assert client.get("/api/properties", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.get("/api/properties", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
    assert client.get("/api/properties", headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"}).status_code == 200
    # HTML pages are not rate limited.
    assert client.get("/", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
