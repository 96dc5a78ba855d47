from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from threading import Lock

from fastapi import HTTPException, Request

from estates.config import rate_limit_per_minute


class RateLimiter:
    """
    Very small in-memory rate limiter (per-process).

    Production note: for multi-instance deployments, replace with Redis-based limits.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: dict[str, deque[float]] = defaultdict(deque)

    def hit(self, *, key: str, limit: int, window_seconds: int, detail: str = "Too many requests") -> None:
        now = time.monotonic()
        win_start = now - float(window_seconds)
        with self._lock:
            q = self._events[key]
            while q and q[0] < win_start:
                q.popleft()
            if len(q) >= int(limit):
                retry_after = max(1, math.ceil(q[0] - win_start))
                raise HTTPException(status_code=429, detail=detail, headers={"Retry-After": str(retry_after)})
            q.append(now)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


limiter = RateLimiter()


def client_ip(request: Request) -> str:
    # Behind a proxy (Render etc.) the first X-Forwarded-For hop is the client.
    fwd = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if fwd:
        return fwd
    return request.client.host if request.client else "unknown"


def public_rate_limit(request: Request) -> None:
    """Shared budget for /api/* and /enquiry, per client IP."""
    limiter.hit(
        key=f"public:{client_ip(request)}",
        limit=rate_limit_per_minute(),
        window_seconds=60,
        detail="Too many requests, please try again later.",
    )
