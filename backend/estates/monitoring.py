from __future__ import annotations

import datetime as dt
import math
import re
import sys
import time
from collections import deque
from threading import Lock

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

HISTORY_LIMIT = 50

_STATIC_RE = re.compile(r"\.(css|js|jpg|jpeg|png|gif|webp|ico|svg|woff2?|ttf|eot|map|mp4|glb)$", re.IGNORECASE)


def _percentile(sorted_values: list[float], pct: float) -> float:
    if not sorted_values:
        return 0.0
    idx = max(0, math.ceil(len(sorted_values) * pct) - 1)
    return sorted_values[idx]


def _median(sorted_values: list[float]) -> float:
    n = len(sorted_values)
    if not n:
        return 0.0
    mid = n // 2
    if n % 2:
        return sorted_values[mid]
    return (sorted_values[mid - 1] + sorted_values[mid]) / 2


def _rss_mb() -> float | None:
    try:
        import resource
    except ImportError:  # not available on Windows
        return None
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


class PerformanceMonitor:
    """
    Per-process request timing. Keeps only the last HISTORY_LIMIT durations;
    the request/error counters are cumulative until reset().
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._lock = Lock()
        self._durations: deque[float] = deque(maxlen=history_limit)
        self.request_count = 0
        self.error_count = 0

    def record_request(self, duration_ms: float, status_code: int = 200) -> None:
        with self._lock:
            self.request_count += 1
            self._durations.append(float(duration_ms))
            if int(status_code) >= 400:
                self.error_count += 1

    def error_rate(self) -> float:
        if not self.request_count:
            return 0.0
        return round(self.error_count / self.request_count * 100, 2)

    def metrics(self) -> dict:
        with self._lock:
            values = sorted(self._durations)
            total, errors = self.request_count, self.error_count
        avg = sum(values) / len(values) if values else 0.0
        return {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "requests": {"total": total, "errors": errors, "error_rate": self.error_rate()},
            "response_time_ms": {
                "avg": round(avg, 2),
                "median": round(_median(values), 2),
                "p95": round(_percentile(values, 0.95), 2),
                "p99": round(_percentile(values, 0.99), 2),
            },
            "memory": {"peak_rss_mb": _rss_mb()},
        }

    def health(self) -> dict:
        m = self.metrics()
        status = "healthy"
        issues: list[str] = []
        avg = m["response_time_ms"]["avg"]
        if avg > 1000:
            status = "degraded"
            issues.append(f"Response time is high: {avg}ms")
        rate = m["requests"]["error_rate"]
        if rate > 10:
            status = "critical"
            issues.append(f"High error rate detected: {rate}%")
        return {"status": status, "timestamp": m["timestamp"], "issues": issues, "metrics": m}

    def reset(self) -> None:
        with self._lock:
            self._durations.clear()
            self.request_count = 0
            self.error_count = 0


monitor = PerformanceMonitor()


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if not _STATIC_RE.search(request.url.path):
            monitor.record_request((time.perf_counter() - started) * 1000, response.status_code)
        return response
