# src/jac_agents/core/rate_limit.py

from __future__ import annotations

"""
Fixed-window, in-memory rate limiting keyed by an identifier (usually user id).

The first request for a key opens a window of window_seconds; up to
max_requests are allowed inside it, then requests are refused until it ends.
"""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: float


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: float  # seconds until the window resets


RATE_LIMIT_CONFIGS: dict[str, RateLimitConfig] = {
    "standard": RateLimitConfig(max_requests=100, window_seconds=60.0),
    "ai": RateLimitConfig(max_requests=50, window_seconds=60.0),
    "search": RateLimitConfig(max_requests=30, window_seconds=60.0),
    "heavy": RateLimitConfig(max_requests=10, window_seconds=60.0),
    "restrictive": RateLimitConfig(max_requests=5, window_seconds=60.0),
}


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> RateLimiter:
        return cls(config.max_requests, config.window_seconds, **kwargs)

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            w = self._windows.get(key)

            if w is None or now > w.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return RateLimitResult(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    reset_in=self.window_seconds,
                )

            if w.count >= self.max_requests:
                return RateLimitResult(allowed=False, remaining=0, reset_in=w.reset_at - now)

            w.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - w.count,
                reset_in=w.reset_at - now,
            )

    def cleanup(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now > w.reset_at]
            for k in expired:
                del self._windows[k]
        return len(expired)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_in)),
    }
