"""Per-process fixed-window rate limiting, keyed by client address.

Runs as a route dependency, so a limited caller is turned away before any
authentication or database work happens.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request

from bookstore_platform.config import Config
from bookstore_platform.errors import RateLimited


def _debug(msg: str) -> None:
    print(f"[ratelimit] {msg}")


class FixedWindowLimiter:
    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        message: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self.message = message
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (window_start, count)
        self._hits: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> bool:
        """Count one request for `key`. False once the window's budget is spent."""
        now = self._clock()
        with self._lock:
            start, count = self._hits.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._hits[key] = (start, count)
            if len(self._hits) > 10000:
                self._evict(now)
            return count <= self.max_requests

    def retry_after(self, key: str) -> int:
        with self._lock:
            start, _ = self._hits.get(key, (self._clock(), 0))
        return max(0, int(self.window_seconds - (self._clock() - start)))

    def _evict(self, now: float) -> None:
        expired = [k for k, (start, _) in self._hits.items() if now - start >= self.window_seconds]
        for k in expired:
            del self._hits[k]


def build_limiters(cfg: Config) -> Dict[str, FixedWindowLimiter]:
    return {
        "auth": FixedWindowLimiter(
            max_requests=cfg.RATE_LIMIT_AUTH_MAX,
            window_seconds=cfg.RATE_LIMIT_WINDOW_SECONDS,
            message="Too many authentication attempts, please try again later.",
        ),
        "general": FixedWindowLimiter(
            max_requests=cfg.RATE_LIMIT_GENERAL_MAX,
            window_seconds=cfg.RATE_LIMIT_WINDOW_SECONDS,
            message="Too many requests, please try again later.",
        ),
    }


def _client_key(request: Request) -> str:
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(name: str) -> Callable[[Request], None]:
    """Dependency factory: `dependencies=[Depends(rate_limit("auth"))]`."""

    def _dep(request: Request) -> None:
        cfg: Optional[Config] = getattr(request.app.state, "cfg", None)
        if cfg is None or not cfg.RATE_LIMIT_ENABLED:
            return
        limiter = request.app.state.limiters[name]
        key = _client_key(request)
        if not limiter.hit(key):
            _debug(f"{name} limit exceeded for {key} on {request.url.path}")
            raise RateLimited(
                "rate_limited",
                limiter.message,
                retryAfter=limiter.retry_after(key),
            )

    return _dep
