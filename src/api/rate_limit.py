"""Per-client sliding-window limiter for public endpoints."""
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import HTTPException, Request
from loguru import logger

from src.config import get_settings


class SlidingWindowLimiter:
    """In-process request log per key.

    Keys idle for longer than the window are evicted on the next sweep, so
    the table does not grow with every client ever seen.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _sweep(self, now: float) -> None:
        cutoff = now - self.window_seconds
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> Optional[float]:
        """Record a request. Returns None if allowed, else seconds until retry."""
        with self._lock:
            now = self.clock()
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            hits = self._hits.setdefault(key, deque())
            cutoff = now - self.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                return max(0.0, hits[0] + self.window_seconds - now)
            hits.append(now)
            return None

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_settings = get_settings()
status_limiter = SlidingWindowLimiter(
    _settings.api_rate_limit_requests, _settings.api_rate_limit_window_seconds
)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit(request: Request) -> None:
    key = client_key(request)
    retry_after = status_limiter.hit(key)
    if retry_after is not None:
        logger.warning(f"Rate limit exceeded for {key} on {request.url.path}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(int(retry_after) + 1)},
        )
