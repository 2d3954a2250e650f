"""In-process per-client rate limiting for public write routes."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from threading import Lock
from typing import Callable

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class SlidingWindowLimiter:
    """Allows at most `limit` hits per key within any `window_seconds` span.

    State lives in this process only, so each worker keeps its own counts.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        key_prefix: str = "rate_limit",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()

    def check(self, identifier: str) -> tuple[bool, int]:
        """Record a hit for `identifier`; returns (allowed, retry_after_seconds)."""
        key = f"{self.key_prefix}:{identifier}"
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                return False, retry_after

            hits.append(now)
            self._prune(window_start)
            return True, 0

    def _prune(self, window_start: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in stale:
            del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __call__(self, request: Request) -> None:
        identifier = client_ip(request)
        allowed, retry_after = self.check(identifier)
        if allowed:
            return
        logger.warning("Rate limit exceeded for %s:%s", self.key_prefix, identifier)
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests. Maximum {self.limit} requests per {self.window_seconds} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit") -> SlidingWindowLimiter:
    """Build a limiter usable as a route dependency, e.g. `dependencies=[Depends(limiter)]`."""
    return SlidingWindowLimiter(limit=limit, window_seconds=window_seconds, key_prefix=key_prefix)
