# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""In-memory rate limiting for auth endpoints (brute-force protection)."""

import time
from collections import deque
from collections.abc import Awaitable, Callable

from fastapi import Request

from authstack_server.errors import RateLimited

GROUPS = ("login", "register", "otp-send", "otp-verify", "oauth")


class RateLimiter:
    """Sliding window: at most max_attempts per window seconds per (client, group)."""

    def __init__(
        self,
        window: float = 900,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self.max_attempts = max_attempts
        self._clock = clock
        # (client_key, group) -> request timestamps in window
        self._buckets: dict[tuple[str, str], deque[float]] = {}
        self._last_sweep = clock()

    def _clean_old(self, bucket: deque[float], now: float) -> None:
        cutoff = now - self.window
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()

    def _sweep(self, now: float) -> None:
        """Drop buckets with no attempts left in the window. Runs at most once per window."""
        if now - self._last_sweep < self.window:
            return
        self._last_sweep = now
        for key in list(self._buckets):
            bucket = self._buckets[key]
            self._clean_old(bucket, now)
            if not bucket:
                del self._buckets[key]

    def check(self, client_key: str, group: str) -> None:
        """Record an attempt. Raise RateLimited if the client is over the limit for this group."""
        now = self._clock()
        self._sweep(now)
        key = (client_key, group)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = deque()
        self._clean_old(bucket, now)
        if len(bucket) >= self.max_attempts:
            raise RateLimited()
        bucket.append(now)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        self._buckets.clear()


def client_key(request: Request, trust_forwarded_for: bool = False) -> str:
    """Client address; first X-Forwarded-For hop only when running behind a trusted proxy."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host or "unknown"
    return "unknown"


def rate_limit(group: str) -> Callable[[Request], Awaitable[None]]:
    """FastAPI dependency factory: Depends(rate_limit("login"))."""
    if group not in GROUPS:
        raise ValueError(f"Unknown rate limit group: {group}")

    async def dependency(request: Request) -> None:
        state = request.app.state
        key = client_key(request, state.settings.trust_forwarded_for)
        state.rate_limiter.check(key, group)

    return dependency
