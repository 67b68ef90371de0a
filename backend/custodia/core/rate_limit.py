import threading
import time
from collections import deque
from typing import Callable

from fastapi import Request

SENSITIVE_POST_PATHS = frozenset({
    "/auth/login",
    "/login/start",
    "/login/otp/verify",
    "/register",
    "/register/totp/confirm",
    "/mfa/totp/confirm",
})

# Calls between sweeps of keys whose window has emptied
SWEEP_EVERY_CALLS = 512


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "")
    if real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class SlidingWindowRateLimiter:
    """Counts hits per key inside a sliding window of ``window_seconds``."""

    def __init__(self, max_hits: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.max_hits = max(3, max_hits)
        self.window_seconds = max(10, window_seconds)
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()
        self._calls = 0

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            self._calls += 1
            if self._calls >= SWEEP_EVERY_CALLS:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._trim(hits, now)
            if len(hits) >= self.max_hits:
                return False
            hits.append(now)
            return True

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def _trim(self, hits: deque, now: float) -> None:
        while hits and now - hits[0] > self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        for key in list(self._hits):
            self._trim(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]
        self._calls = 0

    def applies_to(self, request: Request) -> bool:
        return request.method == "POST" and request.url.path in SENSITIVE_POST_PATHS
