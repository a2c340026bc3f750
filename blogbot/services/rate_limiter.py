from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by client identifier, held in process memory."""

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, identifier: str) -> bool:
        now = self._clock()
        window = self._windows.get(identifier)
        if window is None or now >= window.reset_at:
            self._windows[identifier] = _Window(count=1, reset_at=now + self.window_seconds)
            self._prune(now)
            return True
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def info(self, identifier: str) -> dict[str, float] | None:
        window = self._windows.get(identifier)
        if window is None or self._clock() >= window.reset_at:
            return None
        return {
            "remaining": max(0, self.max_requests - window.count),
            "reset_at": window.reset_at,
            "retry_after": max(0.0, window.reset_at - self._clock()),
        }

    def _prune(self, now: float) -> None:
        expired = [key for key, w in self._windows.items() if now >= w.reset_at]
        for key in expired:
            del self._windows[key]


def client_identifier(headers: dict[str, str] | None, peer: str | None) -> str:
    """First X-Forwarded-For hop, else X-Real-IP, else the socket peer."""
    headers = headers or {}
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "unknown"
