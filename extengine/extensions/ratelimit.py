# extengine/extensions/ratelimit.py
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from extengine.core.errors import RateLimitError
from extengine.core.time import nowMonotonicMs

__all__ = ["InstallRateLimiter"]



class InstallRateLimiter:
    """Sliding-window limit of install attempts per sender."""

    def __init__(self, limit: int = 5, windowMs: int = 60_000, clock: Callable[[], int] = nowMonotonicMs) -> None:
        self.limit = limit
        self.windowMs = windowMs
        self._clock = clock
        self._attempts: dict[Any, list[int]] = {}

    def check(self, senderId: Any) -> None:
        """Records an attempt or raises E_RATE_LIMIT when the window is full."""
        now = self._clock()
        recent = [ts for ts in self._attempts.get(senderId, []) if now - ts < self.windowMs]
        if len(recent) >= self.limit:
            self._attempts[senderId] = recent
            raise RateLimitError("Too many installation attempts", extra={"retryAfterMs": self.windowMs - (now - recent[0])})
        recent.append(now)
        self._attempts[senderId] = recent

    def reset(self, senderId: Any = None) -> None:
        if senderId is None:
            self._attempts.clear()
        else:
            self._attempts.pop(senderId, None)
