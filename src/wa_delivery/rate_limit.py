# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fixed-window, in-process rate limiter keyed by sender identity.

Each sender gets a window of ``window_ms`` milliseconds admitting at most
``max_calls`` attempts. The first call for a sender opens its window; a
call arriving after the window's reset time starts a fresh one.

The state lives in this process only. Several worker processes each keep
their own windows, so the effective ceiling across a deployment is
``max_calls`` times the number of processes; the queue worker's global
limiter is the coarser second layer that bounds the total. A shared
implementation (e.g. backed by a key-value store) can replace this class
as long as it offers ``admit()``.

Example:
    Gating a send::

        limiter = RateLimiter(max_calls=80, window_ms=1000)
        if not await limiter.admit(phone_number_id):
            raise LocallyThrottledError(phone_number_id)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_MAX_CALLS = 80
DEFAULT_WINDOW_MS = 1000


@dataclass
class RateLimitWindow:
    """Calls admitted in the current window and when the window ends."""

    count: int
    reset_at: float


class RateLimiter:
    """Per-key fixed-window admission gate safe for concurrent coroutines.

    Attributes:
        max_calls: Ceiling of admitted calls per window.
        window: Window length in seconds.
    """

    def __init__(
        self,
        max_calls: int = DEFAULT_MAX_CALLS,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], float] | None = None,
    ):
        """Initialize the limiter.

        Args:
            max_calls: Maximum admitted calls per key per window. Must be >= 1.
            window_ms: Window length in milliseconds. Must be > 0.
            clock: Monotonic time source in seconds; ``time.monotonic`` by default.
        """
        if int(max_calls) < 1:
            raise ValueError("max_calls must be at least 1")
        if float(window_ms) <= 0:
            raise ValueError("window_ms must be positive")
        self.max_calls = int(max_calls)
        self.window = float(window_ms) / 1000.0
        self._clock = clock or time.monotonic
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    async def admit(self, key: str) -> bool:
        """Count one call for ``key``; return False if the window is full.

        The read-check-increment sequence runs under a lock, so concurrent
        callers for the same key never observe the same count.
        """
        async with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None:
                window = RateLimitWindow(count=0, reset_at=now + self.window)
                self._windows[key] = window
            elif now > window.reset_at:
                window.count = 0
                window.reset_at = now + self.window

            if window.count >= self.max_calls:
                return False
            window.count += 1
            return True

    def seconds_until_reset(self, key: str) -> float:
        """Seconds left in the current window for ``key`` (0 if none open)."""
        window = self._windows.get(key)
        if window is None:
            return 0.0
        return max(0.0, window.reset_at - self._clock())

    def snapshot(self, key: str) -> RateLimitWindow | None:
        """Copy of the window for ``key``, for inspection."""
        window = self._windows.get(key)
        if window is None:
            return None
        return RateLimitWindow(count=window.count, reset_at=window.reset_at)

    def reset(self) -> None:
        """Forget every window."""
        self._windows.clear()


__all__ = ["DEFAULT_MAX_CALLS", "DEFAULT_WINDOW_MS", "RateLimitWindow", "RateLimiter"]
