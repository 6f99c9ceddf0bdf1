"""Fixed window rate limiting logic."""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

UNKNOWN_CLIENT = "unknown"


@dataclass(slots=True)
class RateLimitDecision:
    """Outcome of a fixed window admission check."""

    allowed: bool
    limit: int
    remaining: int
    reset_seconds: float
    headers: dict[str, str]
    window_seconds: float


@dataclass(frozen=True)
class FixedWindowSettings:
    """Configuration for fixed window rate limiting.

    ``queue_limit`` is always zero: excess requests are rejected, never parked.
    """

    permit_limit: int = 100
    window_seconds: float = 60.0
    max_keys: int = 10_000
    queue_limit: int = 0


@dataclass(slots=True)
class RateLimitWindow:
    """Per-client window state."""

    window_start_ns: int
    count: int


class FixedWindowLimiter:
    """Per-key fixed window limiter.

    Up to ``2 * permit_limit`` requests can be admitted across a window edge
    (the tail of one window plus the head of the next).
    """

    def __init__(
        self,
        settings: FixedWindowSettings,
        time_provider: Optional[Callable[[], int]] = None,
    ) -> None:
        self._limit = max(0, settings.permit_limit)
        self._window_ns = int(max(0.0, settings.window_seconds) * 1_000_000_000)
        self._max_keys = max(1, settings.max_keys)
        self._now_provider = time_provider or time.monotonic_ns
        self._lock = threading.Lock()
        self._windows: "OrderedDict[str, RateLimitWindow]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        """Return True when a non-zero limit and window are configured."""
        return self._limit > 0 and self._window_ns > 0

    def _get_window(self, key: str, now_ns: int) -> RateLimitWindow:
        window = self._windows.get(key)
        if window is None:
            if len(self._windows) >= self._max_keys:
                self._windows.popitem(last=False)
            window = RateLimitWindow(now_ns, 0)
            self._windows[key] = window
        else:
            self._windows.move_to_end(key)
        return window

    def acquire(self, key: Optional[str]) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is admitted."""
        if not self.enabled:
            return RateLimitDecision(True, 0, 0, 0.0, {}, 0.0)

        key = key or UNKNOWN_CLIENT
        now_ns = self._now_provider()
        with self._lock:
            window = self._get_window(key, now_ns)
            if now_ns - window.window_start_ns >= self._window_ns:
                window.window_start_ns = now_ns
                window.count = 0
            window.count += 1
            count = window.count
            reset_ns = max(0, window.window_start_ns + self._window_ns - now_ns)

        allowed = count <= self._limit
        remaining = max(0, self._limit - count)
        return RateLimitDecision(
            allowed=allowed,
            limit=self._limit,
            remaining=remaining,
            reset_seconds=reset_ns / 1_000_000_000,
            headers=self._headers(remaining, reset_ns),
            window_seconds=self._window_ns / 1_000_000_000,
        )

    def _headers(self, remaining: int, reset_ns: int) -> dict[str, str]:
        """Build RateLimit headers for the current window."""
        reset_seconds = reset_ns / 1_000_000_000
        reset_value = f"{reset_seconds:.3f}".rstrip("0").rstrip(".") or "0"
        return {
            "RateLimit-Limit": str(self._limit),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": reset_value,
        }

    def tracked_keys(self) -> int:
        """Return the number of client keys currently tracked."""
        with self._lock:
            return len(self._windows)

    def reset(self, key: str) -> None:
        """Drop the window for a given client, freeing associated memory."""
        with self._lock:
            self._windows.pop(key, None)
