"""Rate limiting for owner write actions.

Each (owner, action) pair gets its own sliding window, so registering pages
does not eat into the budget for updating suggestions.
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from threading import Lock

import logfire

from src.constants import MAX_REQUESTS_PER_ACTION, RATE_LIMIT_WINDOW_SECONDS


def rate_limit_key(owner_id: str, action: str) -> str:
    """Bucket key for an owner's action, e.g. ``"owner-1:register_page"``."""
    return f"{owner_id}:{action}"


class RateLimiter:
    """Thread-safe in-memory rate limiter.

    Uses a sliding window approach to track requests per key.
    """

    def __init__(
        self,
        max_requests: int = MAX_REQUESTS_PER_ACTION,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum allowed requests per window.
            window_seconds: Size of the sliding window in seconds.
        """
        self._requests: dict[str, list[datetime]] = defaultdict(list)
        self._max_requests = max_requests
        self._window = timedelta(seconds=window_seconds)
        self._lock = Lock()

    def _prune(self, key: str, now: datetime) -> list[datetime]:
        cutoff = now - self._window
        self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]
        return self._requests[key]

    def check_rate_limit(self, key: str) -> bool:
        """Check whether a key is within its limit, recording the request if so.

        Args:
            key: Bucket key, usually from ``rate_limit_key``.

        Returns:
            True if the request is allowed, False if the limit is exceeded.
        """
        now = datetime.now(timezone.utc)

        with self._lock:
            recent = self._prune(key, now)
            if len(recent) >= self._max_requests:
                logfire.warning(
                    "Rate limit exceeded",
                    key=key,
                    request_count=len(recent),
                    max_requests=self._max_requests,
                    window_seconds=self._window.total_seconds(),
                )
                return False

            recent.append(now)
            return True

    def get_remaining_requests(self, key: str) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            return max(0, self._max_requests - len(self._prune(key, now)))

    def reset(self, key: str | None = None) -> None:
        """Reset rate limit tracking.

        Args:
            key: If provided, reset only this bucket. Otherwise reset all.
        """
        with self._lock:
            if key:
                self._requests.pop(key, None)
            else:
                self._requests.clear()

    def get_window_reset_time(self, key: str) -> datetime | None:
        """When the oldest request in the window expires, or None if idle."""
        now = datetime.now(timezone.utc)
        with self._lock:
            recent = self._prune(key, now)
            if recent:
                return min(recent) + self._window
            return None

    def retry_after_seconds(self, key: str) -> int:
        """Whole seconds until the key may try again (at least 1)."""
        reset_at = self.get_window_reset_time(key)
        if reset_at is None:
            return 1
        remaining = (reset_at - datetime.now(timezone.utc)).total_seconds()
        return max(1, math.ceil(remaining))


# Global instance
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter, sized from settings on first use."""
    global _rate_limiter
    if _rate_limiter is None:
        from src.config import get_settings

        settings = get_settings()
        _rate_limiter = RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (primarily for testing)."""
    global _rate_limiter
    _rate_limiter = None
