# app/x402/ratelimit.py
"""
Rate limiting for the payment API.

This module provides IP-based rate limiting so clients cannot hammer the
facilitator through the payment routes. Uses a sliding window algorithm
with in-memory storage.

Configuration:
- RATE_LIMIT_MAX: Maximum requests per window per IP (default: 100)
- RATE_LIMIT_WINDOW_SECONDS: Window size in seconds (default: 900)
"""
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


@dataclass
class RateLimitWindow:
    """Stores request timestamps for a single IP within the sliding window."""
    requests: List[float] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter:
    """
    In-memory sliding window rate limiter.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None
    ):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Max requests allowed per window. If None, uses config.
            window_seconds: Size of the sliding window. If None, uses config.
        """
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._windows: Dict[str, RateLimitWindow] = defaultdict(RateLimitWindow)
        self._cleanup_lock = threading.Lock()
        self._last_cleanup = time.time()

    @property
    def max_requests(self) -> int:
        if self._max_requests is not None:
            return self._max_requests
        return settings.RATE_LIMIT_MAX

    @property
    def window_seconds(self) -> int:
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.RATE_LIMIT_WINDOW_SECONDS

    def is_rate_limited(self, client_ip: str) -> Tuple[bool, int, int]:
        """
        Check if a client IP is rate limited, recording the request if not.

        Returns:
            Tuple of (is_limited, requests_made, limit)
        """
        if not client_ip or client_ip == "unknown":
            return (False, 0, self.max_requests)

        now = time.time()
        window_start = now - self.window_seconds

        self._maybe_cleanup(now)

        window = self._windows[client_ip]
        limit = self.max_requests

        with window.lock:
            window.requests = [ts for ts in window.requests if ts > window_start]
            requests_in_window = len(window.requests)

            if requests_in_window >= limit:
                logger.warning(
                    f"Rate limit exceeded for {client_ip}: "
                    f"{requests_in_window}/{limit} requests in {self.window_seconds}s"
                )
                return (True, requests_in_window, limit)

            window.requests.append(now)
            return (False, requests_in_window + 1, limit)

    def reset_all(self) -> None:
        """Reset all rate limit tracking."""
        self._windows.clear()

    def _maybe_cleanup(self, now: float) -> None:
        """Drop empty windows every few minutes to bound memory."""
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return

        with self._cleanup_lock:
            if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
                return

            self._last_cleanup = now
            window_start = now - self.window_seconds
            stale_ips = []

            for ip, window in self._windows.items():
                with window.lock:
                    window.requests = [ts for ts in window.requests if ts > window_start]
                    if not window.requests:
                        stale_ips.append(ip)

            for ip in stale_ips:
                del self._windows[ip]

            if stale_ips:
                logger.debug(f"Cleaned up {len(stale_ips)} stale rate limit entries")


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = RateLimiter()

    return _rate_limiter


def check_rate_limit(client_ip: str) -> Tuple[bool, Optional[str], Dict[str, Any]]:
    """
    Check if a client IP may make another request.

    Returns:
        Tuple of (is_allowed, reason, stats)
    """
    limiter = get_rate_limiter()
    is_limited, requests_made, limit = limiter.is_rate_limited(client_ip)

    stats = {
        "requests_made": requests_made,
        "limit": limit,
        "remaining": max(0, limit - requests_made),
        "window_seconds": limiter.window_seconds,
    }

    if is_limited:
        return (
            False,
            f"Rate limit exceeded: {requests_made}/{limit} requests per {limiter.window_seconds}s",
            stats
        )

    return (True, None, stats)


def get_rate_limit_headers(stats: Dict[str, Any]) -> Dict[str, str]:
    """Generate rate limit headers for HTTP responses."""
    return {
        "X-RateLimit-Limit": str(stats.get("limit", 0)),
        "X-RateLimit-Remaining": str(stats.get("remaining", 0)),
        "X-RateLimit-Reset": str(stats.get("window_seconds", 0)),
    }


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (useful for testing)."""
    global _rate_limiter
    with _rate_limiter_lock:
        if _rate_limiter is not None:
            _rate_limiter.reset_all()
        _rate_limiter = None
