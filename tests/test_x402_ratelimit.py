# tests/test_x402_ratelimit.py
"""
Unit tests for payment route rate limiting.
"""
import pytest
import time
from unittest.mock import patch

from app.x402.ratelimit import (
    CLEANUP_INTERVAL_SECONDS,
    RateLimiter,
    check_rate_limit,
    get_rate_limit_headers,
    get_rate_limiter,
    reset_rate_limiter,
)


class TestRateLimiter:
    """Test the RateLimiter class."""

    def test_init_with_custom_limit(self):
        limiter = RateLimiter(max_requests=5, window_seconds=30)
        assert limiter.max_requests == 5
        assert limiter.window_seconds == 30

    @patch("app.x402.ratelimit.settings")
    def test_init_from_config(self, mock_settings):
        """Limits are read from config when not given."""
        mock_settings.RATE_LIMIT_MAX = 15
        mock_settings.RATE_LIMIT_WINDOW_SECONDS = 900
        limiter = RateLimiter()
        assert limiter.max_requests == 15
        assert limiter.window_seconds == 900

    def test_first_request_allowed(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        is_limited, count, limit = limiter.is_rate_limited("192.168.1.1")
        assert is_limited is False
        assert count == 1
        assert limit == 5

    def test_requests_over_limit_blocked(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)

        for _ in range(3):
            is_limited, _, _ = limiter.is_rate_limited("192.168.1.1")
            assert is_limited is False

        is_limited, count, limit = limiter.is_rate_limited("192.168.1.1")
        assert is_limited is True
        assert count == 3
        assert limit == 3

    def test_different_ips_tracked_separately(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        limiter.is_rate_limited("192.168.1.1")
        assert limiter.is_rate_limited("192.168.1.1")[0] is True
        assert limiter.is_rate_limited("192.168.1.2")[0] is False

    def test_window_expiry(self):
        """Requests expire after the window slides past them."""
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        with patch("app.x402.ratelimit.time.time", return_value=1000.0):
            limiter.is_rate_limited("192.168.1.1")
            assert limiter.is_rate_limited("192.168.1.1")[0] is True

        with patch("app.x402.ratelimit.time.time", return_value=1061.0):
            is_limited, count, _ = limiter.is_rate_limited("192.168.1.1")

        assert is_limited is False
        assert count == 1

    def test_unknown_ip_not_limited(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        for _ in range(3):
            assert limiter.is_rate_limited("unknown") == (False, 0, 1)
        assert limiter.is_rate_limited("")[0] is False

    def test_reset_all(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.is_rate_limited("192.168.1.1")

        limiter.reset_all()

        assert limiter.is_rate_limited("192.168.1.1")[0] is False

    def test_cleanup_drops_idle_ips(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        start = time.time()

        with patch("app.x402.ratelimit.time.time", return_value=start):
            limiter.is_rate_limited("192.168.1.1")

        limiter._maybe_cleanup(start + CLEANUP_INTERVAL_SECONDS + 1)

        assert "192.168.1.1" not in limiter._windows


class TestGlobalLimiter:
    """Test the module-level helpers."""

    def test_singleton(self):
        assert get_rate_limiter() is get_rate_limiter()

    def test_reset_creates_new_instance(self):
        first = get_rate_limiter()
        reset_rate_limiter()
        assert get_rate_limiter() is not first

    @patch("app.x402.ratelimit.settings")
    def test_check_rate_limit(self, mock_settings):
        mock_settings.RATE_LIMIT_MAX = 2
        mock_settings.RATE_LIMIT_WINDOW_SECONDS = 900

        allowed, reason, stats = check_rate_limit("10.0.0.1")
        assert allowed is True
        assert reason is None
        assert stats == {"requests_made": 1, "limit": 2, "remaining": 1, "window_seconds": 900}

        check_rate_limit("10.0.0.1")
        allowed, reason, stats = check_rate_limit("10.0.0.1")
        assert allowed is False
        assert "Rate limit exceeded" in reason
        assert stats["remaining"] == 0


class TestRateLimitHeaders:

    def test_headers(self):
        headers = get_rate_limit_headers({"limit": 100, "remaining": 42, "window_seconds": 900})
        assert headers == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "42",
            "X-RateLimit-Reset": "900",
        }

    def test_missing_stats(self):
        assert get_rate_limit_headers({})["X-RateLimit-Limit"] == "0"
