"""Tests for the sliding-window rate limiter and CORS path matching."""
from unittest.mock import patch

import pytest

from mcp_server.cors import is_cors_allowed_path
from mcp_server.rate_limit import SlidingWindowRateLimiter


def test_allows_up_to_limit_then_blocks():
    limiter = SlidingWindowRateLimiter(limit=3, window_seconds=60)
    assert [limiter.check_and_consume("ip")[0] for _ in range(3)] == [True, True, True]
    allowed, retry_after = limiter.check_and_consume("ip")
    assert allowed is False
    assert 1 <= retry_after <= 60
    # Keys are independent
    assert limiter.check_and_consume("other-ip") == (True, None)


def test_window_slides():
    limiter = SlidingWindowRateLimiter(limit=1, window_seconds=60)
    with patch("mcp_server.rate_limit.time.monotonic", return_value=1000.0):
        assert limiter.check_and_consume("ip")[0] is True
        assert limiter.check_and_consume("ip")[0] is False
    with patch("mcp_server.rate_limit.time.monotonic", return_value=1061.0):
        assert limiter.check_and_consume("ip")[0] is True


def test_prune_drops_idle_keys():
    limiter = SlidingWindowRateLimiter(limit=5, window_seconds=60)
    with patch("mcp_server.rate_limit.time.monotonic", return_value=1000.0):
        limiter.check_and_consume("old")
    with patch("mcp_server.rate_limit.time.monotonic", return_value=1100.0):
        limiter.check_and_consume("new")
        assert limiter.prune() == 1
        assert limiter.prune() == 0


def test_zero_limit_disables():
    limiter = SlidingWindowRateLimiter(limit=0)
    assert limiter.check_and_consume("ip") == (True, None)


@pytest.mark.parametrize(
    "path,allowed",
    [
        ("/token", True),
        ("/token/extra", True),
        ("/tokenizer", False),
        ("/register", True),
        ("/.well-known/oauth-protected-resource/mcp", True),
        ("/mcp", False),
        ("/authorize", False),
        ("/oauth/callback", False),
    ],
)
def test_cors_path_matching(path, allowed):
    assert is_cors_allowed_path(path) is allowed
