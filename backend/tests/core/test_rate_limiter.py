"""
Unit tests for rate limiting helpers.
"""

from unittest.mock import MagicMock

from app.core.rate_limiter import RATE_LIMITS, get_real_client_ip


def make_request(headers=None, host="10.0.0.1"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    return request


class TestGetRealClientIp:

    def test_forwarded_for_first_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert get_real_client_ip(request) == "203.0.113.7"

    def test_real_ip_header(self):
        request = make_request({"X-Real-IP": " 198.51.100.4 "})
        assert get_real_client_ip(request) == "198.51.100.4"

    def test_direct_connection(self):
        assert get_real_client_ip(make_request()) == "10.0.0.1"


def test_resolve_limit_is_stricter_than_lookup():
    def per_minute(limit):
        return int(limit.split("/")[0])

    assert per_minute(RATE_LIMITS["resolve"]) < per_minute(RATE_LIMITS["lookup"])
