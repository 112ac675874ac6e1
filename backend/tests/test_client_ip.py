"""
EdgeGuard — Client IP Resolution Tests
=======================================
"""

import pytest
from starlette.requests import Request

from edgeguard.middleware.client_ip import get_client_ip, strip_port


def _request(headers=None, client=("192.0.2.10", 51000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIP:
    def test_forwarded_for_first_entry(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "10.0.0.9"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip_when_no_forwarded_for(self):
        assert get_client_ip(_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_peer_address(self):
        assert get_client_ip(_request()) == "192.0.2.10"

    def test_proxy_headers_ignored_when_untrusted(self):
        request = _request({"X-Forwarded-For": "203.0.113.7"})
        assert get_client_ip(request, trust_proxy_headers=False) == "192.0.2.10"

    def test_empty_forwarded_for_falls_through(self):
        assert get_client_ip(_request({"X-Forwarded-For": " , "})) == "192.0.2.10"

    def test_no_peer(self):
        assert get_client_ip(_request(client=None)) == "unknown"


class TestStripPort:
    @pytest.mark.parametrize(
        "address, expected",
        [
            ("10.0.0.1:5432", "10.0.0.1"),
            ("10.0.0.1", "10.0.0.1"),
            ("[::1]:8080", "::1"),
            ("::1", "::1"),
            ("2001:db8::1", "2001:db8::1"),
        ],
    )
    def test_strip_port(self, address, expected):
        assert strip_port(address) == expected
