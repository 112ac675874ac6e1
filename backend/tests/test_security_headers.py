"""
EdgeGuard — Security Headers Tests
===================================

What we test:
    ✅ Every fixed header present with its exact value
    ✅ Identical headers across repeated calls
    ✅ Applied to rejections (401) as well as successes
    ✅ Downstream values overwritten, Server header removed
"""

import pytest
from starlette.responses import Response

from edgeguard.middleware.security import SECURITY_HEADERS, apply_security_headers


class TestSecurityHeaders:
    @pytest.mark.asyncio
    async def test_all_headers_present(self, test_client):
        response = await test_client.get("/health")
        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value

    @pytest.mark.asyncio
    async def test_byte_identical_across_calls(self, test_client):
        first = await test_client.get("/health")
        second = await test_client.get("/health")
        assert [(n, first.headers[n]) for n in SECURITY_HEADERS] == [
            (n, second.headers[n]) for n in SECURITY_HEADERS
        ]

    @pytest.mark.asyncio
    async def test_applied_to_rejections(self, test_client):
        response = await test_client.get("/api/v1/protected")
        assert response.status_code == 401
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]

    @pytest.mark.asyncio
    async def test_overrides_handler_values(self, app, test_client):
        async def weak():
            return Response("ok", headers={"X-Frame-Options": "ALLOWALL", "Server": "leaky/1.0"})

        app.add_api_route("/weak", weak)
        response = await test_client.get("/weak")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert "server" not in response.headers

    def test_apply_is_idempotent(self):
        response = apply_security_headers(apply_security_headers(Response("ok")))
        for name, value in SECURITY_HEADERS.items():
            assert response.headers.getlist(name) == [value]
