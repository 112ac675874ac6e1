"""
EdgeGuard — Client IP Extraction
=================================

Shared by the access logger and the rate limiter.

Precedence:
    1. First entry of X-Forwarded-For
    2. X-Real-IP
    3. Transport peer address, port suffix stripped

Proxy headers are advisory: any client can send them. Deployments that are
not behind a trusted proxy should set TRUST_PROXY_HEADERS=false.
"""

from typing import Optional

from starlette.requests import HTTPConnection

UNKNOWN_CLIENT = "unknown"


def strip_port(address: str) -> str:
    """
    Remove a trailing :port from a peer address.

        "10.0.0.1:5432"  -> "10.0.0.1"
        "[::1]:8080"     -> "::1"
        "::1"            -> "::1"   (bare IPv6 is left alone)
    """
    address = address.strip()
    if address.startswith("["):
        end = address.find("]")
        return address[1:end] if end != -1 else address
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def _first_forwarded(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.split(",", 1)[0].strip()


def get_client_ip(conn: HTTPConnection, trust_proxy_headers: bool = True) -> str:
    """Resolve the client address for logging and rate limiting."""
    if trust_proxy_headers:
        forwarded = _first_forwarded(conn.headers.get("x-forwarded-for"))
        if forwarded:
            return forwarded

        real_ip = conn.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if conn.client and conn.client.host:
        return strip_port(conn.client.host)
    return UNKNOWN_CLIENT
