"""Client IP resolution for requests arriving through proxies."""
from __future__ import annotations

from fastapi import Request

UNKNOWN = "unknown"


def first_forwarded_address(header_value: str | None) -> str | None:
    """Return the originating address from an ``X-Forwarded-For`` chain.

    The chain lists the client first, followed by each proxy it traversed.
    """
    if not header_value:
        return None
    first = header_value.split(",")[0].strip()
    return first or None


def resolve_client_ip(request: Request) -> str:
    """Extract the client's IP address from the request.

    Checks sources in priority order:
    1. X-Forwarded-For (first entry of the proxy chain)
    2. X-Real-IP
    3. Direct client IP from the socket

    Returns ``"unknown"`` when none of them is available.
    """
    forwarded = first_forwarded_address(request.headers.get("x-forwarded-for"))
    if forwarded:
        return forwarded

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN
