"""Request origin helpers shared by the auth and rate limit dependencies"""
from typing import Optional

from fastapi import Request

from core.impersonation import ClientInfo


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For when behind a proxy, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
