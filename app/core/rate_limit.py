"""
Request rate limiting (slowapi) and client address helpers.
"""
from typing import Optional

from slowapi import Limiter
from starlette.requests import Request

from app.core import config


def client_ip(request: Request) -> Optional[str]:
    """
    Best guess of the caller's address: first X-Forwarded-For hop, then
    X-Real-IP, then the socket peer. Not validated here.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent") or None


def get_rate_limit_key(request: Request) -> str:
    return client_ip(request) or "anonymous"


limiter = Limiter(key_func=get_rate_limit_key, enabled=config.RATE_LIMIT_ENABLED)
