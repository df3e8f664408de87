"""Shared router dependencies: admin token gate, rate limiting and the response envelope."""

import hmac
from typing import Any, Optional

import redis
from fastapi import Header, Request

from orderdesk.cache import get_cache
from orderdesk.config import settings
from orderdesk.errors import ApiError, RateLimitedError, UnauthorizedError
from orderdesk.logging_config import get_logger

logger = get_logger("routers.deps")

RATE_LIMIT_PREFIX = "orderdesk:ratelimit"


def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    body = {"success": True, "data": data}
    body.update(extra)
    return body


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> str:
    expected = settings.admin_token
    if not expected:
        raise ApiError("ADMIN_TOKEN not configured", "ADMIN_TOKEN_NOT_CONFIGURED", 500)
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise UnauthorizedError("Invalid admin token", "INVALID_ADMIN_TOKEN")
    return x_admin_token


def rate_limit(request: Request) -> None:
    cache = get_cache()
    if cache is None:
        return
    window_seconds = max(settings.rate_limit_window_ms // 1000, 1)
    client_host = request.client.host if request.client else "unknown"
    key = f"{RATE_LIMIT_PREFIX}:{client_host}"
    try:
        count = cache.incr(key)
        if count == 1:
            cache.expire(key, window_seconds)
    except redis.RedisError as exc:
        logger.warning("Rate limit check failed", extra={"context": {"key": key, "error": str(exc)}})
        return
    if count > settings.rate_limit_max_requests:
        raise RateLimitedError("Too many requests, please try again later")
