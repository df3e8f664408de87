"""Shared Redis client. The database stays authoritative; callers treat the cache as optional."""

import json
import os
from typing import Any, Optional

import redis

from orderdesk.config import settings
from orderdesk.logging_config import get_logger

logger = get_logger("cache")

_cache_client: Optional[redis.Redis] = None
_cache_url: Optional[str] = None


def get_cache() -> Optional[redis.Redis]:
    global _cache_client, _cache_url
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return None
    if not settings.redis_url:
        return None
    if _cache_client is None or _cache_url != settings.redis_url:
        _cache_url = settings.redis_url
        _cache_client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
    return _cache_client


def read_json(cache, key: str) -> Any:
    if cache is None:
        return None
    try:
        payload = cache.get(key)
    except redis.RedisError as exc:
        logger.warning("Cache read failed", extra={"context": {"key": key, "error": str(exc)}})
        return None
    if not payload:
        return None
    try:
        return json.loads(payload)
    except ValueError:
        logger.warning("Cache payload is not JSON, ignoring", extra={"context": {"key": key}})
        return None


def write_json(cache, key: str, value: Any, ttl_seconds: int) -> None:
    if cache is None:
        return
    try:
        cache.setex(key, ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError as exc:
        logger.warning("Cache write failed", extra={"context": {"key": key, "error": str(exc)}})


def delete_keys(cache, *keys: str) -> None:
    if cache is None or not keys:
        return
    try:
        cache.delete(*keys)
    except redis.RedisError as exc:
        logger.warning("Cache delete failed", extra={"context": {"keys": list(keys), "error": str(exc)}})
