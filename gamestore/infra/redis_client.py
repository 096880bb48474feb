from __future__ import annotations

import os

import redis
import redis.asyncio as aioredis

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def resolve_redis_url(url: str | None = None) -> str:
    """Explicit URL first, then REDIS_URL, then a local default."""

    return url or os.environ.get("REDIS_URL") or DEFAULT_REDIS_URL


def create_redis(url: str | None = None) -> redis.Redis:
    # Strings in and out; every value we store is JSON text.
    return redis.Redis.from_url(resolve_redis_url(url), decode_responses=True)


def create_async_redis(url: str | None = None, *, health_check_interval: int = 30) -> aioredis.Redis:
    # Long-lived pub/sub connections need periodic health checks to notice drops.
    return aioredis.Redis.from_url(
        resolve_redis_url(url),
        decode_responses=True,
        health_check_interval=health_check_interval,
    )
