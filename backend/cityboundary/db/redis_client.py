"""Shared Redis connection for the candidate cache and the health check."""

from typing import Optional

import redis
from cityboundary.core.config import get_settings


def create_redis_client(url: Optional[str] = None) -> redis.Redis:
    """Build a client for `url` (defaults to config); it connects on first command."""
    return redis.from_url(
        url or get_settings().redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        health_check_interval=30,
    )


redis_client = create_redis_client()


def get_redis() -> redis.Redis:
    """Dependency returning the shared Redis client"""
    return redis_client
