from __future__ import annotations

import os

import redis

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def get_redis_url() -> str:
    # Project-specific variable wins so the game can share a host with other services.
    return os.environ.get("GEOPUZZLE_REDIS_URL") or os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)


def create_redis(*, url: str | None = None) -> redis.Redis:
    # Persistence stores JSON text, so decode to str on the way out.
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True, socket_timeout=2.0)
