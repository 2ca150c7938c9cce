from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import Request

from geopuzzle.catalog.registry import Catalog
from geopuzzle.infra.redis_client import create_redis
from geopuzzle.settings import GameSettings


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        try:
            client.close()
        except redis.RedisError:
            pass


def get_catalog(request: Request) -> Catalog:
    # Loaded once at startup; see geopuzzle.main.
    return request.app.state.catalog


def get_settings(request: Request) -> GameSettings:
    return request.app.state.settings
