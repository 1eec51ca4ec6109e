"""Redis client for the shared gamification config cache.

Redis is optional for the engine: without it the config provider falls back
to its in-process cache and the database.
"""

from __future__ import annotations

import redis.asyncio as redis

from ecgsim.config import Settings

_client: redis.Redis | None = None


async def init_redis(settings: Settings) -> None:
    """Create the client. No connection is made until the first command."""
    global _client  # noqa: PLW0603
    if not settings.redis_url:
        _client = None
        return
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
    _client = None


def get_redis() -> redis.Redis | None:
    """The shared client, or None when Redis is disabled or not initialized."""
    return _client
