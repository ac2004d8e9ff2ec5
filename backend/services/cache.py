"""Shared Redis client used for sessions, blacklists and rate limits."""

from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from redis.asyncio import Redis

from core import settings


@runtime_checkable
class SupportsKeyValueCache(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(
        self, key: str, value: Any, ex: int | None = None, nx: bool = False
    ) -> Any: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, *keys: str) -> int: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> Any: ...

    async def ttl(self, key: str) -> int: ...

    def scan_iter(self, match: str | None = None) -> AsyncIterator[str]: ...


@lru_cache
def get_redis_client() -> Redis:
    """Return a cached async Redis client with bounded socket timeouts."""
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
