"""Business logic services."""

from .cache import SupportsKeyValueCache, get_redis_client
from .rate_limiter import (
    RateLimitMiddleware,
    RateLimiter,
    client_ip,
    get_rate_limiter,
    set_rate_limiter,
)

__all__ = [
    "SupportsKeyValueCache",
    "get_redis_client",
    "RateLimiter",
    "RateLimitMiddleware",
    "client_ip",
    "get_rate_limiter",
    "set_rate_limiter",
]
