"""Redis-backed request rate limiting and client address resolution."""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address, ip_network
from typing import Callable, Iterable, Protocol, runtime_checkable

from fastapi import status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.types import ASGIApp

from core import decode_token, settings

from .auth.constants import ErrorCode
from .cache import get_redis_client

logger = logging.getLogger(__name__)


@runtime_checkable
class SupportsRateLimitClient(Protocol):
    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> None: ...


ACCESS_COOKIE_NAME = "access_token"
REFRESH_COOKIE_NAME = "refresh_token"
SUPPORTED_TOKEN_TYPES = frozenset({"access", "refresh"})
AUTH_PATH_PREFIX = "/api/v1/auth"


def _parse_networks() -> tuple[IPv4Network | IPv6Network, ...]:
    networks: list[IPv4Network | IPv6Network] = []
    for cidr in settings.rate_limit_trusted_proxies:
        try:
            networks.append(ip_network(cidr, strict=False))
        except ValueError as exc:  # pragma: no cover - invalid configuration
            raise ValueError(f"Invalid CIDR in RATE_LIMIT_TRUSTED_PROXIES: {cidr}") from exc
    return tuple(networks)


@lru_cache
def _trusted_proxy_networks() -> tuple[IPv4Network | IPv6Network, ...]:
    return _parse_networks()


def _extract_client_ip_from_headers(request: Request) -> str | None:
    for header in settings.rate_limit_ip_headers:
        value = request.headers.get(header)
        if not value:
            continue
        for candidate in value.split(","):
            ip_candidate = candidate.strip()
            if not ip_candidate:
                continue
            try:
                ip_address(ip_candidate)
            except ValueError:
                continue
            return ip_candidate
    return None


def _extract_subject_from_token(token: str) -> str | None:
    # Signature and expiry only; revocation is the token service's concern.
    try:
        payload = decode_token(token)
    except ValueError:
        return None

    if payload.get("type") not in SUPPORTED_TOKEN_TYPES:
        return None

    subject = payload.get("sub")
    if isinstance(subject, str):
        normalized = subject.strip()
        return normalized or None
    return None


def _extract_bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None

    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = value.strip()
    return token or None


def _extract_authenticated_client_identifier(request: Request) -> str | None:
    for token in (
        request.cookies.get(ACCESS_COOKIE_NAME),
        request.cookies.get(REFRESH_COOKIE_NAME),
        _extract_bearer_token(request),
    ):
        if not token:
            continue
        subject = _extract_subject_from_token(token)
        if subject:
            return f"user:{subject}"
    return None


def _remote_ip(request: Request) -> tuple[str | None, IPv4Address | IPv6Address | None]:
    host = request.client.host if request.client else None
    if not host:
        return None, None
    try:
        addr = ip_address(host)
    except ValueError:
        return host, None
    return host, addr


def _is_trusted_proxy(remote_ip: IPv4Address | IPv6Address | None) -> bool:
    if remote_ip is None:
        return False
    return any(remote_ip in network for network in _trusted_proxy_networks())


def client_ip(request: Request) -> str | None:
    """Source address of the request, honouring forwarding headers from trusted proxies only."""
    remote_host, remote_ip = _remote_ip(request)
    if _is_trusted_proxy(remote_ip):
        forwarded_ip = _extract_client_ip_from_headers(request)
        if forwarded_ip:
            return forwarded_ip
    return remote_host


def default_client_identifier(request: Request) -> str:
    """Resolve a stable client identifier for rate limiting."""
    authenticated_identifier = _extract_authenticated_client_identifier(request)
    if authenticated_identifier is not None:
        return authenticated_identifier
    return client_ip(request) or "anonymous"


class RateLimiter:
    """Simple fixed-window rate limiter backed by Redis."""

    def __init__(
        self,
        redis_client: SupportsRateLimitClient,
        limit: int,
        window_seconds: int,
        prefix: str = "rate:limit:request",
    ) -> None:
        self.redis = redis_client
        self.limit = max(limit, 0)
        self.window_seconds = max(window_seconds, 0)
        self.prefix = prefix

    async def allow(self, key: str) -> bool:
        """Return True when the request should be allowed, False if limited."""
        if self.limit == 0 or self.window_seconds == 0:
            return True

        bucket = int(time.time()) // self.window_seconds
        redis_key = f"{self.prefix}:{key}:{bucket}"

        count = await self.redis.incr(redis_key)
        if count == 1:
            await self.redis.expire(redis_key, self.window_seconds)
        return count <= self.limit


_cached_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Singleton accessor for the shared rate limiter."""
    global _cached_rate_limiter
    if _cached_rate_limiter is None:
        _cached_rate_limiter = RateLimiter(
            redis_client=get_redis_client(),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _cached_rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Override the cached rate limiter (primarily for tests)."""
    global _cached_rate_limiter
    _cached_rate_limiter = limiter


class RateLimitMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that enforces the configured rate limits."""

    def __init__(
        self,
        app: ASGIApp,
        limiter_factory: Callable[[], RateLimiter],
        exempt_paths: Iterable[str] | None = None,
        exempt_prefixes: Iterable[str] | None = None,
        client_identifier: Callable[[Request], str] | None = None,
    ) -> None:
        super().__init__(app)
        self._limiter: RateLimiter | None = None
        self.limiter_factory = limiter_factory
        self.exempt_paths = set(exempt_paths or ())
        self.exempt_prefixes = tuple(exempt_prefixes or ())
        self.client_identifier = client_identifier or default_client_identifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        if request.scope["type"] != "http":
            return await call_next(request)

        path = request.url.path
        if path in self.exempt_paths or any(
            path.startswith(prefix) for prefix in self.exempt_prefixes
        ):
            return await call_next(request)

        override = getattr(request.app.state, "rate_limiter_override", None)
        limiter = override if override is not None else self._get_limiter()

        if limiter is None:
            if _is_auth_path(path):
                return _unavailable()
            return await call_next(request)

        client_key = self.client_identifier(request) or "anonymous"
        try:
            is_allowed = await limiter.allow(client_key)
        except (RedisError, OSError) as exc:
            # Auth endpoints fail closed while the limiter is unreachable.
            logger.warning("Rate limiter unavailable", extra={"path": path}, exc_info=exc)
            if _is_auth_path(path):
                return _unavailable()
            return await call_next(request)

        if not is_allowed:
            return _error_response(
                status.HTTP_429_TOO_MANY_REQUESTS,
                ErrorCode.RATE_LIMITED,
                "Too many requests. Please try again later.",
            )

        return await call_next(request)

    def _get_limiter(self) -> RateLimiter | None:
        if self._limiter is None:
            try:
                self._limiter = self.limiter_factory()
            except (RedisError, ValueError) as exc:  # pragma: no cover - misconfiguration
                logger.warning("Could not create rate limiter", exc_info=exc)
                self._limiter = None
        return self._limiter


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse({"detail": {"code": code, "message": message}}, status_code=status_code)


def _unavailable() -> JSONResponse:
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        ErrorCode.SERVICE_UNAVAILABLE,
        "Service temporarily unavailable",
    )


def _is_auth_path(path: str) -> bool:
    return path == AUTH_PATH_PREFIX or path.startswith(f"{AUTH_PATH_PREFIX}/")
