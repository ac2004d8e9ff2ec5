"""HttpOnly cookie transport for token pairs."""

from __future__ import annotations

import time
from typing import Literal

from fastapi import Request, Response

from core import settings

from .tokens import TokenPair

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
COOKIE_PATH = "/"
COOKIE_SAMESITE: Literal["lax", "strict", "none"] = "lax"
COOKIE_SECURE = (
    settings.app_env.strip().lower() not in {"local", "test"}
    and not settings.allow_insecure_http_cookies
)


def _max_age(expires_at: int) -> int:
    return max(0, int(expires_at - time.time()))


def set_token_cookies(response: Response, pair: TokenPair) -> None:
    for key, value, expires_at in (
        (ACCESS_COOKIE, pair.access_token, pair.access_token_expires_at),
        (REFRESH_COOKIE, pair.refresh_token, pair.refresh_token_expires_at),
    ):
        response.set_cookie(
            key=key,
            value=value,
            httponly=True,
            secure=COOKIE_SECURE,
            samesite=COOKIE_SAMESITE,
            max_age=_max_age(expires_at),
            path=COOKIE_PATH,
        )


def clear_token_cookies(response: Response) -> None:
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key=key,
            path=COOKIE_PATH,
            secure=COOKIE_SECURE,
            samesite=COOKIE_SAMESITE,
        )


def bearer_token(request: Request) -> str | None:
    """Access token from the Authorization header, falling back to the cookie."""
    header = request.headers.get("authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return request.cookies.get(ACCESS_COOKIE) or None
