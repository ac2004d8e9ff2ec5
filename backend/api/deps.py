"""FastAPI dependencies shared by the API routers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from services import client_ip
from services.auth import (
    AccountDirectory,
    AuthError,
    AuthService,
    CredentialProvider,
    DeviceInfo,
    GoTrueCredentialProvider,
    SessionStore,
    TokenPayload,
    TokenService,
    bearer_token,
)
from services.auth.constants import TOKEN_TYPE_ACCESS, ErrorCode
from services.cache import SupportsKeyValueCache, get_redis_client


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def get_redis() -> SupportsKeyValueCache:
    return get_redis_client()


@lru_cache
def get_identity_provider() -> CredentialProvider:
    return GoTrueCredentialProvider()


def get_session_store(redis: SupportsKeyValueCache = Depends(get_redis)) -> SessionStore:
    return SessionStore(redis)


def get_token_service(store: SessionStore = Depends(get_session_store)) -> TokenService:
    return TokenService(store)


def get_auth_service(
    session: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    tokens: TokenService = Depends(get_token_service),
    provider: CredentialProvider = Depends(get_identity_provider),
) -> AuthService:
    return AuthService(
        provider=provider,
        directory=AccountDirectory(session),
        store=store,
        tokens=tokens,
    )


def get_device_info(request: Request) -> DeviceInfo:
    return DeviceInfo(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_access_token(request: Request) -> str:
    token = bearer_token(request)
    if token is None:
        raise AuthError(
            status.HTTP_401_UNAUTHORIZED,
            "Not authenticated",
            ErrorCode.INVALID_TOKEN,
        )
    return token


async def get_current_user(
    token: str = Depends(get_access_token),
    tokens: TokenService = Depends(get_token_service),
) -> TokenPayload:
    return await tokens.verify(token, expected_type=TOKEN_TYPE_ACCESS)
