"""Token pair issuance, verification, rotation and revocation.

Tokens are signed JWTs and therefore self-contained, but every verification
re-checks the mutable state they cannot carry: the blacklist, the account
status and, for access tokens, the existence of the referenced session. The
embedded role is a snapshot taken at issuance time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from uuid import uuid4

from fastapi import status
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from core import TokenDecodeError, TokenExpiredError, decode_token, encode_token, settings

from .constants import (
    STATUS_INACTIVE,
    STATUS_SUSPENDED,
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    ErrorCode,
    TokenType,
)
from .errors import AuthError
from .session_store import DeviceInfo, SessionData, SessionStore

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    sub: str
    email: str
    role: str
    sid: str
    jti: str
    type: TokenType
    iat: int
    exp: int

    @property
    def user_id(self) -> str:
        return self.sub

    @property
    def session_id(self) -> str:
        return self.sid


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    access_token_expires_at: int
    refresh_token_expires_at: int
    session_id: str
    token_type: str = "bearer"


def _invalid_token(message: str = "Invalid token") -> AuthError:
    return AuthError(status.HTTP_401_UNAUTHORIZED, message, ErrorCode.INVALID_TOKEN)


class TokenService:
    def __init__(
        self,
        store: SessionStore,
        *,
        access_ttl_seconds: int | None = None,
        refresh_ttl_seconds: int | None = None,
        state_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.access_ttl = access_ttl_seconds or settings.access_token_expire_minutes * 60
        self.refresh_ttl = refresh_ttl_seconds or settings.refresh_token_expire_minutes * 60
        self.state_timeout = state_timeout_seconds or settings.external_call_timeout_seconds
        self._clock = clock

    async def issue(
        self,
        user_id: str,
        email: str,
        role: str,
        session_id: str | None = None,
        *,
        device: DeviceInfo | None = None,
        provider_access_token: str | None = None,
        provider_refresh_token: str | None = None,
    ) -> TokenPair:
        """Sign an access/refresh pair, creating a session first when none is given."""
        if session_id is None:
            device = device or DeviceInfo()
            session_id = await self.store.create(
                SessionData(
                    user_id=user_id,
                    email=email,
                    role=role,
                    ip_address=device.ip_address,
                    user_agent=device.user_agent,
                    provider_access_token=provider_access_token,
                    provider_refresh_token=provider_refresh_token,
                )
            )

        issued_at = int(self._clock())
        access_expires_at = issued_at + self.access_ttl
        refresh_expires_at = issued_at + self.refresh_ttl
        base_claims = {"sub": user_id, "email": email, "role": role, "sid": session_id}

        access_token = encode_token(
            {
                **base_claims,
                "jti": str(uuid4()),
                "type": TOKEN_TYPE_ACCESS,
                "iat": issued_at,
                "exp": access_expires_at,
            }
        )
        refresh_token = encode_token(
            {
                **base_claims,
                "jti": str(uuid4()),
                "type": TOKEN_TYPE_REFRESH,
                "iat": issued_at,
                "exp": refresh_expires_at,
            }
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=access_expires_at,
            refresh_token_expires_at=refresh_expires_at,
            session_id=session_id,
        )

    def _decode(self, token: str, *, verify_exp: bool = True) -> TokenPayload:
        try:
            claims = decode_token(token, verify_exp=verify_exp)
        except TokenExpiredError as exc:
            raise AuthError(
                status.HTTP_401_UNAUTHORIZED,
                "Token expired",
                ErrorCode.TOKEN_EXPIRED,
            ) from exc
        except TokenDecodeError as exc:
            raise _invalid_token() from exc
        try:
            return TokenPayload.model_validate(claims)
        except ValidationError as exc:
            raise _invalid_token() from exc

    async def verify(self, token: str, *, expected_type: TokenType | None = None) -> TokenPayload:
        """Verify signature, expiry and the mutable state behind a token.

        Any state lookup that errors or times out fails closed.
        """
        payload = self._decode(token)
        if expected_type is not None and payload.type != expected_type:
            raise _invalid_token()

        try:
            await asyncio.wait_for(self._check_state(payload), timeout=self.state_timeout)
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            logger.warning(
                "Token state check failed; rejecting token",
                extra={"user_id": payload.sub, "session_id": payload.sid},
                exc_info=exc,
            )
            raise _invalid_token("Token could not be verified") from exc
        return payload

    async def _check_state(self, payload: TokenPayload) -> None:
        if await self.store.is_token_blacklisted(payload.jti):
            raise AuthError(
                status.HTTP_401_UNAUTHORIZED,
                "Token has been revoked",
                ErrorCode.TOKEN_REVOKED,
            )

        account_status = await self.store.get_account_status(payload.sub)
        if account_status == STATUS_SUSPENDED:
            raise AuthError(
                status.HTTP_403_FORBIDDEN,
                "Account is suspended",
                ErrorCode.ACCOUNT_SUSPENDED,
            )
        if account_status == STATUS_INACTIVE:
            raise AuthError(
                status.HTTP_403_FORBIDDEN,
                "Account is inactive",
                ErrorCode.ACCOUNT_INACTIVE,
            )

        if payload.type == TOKEN_TYPE_ACCESS:
            session = await self.store.get(payload.sub, payload.sid)
            if session is None:
                raise AuthError(
                    status.HTTP_401_UNAUTHORIZED,
                    "Session not found",
                    ErrorCode.SESSION_NOT_FOUND,
                )

    async def rotate(self, refresh_token: str) -> tuple[TokenPayload, TokenPair]:
        """Exchange a refresh token for a new pair bound to the same session.

        The presented token is blacklisted before the new pair is returned, and
        the blacklist write is an atomic claim, so a refresh token rotates at
        most once even when the same token is presented concurrently.
        """
        payload = await self.verify(refresh_token)
        if payload.type != TOKEN_TYPE_REFRESH:
            raise AuthError(
                status.HTTP_401_UNAUTHORIZED,
                "Invalid refresh token",
                ErrorCode.INVALID_REFRESH_TOKEN,
            )

        try:
            session = await asyncio.wait_for(
                self.store.get(payload.sub, payload.sid), timeout=self.state_timeout
            )
            claimed = await asyncio.wait_for(
                self.store.blacklist_token(payload.jti, payload.exp),
                timeout=self.state_timeout,
            )
        except (asyncio.TimeoutError, RedisError, OSError) as exc:
            logger.warning(
                "Refresh token rotation could not reach the session store",
                extra={"user_id": payload.sub, "session_id": payload.sid},
                exc_info=exc,
            )
            raise _invalid_token("Token could not be verified") from exc

        if session is None:
            raise AuthError(
                status.HTTP_401_UNAUTHORIZED,
                "Session not found",
                ErrorCode.SESSION_NOT_FOUND,
            )
        if not claimed:
            raise AuthError(
                status.HTTP_401_UNAUTHORIZED,
                "Token has been revoked",
                ErrorCode.TOKEN_REVOKED,
            )

        pair = await self.issue(payload.sub, payload.email, payload.role, payload.sid)
        return payload, pair

    def decode_without_expiry(self, token: str) -> TokenPayload | None:
        """Decode a signed token even if it has expired; None when it is unusable."""
        try:
            return self._decode(token, verify_exp=False)
        except AuthError:
            return None

    async def revoke(self, token: str) -> None:
        """Blacklist a token for the remainder of its natural lifetime."""
        payload = self.decode_without_expiry(token)
        if payload is None:
            logger.debug("Ignoring revocation of an undecodable token")
            return
        await self.store.blacklist_token(payload.jti, payload.exp)

    async def revoke_all(self, user_id: str) -> int:
        return await self.store.delete_all(user_id)
