"""Gateway to the external identity provider.

The core only depends on the :class:`CredentialProvider` protocol. The
shipped implementation talks to a GoTrue-compatible REST API over httpx;
every call is a network round trip bounded by the configured timeout and
every failure surfaces as :class:`ProviderError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from core import settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Failure reported by (or while talking to) the identity provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """The identity provider did not answer within the configured timeout."""


class AdminClientUnavailable(ProviderError):
    """An admin-only call was attempted without a service key configured."""


@dataclass(slots=True)
class ProviderUser:
    id: str
    email: str
    email_confirmed_at: datetime | None = None


@dataclass(slots=True)
class ProviderSession:
    access_token: str
    refresh_token: str
    expires_at: int | None
    user: ProviderUser


@runtime_checkable
class CredentialProvider(Protocol):
    async def create_account(
        self,
        email: str,
        password: str,
        *,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> ProviderUser: ...

    async def verify_credentials(self, email: str, password: str) -> ProviderSession: ...

    async def refresh_external_session(self, refresh_token: str) -> ProviderSession: ...

    async def sign_out_external(self, access_token: str) -> None: ...

    async def verify_email_token(self, token_hash: str, verification_type: str) -> ProviderUser: ...

    async def send_password_reset_email(self, email: str, *, redirect_to: str) -> None: ...

    async def get_user(self, access_token: str) -> ProviderUser: ...

    async def set_new_password(self, access_token: str, password: str) -> None: ...

    async def delete_account(self, user_id: str) -> None: ...


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_user(data: Any) -> ProviderUser:
    if not isinstance(data, dict):
        raise ProviderError("Invalid user payload from identity provider")
    # Some endpoints wrap the user, others return it bare.
    candidate = data.get("user") if isinstance(data.get("user"), dict) else data
    user_id = candidate.get("id")
    if not user_id:
        raise ProviderError("Identity provider response is missing the user id")
    return ProviderUser(
        id=str(user_id),
        email=str(candidate.get("email") or ""),
        email_confirmed_at=_parse_timestamp(
            candidate.get("email_confirmed_at") or candidate.get("confirmed_at")
        ),
    )


def _parse_session(data: Any) -> ProviderSession:
    if not isinstance(data, dict) or not data.get("access_token") or "user" not in data:
        raise ProviderError("Invalid session payload from identity provider")
    expires_at = data.get("expires_at")
    return ProviderSession(
        access_token=str(data["access_token"]),
        refresh_token=str(data.get("refresh_token") or ""),
        expires_at=int(expires_at) if expires_at is not None else None,
        user=_parse_user(data["user"]),
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = body.get(key)
            if value:
                return str(value)
    return response.reason_phrase


class GoTrueCredentialProvider:
    """httpx client for a GoTrue-compatible identity provider."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        anon_key: str | None = None,
        service_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.identity_provider_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.identity_provider_anon_key
        self.service_key = (
            service_key if service_key is not None else settings.identity_provider_service_key
        )
        self.timeout = timeout if timeout is not None else settings.external_call_timeout_seconds
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, bearer: str | None = None, *, admin: bool = False) -> dict[str, str]:
        key = self.service_key if admin else self.anon_key
        return {
            "apikey": key or "",
            "Authorization": f"Bearer {bearer or key or ''}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=headers or self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(_error_message(response), status_code=response.status_code)
        return response

    async def create_account(
        self,
        email: str,
        password: str,
        *,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> ProviderUser:
        params = {"redirect_to": redirect_to} if redirect_to else None
        response = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata or {}},
            params=params,
        )
        return _parse_user(response.json())

    async def verify_credentials(self, email: str, password: str) -> ProviderSession:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _parse_session(response.json())

    async def refresh_external_session(self, refresh_token: str) -> ProviderSession:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return _parse_session(response.json())

    async def sign_out_external(self, access_token: str) -> None:
        await self._request("POST", "/logout", headers=self._headers(access_token))

    async def verify_email_token(self, token_hash: str, verification_type: str) -> ProviderUser:
        response = await self._request(
            "POST",
            "/verify",
            json={"type": verification_type, "token_hash": token_hash},
        )
        return _parse_user(response.json())

    async def send_password_reset_email(self, email: str, *, redirect_to: str) -> None:
        await self._request(
            "POST",
            "/recover",
            json={"email": email},
            params={"redirect_to": redirect_to},
        )

    async def get_user(self, access_token: str) -> ProviderUser:
        response = await self._request("GET", "/user", headers=self._headers(access_token))
        return _parse_user(response.json())

    async def set_new_password(self, access_token: str, password: str) -> None:
        await self._request(
            "PUT",
            "/user",
            json={"password": password},
            headers=self._headers(access_token),
        )

    async def delete_account(self, user_id: str) -> None:
        if not self.service_key:
            raise AdminClientUnavailable("Service role key not configured")
        try:
            await self._request(
                "DELETE",
                f"/admin/users/{user_id}",
                headers=self._headers(admin=True),
            )
        except ProviderError as exc:
            # Already gone counts as deleted so compensations stay idempotent.
            if exc.status_code == 404:
                logger.info("Identity record already absent", extra={"user_id": user_id})
                return
            raise
        logger.info("Deleted identity record", extra={"user_id": user_id})
