"""Tests for the GoTrue-compatible identity provider client."""

from __future__ import annotations

import json

import httpx
import pytest

from services.auth import AdminClientUnavailable, GoTrueCredentialProvider, ProviderError
from services.auth.errors import translate_provider_error
from services.auth.provider import ProviderTimeout

USER = {
    "id": "0b8f5c52-7d1e-4a8e-9a51-3d3f1f0f4b11",
    "email": "jane@example.com",
    "email_confirmed_at": "2026-10-01T12:00:00Z",
}


def _provider(handler, **kwargs) -> tuple[GoTrueCredentialProvider, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        base_url="http://idp.test",
        transport=httpx.MockTransport(recording_handler),
    )
    provider = GoTrueCredentialProvider(
        "http://idp.test",
        anon_key="anon",
        service_key=kwargs.pop("service_key", "service"),
        client=client,
        **kwargs,
    )
    return provider, seen


@pytest.mark.asyncio
async def test_create_account_sends_metadata_and_redirect():
    provider, seen = _provider(lambda request: httpx.Response(200, json=USER))

    user = await provider.create_account(
        "jane@example.com",
        "Sup3rSecret!",
        metadata={"first_name": "Jane"},
        redirect_to="https://resume.example/auth/confirm",
    )

    assert user.id == USER["id"]
    assert user.email_confirmed_at is not None
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/signup"
    assert request.url.params["redirect_to"] == "https://resume.example/auth/confirm"
    assert json.loads(request.content)["data"] == {"first_name": "Jane"}
    assert request.headers["apikey"] == "anon"


@pytest.mark.asyncio
async def test_verify_credentials_parses_session():
    payload = {
        "access_token": "provider-access",
        "refresh_token": "provider-refresh",
        "expires_at": 1_800_000_000,
        "user": dict(USER, email_confirmed_at=None),
    }
    provider, seen = _provider(lambda request: httpx.Response(200, json=payload))

    session = await provider.verify_credentials("jane@example.com", "Sup3rSecret!")

    assert session.access_token == "provider-access"
    assert session.refresh_token == "provider-refresh"
    assert session.expires_at == 1_800_000_000
    assert session.user.email_confirmed_at is None
    assert seen[0].url.params["grant_type"] == "password"


@pytest.mark.asyncio
async def test_user_wrapped_in_user_key_is_accepted():
    provider, _ = _provider(lambda request: httpx.Response(200, json={"user": USER}))

    user = await provider.verify_email_token("hash", "signup")

    assert user.id == USER["id"]


@pytest.mark.asyncio
async def test_error_response_carries_message_and_status():
    provider, _ = _provider(
        lambda request: httpx.Response(400, json={"error_description": "Invalid login credentials"})
    )

    with pytest.raises(ProviderError) as exc_info:
        await provider.verify_credentials("jane@example.com", "wrong")

    assert exc_info.value.status_code == 400
    assert translate_provider_error(exc_info.value).code == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_timeout_becomes_provider_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    provider, _ = _provider(handler)

    with pytest.raises(ProviderTimeout):
        await provider.get_user("token")


@pytest.mark.asyncio
async def test_transport_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider, _ = _provider(handler)

    with pytest.raises(ProviderError) as exc_info:
        await provider.sign_out_external("token")

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_user_calls_send_caller_bearer():
    provider, seen = _provider(lambda request: httpx.Response(200, json=USER))

    await provider.get_user("recovery-token")
    await provider.set_new_password("recovery-token", "N3wSecret!x")

    assert [request.headers["authorization"] for request in seen] == [
        "Bearer recovery-token",
        "Bearer recovery-token",
    ]
    assert seen[1].method == "PUT"


@pytest.mark.asyncio
async def test_delete_account_uses_service_key():
    provider, seen = _provider(lambda request: httpx.Response(200, json={}))

    await provider.delete_account("user-1")

    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/admin/users/user-1"
    assert seen[0].headers["authorization"] == "Bearer service"


@pytest.mark.asyncio
async def test_delete_account_treats_missing_identity_as_deleted():
    provider, _ = _provider(lambda request: httpx.Response(404, json={"msg": "User not found"}))

    await provider.delete_account("user-1")


@pytest.mark.asyncio
async def test_delete_account_requires_service_key():
    provider, seen = _provider(lambda request: httpx.Response(200, json={}), service_key="")

    with pytest.raises(AdminClientUnavailable) as exc_info:
        await provider.delete_account("user-1")

    assert seen == []
    assert translate_provider_error(exc_info.value).code == "ADMIN_CLIENT_UNAVAILABLE"


@pytest.mark.asyncio
async def test_malformed_session_payload_is_rejected():
    provider, _ = _provider(lambda request: httpx.Response(200, json={"user": USER}))

    with pytest.raises(ProviderError):
        await provider.refresh_external_session("provider-refresh")


@pytest.mark.parametrize(
    ("message", "status_code", "code"),
    [
        ("User already registered", 422, "USER_EXISTS"),
        ("Email not confirmed", 400, "EMAIL_NOT_VERIFIED"),
        ("Password should be at least 6 characters", 422, "WEAK_PASSWORD"),
        ("Something unexpected", 500, "EXTERNAL_SERVICE_ERROR"),
    ],
)
def test_translate_provider_error(message, status_code, code):
    error = translate_provider_error(ProviderError(message, status_code=status_code))

    assert error.code == code
