"""Tests for the compensating signup flow."""

from __future__ import annotations

import asyncio
import logging

import pytest
from sqlalchemy.exc import IntegrityError

from services.auth import (
    AccountDirectory,
    AuthError,
    CreateAccountInput,
    ProviderError,
    RegistrationSaga,
    SessionStore,
)
from services.auth.constants import ErrorCode
from services.auth.registration import build_profile_data, build_provider_metadata


def _candidate(email: str = "jane@example.com", **overrides) -> CreateAccountInput:
    payload = {
        "email": email,
        "password": "Str0ng!Pass",
        "first_name": "Jane",
        "last_name": "Doe",
        "city": "Lisbon",
    }
    payload.update(overrides)
    return CreateAccountInput(**payload)


@pytest.fixture()
def directory(db_session) -> AccountDirectory:
    return AccountDirectory(db_session)


@pytest.fixture()
def saga(identity_provider, directory: AccountDirectory, session_store: SessionStore) -> RegistrationSaga:
    return RegistrationSaga(identity_provider, directory, session_store, timeout_seconds=0.2)


def test_profile_data_never_carries_password_or_requested_role() -> None:
    data = build_profile_data(_candidate(role="user", bio="Engineer"), "user-1")

    assert data["id"] == "user-1"
    assert data["role"] == "user"
    assert data["bio"] == "Engineer"
    assert "password" not in data
    assert "phone" not in data


def test_provider_metadata_includes_names_and_contact_fields() -> None:
    metadata = build_provider_metadata(_candidate(phone="+15551234567"))

    assert metadata["full_name"] == "Jane Doe"
    assert metadata["role"] == "user"
    assert metadata["phone"] == "+15551234567"
    assert metadata["city"] == "Lisbon"


@pytest.mark.asyncio
async def test_successful_registration_creates_inactive_account(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, session_store: SessionStore
) -> None:
    result = await saga.run(_candidate("Jane@Example.com"), ip_address="203.0.113.4")

    assert result.email_confirmation_required is True
    assert result.profile.email == "jane@example.com"
    assert result.profile.full_name == "Jane Doe"

    identity = identity_provider.accounts["jane@example.com"]
    assert identity["id"] == result.profile.id
    assert identity["metadata"]["first_name"] == "Jane"

    stored = await directory.find_by_id(result.profile.id)
    assert stored is not None
    assert await session_store.get_account_status(result.profile.id) == "inactive"


@pytest.mark.asyncio
async def test_blocked_domain_makes_no_provider_call(saga: RegistrationSaga, identity_provider) -> None:
    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate("spam@mailinator.com"))

    assert exc_info.value.code == ErrorCode.BLOCKED_DOMAIN
    assert identity_provider.calls == []


@pytest.mark.asyncio
async def test_provider_duplicate_maps_to_user_exists(saga: RegistrationSaga, identity_provider) -> None:
    # The provider knows the address even though no local profile exists.
    await identity_provider.create_account("jane@example.com", "Str0ng!Pass")

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.USER_EXISTS
    assert "delete_account" not in identity_provider.calls


@pytest.mark.asyncio
async def test_profile_failure_removes_provider_identity(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, monkeypatch
) -> None:
    async def broken_create(data):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(directory, "create", broken_create)

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.PROFILE_CREATION_FAILED
    assert exc_info.value.status_code == 500
    assert identity_provider.calls == ["create_account", "delete_account"]
    assert identity_provider.accounts == {}


@pytest.mark.asyncio
async def test_concurrent_duplicate_profile_maps_to_user_exists(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, monkeypatch
) -> None:
    async def racing_create(data):
        raise IntegrityError(
            "INSERT INTO profiles",
            {},
            Exception("UNIQUE constraint failed: profiles.email"),
        )

    monkeypatch.setattr(directory, "create", racing_create)

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.USER_EXISTS
    assert identity_provider.accounts == {}


@pytest.mark.asyncio
async def test_failed_compensation_does_not_mask_original_error(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, monkeypatch, caplog
) -> None:
    async def broken_create(data):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(directory, "create", broken_create)
    identity_provider.failures["delete_account"] = ProviderError("admin API down", status_code=500)

    with caplog.at_level(logging.WARNING, logger="services.auth.registration"):
        with pytest.raises(AuthError) as exc_info:
            await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.PROFILE_CREATION_FAILED
    assert any("manual cleanup required" in record.getMessage() for record in caplog.records)
    # The orphaned identity stays behind for out-of-band reconciliation.
    assert "jane@example.com" in identity_provider.accounts


@pytest.mark.asyncio
async def test_status_failure_unwinds_profile_and_identity(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, monkeypatch
) -> None:
    async def broken_status(user_id, account_status):
        raise OSError("redis unreachable")

    monkeypatch.setattr(saga.store, "set_account_status", broken_status)

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.REGISTRATION_FAILED
    assert await directory.find_by_email("jane@example.com") is None
    assert identity_provider.accounts == {}


@pytest.mark.asyncio
async def test_slow_provider_times_out_without_compensation(
    saga: RegistrationSaga, identity_provider, monkeypatch
) -> None:
    async def slow_create(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(identity_provider, "create_account", slow_create)

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.EXTERNAL_SERVICE_ERROR
    assert exc_info.value.status_code == 502
    assert "delete_account" not in identity_provider.calls


@pytest.mark.asyncio
async def test_slow_profile_creation_removes_provider_identity(
    saga: RegistrationSaga, identity_provider, directory: AccountDirectory, monkeypatch
) -> None:
    async def slow_create(data):
        await asyncio.sleep(1)

    monkeypatch.setattr(directory, "create", slow_create)

    with pytest.raises(AuthError) as exc_info:
        await saga.run(_candidate())

    assert exc_info.value.code == ErrorCode.PROFILE_CREATION_FAILED
    assert identity_provider.calls == ["create_account", "delete_account"]
    assert identity_provider.accounts == {}
