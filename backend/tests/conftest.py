"""Pytest fixtures for the resume auth backend."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timezone
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from api.deps import get_db, get_identity_provider, get_redis, get_session_store
from app import create_app
from core.config import settings
from services import RateLimiter, set_rate_limiter
from services.auth import (
    AccountDirectory,
    AuthService,
    ProviderError,
    ProviderSession,
    ProviderUser,
    SessionStore,
    TokenService,
)


def _run_alembic_migrations(database_url: str) -> None:
    """Apply Alembic migrations to the given database URL."""
    backend_dir = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_dir / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(backend_dir / "alembic"))
    alembic_cfg.attributes["configure_logger"] = False

    original_database_url = settings.database_url
    try:
        settings.database_url = database_url
        command.upgrade(alembic_cfg, "head")
    finally:
        settings.database_url = original_database_url


class FakeClock:
    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else float(int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRedis:
    """Async key-value double honouring TTLs against an injectable clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.data: dict[str, Any] = {}
        self.expiry: dict[str, float] = {}
        self.fail_with: Exception | None = None
        self.delay: float = 0.0

    async def _guard(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= self.clock():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    async def get(self, key: str) -> Any:
        await self._guard()
        self._purge(key)
        return self.data.get(key)

    async def set(
        self, key: str, value: Any, ex: int | None = None, nx: bool = False
    ) -> bool | None:
        await self._guard()
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        await self._guard()
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        await self._guard()
        count = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                count += 1
        return count

    async def incr(self, key: str) -> int:
        await self._guard()
        self._purge(key)
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = value
        return value

    async def expire(self, key: str, ttl: int) -> bool:
        await self._guard()
        self._purge(key)
        if key not in self.data:
            return False
        self.expiry[key] = self.clock() + ttl
        return True

    async def ttl(self, key: str) -> int:
        await self._guard()
        self._purge(key)
        if key not in self.data:
            return -2
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return int(deadline - self.clock())

    async def scan_iter(self, match: str | None = None) -> AsyncIterator[str]:
        await self._guard()
        for key in list(self.data):
            self._purge(key)
            if key in self.data and (match is None or fnmatchcase(key, match)):
                yield key

    def break_connection(self) -> None:
        self.fail_with = RedisConnectionError("connection refused")


class InMemoryIdentityProvider:
    """Credential provider double keeping accounts in a dict."""

    def __init__(self, *, auto_confirm: bool = False) -> None:
        self.auto_confirm = auto_confirm
        self.accounts: dict[str, dict[str, Any]] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.verification_tokens: dict[str, str] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.reset_emails: list[tuple[str, str]] = []
        self.signed_out: list[str] = []
        self.deleted: list[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def _account_by_email(self, email: str) -> dict[str, Any] | None:
        return self.accounts.get(email.strip().lower())

    def _account_by_id(self, user_id: str) -> dict[str, Any] | None:
        for account in self.accounts.values():
            if account["id"] == user_id:
                return account
        return None

    @staticmethod
    def _user(account: dict[str, Any]) -> ProviderUser:
        return ProviderUser(
            id=account["id"],
            email=account["email"],
            email_confirmed_at=account["confirmed_at"],
        )

    def _session(self, account: dict[str, Any]) -> ProviderSession:
        access_token = f"provider-access-{uuid4().hex}"
        refresh_token = f"provider-refresh-{uuid4().hex}"
        self.access_tokens[access_token] = account["id"]
        self.refresh_tokens[refresh_token] = account["id"]
        return ProviderSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(time.time()) + 3600,
            user=self._user(account),
        )

    def confirm(self, email: str) -> None:
        account = self._account_by_email(email)
        assert account is not None
        account["confirmed_at"] = datetime.now(timezone.utc)

    def issue_verification_token(self, email: str) -> str:
        account = self._account_by_email(email)
        assert account is not None
        token_hash = uuid4().hex
        self.verification_tokens[token_hash] = account["id"]
        return token_hash

    def issue_recovery_token(self, email: str) -> str:
        account = self._account_by_email(email)
        assert account is not None
        return self._session(account).access_token

    async def create_account(
        self,
        email: str,
        password: str,
        *,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> ProviderUser:
        self._record("create_account")
        key = email.strip().lower()
        if key in self.accounts:
            raise ProviderError("User already registered", status_code=422)
        account = {
            "id": str(uuid4()),
            "email": key,
            "password": password,
            "metadata": metadata or {},
            "redirect_to": redirect_to,
            "confirmed_at": datetime.now(timezone.utc) if self.auto_confirm else None,
        }
        self.accounts[key] = account
        return self._user(account)

    async def verify_credentials(self, email: str, password: str) -> ProviderSession:
        self._record("verify_credentials")
        account = self._account_by_email(email)
        if account is None or account["password"] != password:
            raise ProviderError("Invalid login credentials", status_code=400)
        return self._session(account)

    async def refresh_external_session(self, refresh_token: str) -> ProviderSession:
        self._record("refresh_external_session")
        user_id = self.refresh_tokens.pop(refresh_token, None)
        account = self._account_by_id(user_id) if user_id else None
        if account is None:
            raise ProviderError("Invalid Refresh Token", status_code=400)
        return self._session(account)

    async def sign_out_external(self, access_token: str) -> None:
        self._record("sign_out_external")
        self.access_tokens.pop(access_token, None)
        self.signed_out.append(access_token)

    async def verify_email_token(self, token_hash: str, verification_type: str) -> ProviderUser:
        self._record("verify_email_token")
        user_id = self.verification_tokens.pop(token_hash, None)
        account = self._account_by_id(user_id) if user_id else None
        if account is None:
            raise ProviderError("Token has expired or is invalid", status_code=403)
        account["confirmed_at"] = datetime.now(timezone.utc)
        return self._user(account)

    async def send_password_reset_email(self, email: str, *, redirect_to: str) -> None:
        self._record("send_password_reset_email")
        self.reset_emails.append((email, redirect_to))

    async def get_user(self, access_token: str) -> ProviderUser:
        self._record("get_user")
        user_id = self.access_tokens.get(access_token)
        account = self._account_by_id(user_id) if user_id else None
        if account is None:
            raise ProviderError("invalid JWT", status_code=401)
        return self._user(account)

    async def set_new_password(self, access_token: str, password: str) -> None:
        self._record("set_new_password")
        user_id = self.access_tokens.get(access_token)
        account = self._account_by_id(user_id) if user_id else None
        if account is None:
            raise ProviderError("invalid JWT", status_code=401)
        account["password"] = password

    async def delete_account(self, user_id: str) -> None:
        self._record("delete_account")
        account = self._account_by_id(user_id)
        if account is not None:
            del self.accounts[account["email"]]
        self.deleted.append(user_id)


@pytest.fixture(scope="session")
def test_database_url(tmp_path_factory) -> str:
    """Create and migrate a file-backed SQLite database for tests."""
    db_dir = tmp_path_factory.mktemp("sqlite")
    db_path = db_dir / "backend-test.db"
    database_url = f"sqlite+aiosqlite:///{db_path}"
    _run_alembic_migrations(database_url)
    return database_url


@pytest.fixture(scope="session")
def test_engine(test_database_url: str):
    """Async engine bound to the migrated database; connections never outlive a test loop."""
    return create_async_engine(
        test_database_url,
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )


@pytest.fixture(scope="session")
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to the test engine."""
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def clean_database(session_maker) -> AsyncIterator[None]:
    """Clear tables before each test to guarantee isolation."""
    async with session_maker() as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            await session.execute(table.delete())
        await session.commit()
    yield


@pytest_asyncio.fixture()
async def db_session(session_maker) -> AsyncIterator[AsyncSession]:
    """Provide a raw database session to tests."""
    async with session_maker() as session:
        yield session


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_redis(clock: FakeClock) -> InMemoryRedis:
    return InMemoryRedis(clock)


@pytest.fixture()
def identity_provider() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture()
def session_store(fake_redis: InMemoryRedis, clock: FakeClock) -> SessionStore:
    return SessionStore(fake_redis, clock=clock)


@pytest.fixture()
def token_service(session_store: SessionStore) -> TokenService:
    return TokenService(session_store, state_timeout_seconds=0.5)


@pytest.fixture()
def auth_service(
    db_session: AsyncSession,
    identity_provider: InMemoryIdentityProvider,
    session_store: SessionStore,
    token_service: TokenService,
) -> AuthService:
    return AuthService(
        provider=identity_provider,
        directory=AccountDirectory(db_session),
        store=session_store,
        tokens=token_service,
        timeout_seconds=0.5,
    )


@pytest.fixture()
def app(
    session_maker,
    fake_redis: InMemoryRedis,
    identity_provider: InMemoryIdentityProvider,
    clock: FakeClock,
) -> Iterator[FastAPI]:
    """Create the FastAPI app with test doubles wired in through dependency overrides."""
    application = create_app()

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_redis] = lambda: fake_redis
    application.dependency_overrides[get_identity_provider] = lambda: identity_provider
    application.dependency_overrides[get_session_store] = lambda: SessionStore(
        fake_redis, clock=clock
    )
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an HTTPX async client bound to the FastAPI app."""
    transport = ASGITransport(app=app, client=("203.0.113.10", 50000))
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class _CountingRedis:
    def __init__(self) -> None:
        self.data: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        value = self.data.get(key, 0) + 1
        self.data[key] = value
        return value

    async def expire(self, key: str, ttl: int) -> None:  # pragma: no cover - noop
        return None


@pytest.fixture(autouse=True)
def _rate_limiter_stub() -> Iterator[None]:
    limiter = RateLimiter(_CountingRedis(), limit=1_000, window_seconds=60)
    set_rate_limiter(limiter)
    yield
    set_rate_limiter(None)
