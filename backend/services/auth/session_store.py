"""Redis-backed session, blacklist and account-status store.

Every value lives in Redis with a TTL, so no process keeps authoritative
state in memory and all API workers observe the same sessions.

Session cap enforcement is check-then-evict-then-create without a lock.
Concurrent sign-ins for one user can push the count above the cap by the
number of racing requests; the next creation evicts the surplus.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from fastapi import status
from pydantic import BaseModel, ValidationError

from core import settings
from services.cache import SupportsKeyValueCache

from .constants import (
    ACCOUNT_STATUS_KEY_PREFIX,
    ACCOUNT_STATUSES,
    BLACKLIST_KEY_PREFIX,
    REGISTRATION_RATE_KEY_PREFIX,
    SESSION_KEY_PREFIX,
    STATUS_ACTIVE,
    STATUS_SUSPENDED,
    AccountStatus,
    ErrorCode,
)
from .errors import AuthError

logger = logging.getLogger(__name__)

BLACKLIST_MARKER = "blacklisted"


class DeviceInfo(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None


class SessionData(BaseModel):
    user_id: str
    email: str
    role: str
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: float = 0.0
    last_activity: float = 0.0
    provider_access_token: str | None = None
    provider_refresh_token: str | None = None
    session_id: str | None = None


def _session_key(user_id: str, session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{user_id}:{session_id}"


def _session_pattern(user_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{user_id}:*"


class SessionStore:
    def __init__(
        self,
        redis_client: SupportsKeyValueCache,
        *,
        session_ttl_seconds: int | None = None,
        max_concurrent_sessions: int | None = None,
        account_status_ttl_seconds: int | None = None,
        registration_window_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis_client
        self.session_ttl = session_ttl_seconds or settings.session_ttl_seconds
        self.max_sessions = max_concurrent_sessions or settings.max_concurrent_sessions
        self.status_ttl = account_status_ttl_seconds or settings.account_status_ttl_seconds
        self.registration_window = (
            registration_window_seconds or settings.registration_rate_window_seconds
        )
        self._clock = clock

    # Sessions

    async def create(self, data: SessionData) -> str:
        """Store a new session and return its id, evicting the least recently active at the cap."""
        await self.enforce_session_limit(data.user_id)

        session_id = f"sess_{uuid4().hex}"
        now = self._clock()
        record = data.model_copy(
            update={
                "session_id": session_id,
                "created_at": data.created_at or now,
                "last_activity": now,
            }
        )
        await self.redis.set(
            _session_key(data.user_id, session_id),
            record.model_dump_json(),
            ex=self.session_ttl,
        )
        logger.info(
            "Created session",
            extra={"user_id": data.user_id, "session_id": session_id},
        )
        return session_id

    async def get(self, user_id: str, session_id: str) -> SessionData | None:
        """Load a session and renew its TTL and last activity."""
        key = _session_key(user_id, session_id)
        record = self._parse(await self.redis.get(key), session_id)
        if record is None:
            return None
        record.last_activity = self._clock()
        await self.redis.set(key, record.model_dump_json(), ex=self.session_ttl)
        return record

    async def update(self, user_id: str, session_id: str, **changes: Any) -> SessionData:
        key = _session_key(user_id, session_id)
        record = self._parse(await self.redis.get(key), session_id)
        if record is None:
            raise AuthError(
                status.HTTP_404_NOT_FOUND,
                "Session not found",
                ErrorCode.SESSION_NOT_FOUND,
            )
        updated = record.model_copy(update=changes)
        await self.redis.set(key, updated.model_dump_json(), ex=self.session_ttl)
        return updated

    async def delete(self, user_id: str, session_id: str) -> None:
        await self.redis.delete(_session_key(user_id, session_id))

    async def delete_all(self, user_id: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=_session_pattern(user_id))]
        if not keys:
            return 0
        deleted = await self.redis.delete(*keys)
        logger.info("Deleted all sessions", extra={"user_id": user_id, "count": deleted})
        return int(deleted)

    async def list_sessions(self, user_id: str) -> list[SessionData]:
        sessions: list[SessionData] = []
        async for key in self.redis.scan_iter(match=_session_pattern(user_id)):
            session_id = key.rsplit(":", 1)[-1]
            record = self._parse(await self.redis.get(key), session_id)
            if record is not None:
                sessions.append(record)
        return sessions

    async def enforce_session_limit(self, user_id: str) -> None:
        sessions = await self.list_sessions(user_id)
        surplus = len(sessions) - self.max_sessions + 1
        if surplus <= 0:
            return
        by_activity = sorted(sessions, key=lambda record: record.last_activity)
        for record in by_activity[:surplus]:
            if record.session_id is None:
                continue
            await self.delete(user_id, record.session_id)
            logger.info(
                "Evicted least recently active session",
                extra={"user_id": user_id, "session_id": record.session_id},
            )

    def _parse(self, raw: Any, session_id: str) -> SessionData | None:
        if not raw:
            return None
        try:
            record = SessionData.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed session record", extra={"session_id": session_id})
            return None
        record.session_id = session_id
        return record

    # Token blacklist

    async def blacklist_token(self, token_id: str, expires_at: int) -> bool:
        """Blacklist ``token_id`` until ``expires_at``.

        Returns False when the token was already blacklisted. Tokens that are
        already past ``expires_at`` need no entry and report True.
        """
        now = self._clock()
        if expires_at <= now:
            return True
        ttl = math.ceil(expires_at - now)
        created = await self.redis.set(
            f"{BLACKLIST_KEY_PREFIX}{token_id}",
            BLACKLIST_MARKER,
            ex=ttl,
            nx=True,
        )
        return bool(created)

    async def is_token_blacklisted(self, token_id: str) -> bool:
        return bool(await self.redis.exists(f"{BLACKLIST_KEY_PREFIX}{token_id}"))

    # Account status

    async def set_account_status(self, user_id: str, account_status: AccountStatus) -> None:
        if account_status not in ACCOUNT_STATUSES:
            raise ValueError(f"Unknown account status: {account_status}")
        await self.redis.set(
            f"{ACCOUNT_STATUS_KEY_PREFIX}{user_id}",
            account_status,
            ex=self.status_ttl,
        )

    async def get_account_status(self, user_id: str) -> AccountStatus:
        value = await self.redis.get(f"{ACCOUNT_STATUS_KEY_PREFIX}{user_id}")
        if value is None:
            return STATUS_ACTIVE
        if value not in ACCOUNT_STATUSES:
            logger.warning(
                "Unknown account status stored; treating as suspended",
                extra={"user_id": user_id},
            )
            return STATUS_SUSPENDED
        return value

    async def clear_account_status(self, user_id: str) -> None:
        await self.redis.delete(f"{ACCOUNT_STATUS_KEY_PREFIX}{user_id}")

    # Registration rate counter

    async def hit_registration_counter(self, ip_address: str) -> int:
        key = f"{REGISTRATION_RATE_KEY_PREFIX}{ip_address}"
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, self.registration_window)
        return int(count)

    # Maintenance

    async def cleanup_unexpiring_keys(self) -> int:
        """Delete session and blacklist keys that have no TTL attached."""
        cleaned = 0
        for prefix in (SESSION_KEY_PREFIX, BLACKLIST_KEY_PREFIX):
            async for key in self.redis.scan_iter(match=f"{prefix}*"):
                if await self.redis.ttl(key) == -1:
                    await self.redis.delete(key)
                    cleaned += 1
        return cleaned
