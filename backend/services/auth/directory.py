"""Profile repository keyed by identity provider user id."""

from __future__ import annotations

from typing import Any, cast

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Profile

UPDATABLE_FIELDS = frozenset(
    {
        "email",
        "first_name",
        "last_name",
        "phone",
        "address",
        "city",
        "state",
        "postal_code",
        "country",
        "bio",
        "linkedin_url",
        "github_url",
        "portfolio_url",
        "profile_picture_url",
    }
)

# NOT NULL columns; an explicit null for one of these leaves the value unchanged.
REQUIRED_FIELDS = frozenset({"email", "first_name", "last_name"})


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def normalize_email(value: str) -> str:
    return value.strip().lower()


class AccountDirectory:
    """Thin async repository over the ``profiles`` table.

    Every mutating call commits on its own and rolls back before re-raising,
    so a failed write never leaves the session in a half-flushed state.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, data: dict[str, Any]) -> Profile:
        payload = dict(data)
        payload["email"] = normalize_email(payload["email"])
        profile = Profile(**payload)
        self.session.add(profile)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(profile)
        return profile

    async def find_by_id(self, user_id: str) -> Profile | None:
        return await self.session.get(Profile, user_id)

    async def find_by_email(self, email: str) -> Profile | None:
        lowered_email_column = cast(Any, func.lower(cast(Any, Profile.email)))
        result = await self.session.execute(
            select(Profile).where(_eq(lowered_email_column, normalize_email(email))).limit(1)
        )
        return result.scalar_one_or_none()

    async def exists(self, email: str) -> bool:
        return await self.find_by_email(email) is not None

    async def update(self, user_id: str, changes: dict[str, Any]) -> Profile | None:
        profile = await self.find_by_id(user_id)
        if profile is None:
            return None
        for field, value in changes.items():
            if field not in UPDATABLE_FIELDS:
                continue
            if value is None and field in REQUIRED_FIELDS:
                continue
            if field == "email" and value is not None:
                value = normalize_email(value)
            setattr(profile, field, value)
        self.session.add(profile)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(profile)
        return profile

    async def delete(self, user_id: str) -> bool:
        profile = await self.find_by_id(user_id)
        if profile is None:
            return False
        await self.session.delete(profile)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return True
