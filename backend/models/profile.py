"""Profile domain model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, func, text
from sqlmodel import Field, SQLModel

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class Profile(SQLModel, table=True):
    """Local account record keyed by the identity provider's user id."""

    __tablename__ = "profiles"

    # Never generated locally: always the identity provider's id.
    id: str = Field(sa_column=Column(String(36), primary_key=True))
    email: str = Field(
        sa_column=Column(String(255), unique=True, nullable=False, index=True)
    )
    first_name: str = Field(sa_column=Column(String(100), nullable=False))
    last_name: str = Field(sa_column=Column(String(100), nullable=False))
    role: str = Field(
        default=ROLE_USER,
        sa_column=Column(
            String(16),
            nullable=False,
            server_default=text(f"'{ROLE_USER}'"),
        ),
    )
    phone: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    address: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    city: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    state: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    postal_code: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    country: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    bio: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    linkedin_url: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    github_url: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    portfolio_url: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    profile_picture_url: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    created_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        ),
    )
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
