"""Request and result models exchanged with the auth service."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .tokens import TokenPair

MAX_BIO_LENGTH = 1000
NAME_PATTERN = re.compile(r"^[A-Za-z\s'-]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{9,19}$")
PASSWORD_SPECIALS = "@$!%*?&"


def _check_password_strength(value: str) -> str:
    if not (
        any(char.islower() for char in value)
        and any(char.isupper() for char in value)
        and any(char.isdigit() for char in value)
        and any(char in PASSWORD_SPECIALS for char in value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            f"one number, and one special character ({PASSWORD_SPECIALS})"
        )
    return value


def _check_name(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized or not NAME_PATTERN.match(normalized):
        raise ValueError("Names can only contain letters, spaces, hyphens, and apostrophes")
    return normalized


def _check_phone(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not PHONE_PATTERN.match(normalized):
        raise ValueError("Please provide a valid phone number")
    return normalized


class ProfileFields(BaseModel):
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)
    bio: str | None = Field(default=None, max_length=MAX_BIO_LENGTH)
    linkedin_url: str | None = Field(default=None, max_length=512)
    github_url: str | None = Field(default=None, max_length=512)
    portfolio_url: str | None = Field(default=None, max_length=512)
    profile_picture_url: str | None = Field(default=None, max_length=512)

    @field_validator("phone")
    @classmethod
    def _validate_phone(cls, value: str | None) -> str | None:
        return _check_phone(value)


class CreateAccountInput(ProfileFields):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    # Accepted so the role rule can reject it explicitly instead of silently dropping it.
    role: Literal["user", "admin"] | None = None

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _check_password_strength(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _check_name(value) or value


class Credentials(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class ProfileUpdate(ProfileFields):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=50)
    last_name: str | None = Field(default=None, min_length=1, max_length=50)
    # Ignored by the directory; accepted so clients echoing the profile are not rejected.
    role: Literal["user", "admin"] | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _validate_name(cls, value: str | None) -> str | None:
        return _check_name(value)


class NewPassword(BaseModel):
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _check_password_strength(value)


class ProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    first_name: str
    last_name: str
    full_name: str
    role: str
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    bio: str | None = None
    linkedin_url: str | None = None
    github_url: str | None = None
    portfolio_url: str | None = None
    profile_picture_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RegistrationResult(BaseModel):
    profile: ProfileRead
    message: str
    email_confirmation_required: bool = True


class AuthResult(BaseModel):
    profile: ProfileRead
    tokens: TokenPair


class EmailConfirmation(BaseModel):
    verified: bool
    message: str
    profile: ProfileRead | None = None
