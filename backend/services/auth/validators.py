"""Domain policy checks that run ahead of any side-effecting call.

Each check either returns (optionally with the record it looked up) or raises
an :class:`AuthError` carrying the precise failure code.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import status

from core import settings
from models import ROLE_ADMIN, Profile

from .constants import STATUS_SUSPENDED, VERIFICATION_TYPES, ErrorCode
from .directory import AccountDirectory, normalize_email
from .errors import AuthError, invalid_credentials
from .schemas import CreateAccountInput
from .session_store import SessionStore


def email_domain(email: str) -> str:
    return normalize_email(email).rsplit("@", 1)[-1]


def validate_email_domain(email: str, blocked_domains: Iterable[str] | None = None) -> None:
    blocked = {
        domain.strip().lower()
        for domain in (blocked_domains if blocked_domains is not None else settings.blocked_email_domains)
    }
    if email_domain(email) in blocked:
        raise AuthError(
            status.HTTP_400_BAD_REQUEST,
            "Email domain not allowed for registration",
            ErrorCode.BLOCKED_DOMAIN,
        )


def validate_role_assignment(role: str | None) -> None:
    if role == ROLE_ADMIN:
        raise AuthError(
            status.HTTP_403_FORBIDDEN,
            "Admin role cannot be assigned during registration",
            ErrorCode.INVALID_ROLE_ASSIGNMENT,
        )


async def validate_registration_rate_limit(
    store: SessionStore,
    ip_address: str | None,
    *,
    limit: int | None = None,
) -> None:
    # Requests without a resolvable client address are not counted.
    if not ip_address:
        return
    max_attempts = limit or settings.registration_rate_limit
    attempts = await store.hit_registration_counter(ip_address)
    if attempts > max_attempts:
        raise AuthError(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many registration attempts. Please try again later.",
            ErrorCode.REGISTRATION_RATE_LIMIT,
        )


async def validate_user_does_not_exist(directory: AccountDirectory, email: str) -> None:
    if await directory.exists(email):
        raise AuthError(
            status.HTTP_409_CONFLICT,
            "User with this email already exists",
            ErrorCode.USER_EXISTS,
        )


async def validate_signup_business_rules(
    candidate: CreateAccountInput,
    *,
    directory: AccountDirectory,
    store: SessionStore,
    ip_address: str | None = None,
) -> None:
    """Run every signup rule, cheapest first: rate limit, domain, role, existing user."""
    await validate_registration_rate_limit(store, ip_address)
    validate_email_domain(str(candidate.email))
    validate_role_assignment(candidate.role)
    await validate_user_does_not_exist(directory, str(candidate.email))


async def validate_email_uniqueness(
    directory: AccountDirectory, email: str, current_user_id: str
) -> None:
    existing = await directory.find_by_email(email)
    if existing is not None and existing.id != current_user_id:
        raise AuthError(
            status.HTTP_409_CONFLICT,
            "Email is already in use by another account",
            ErrorCode.EMAIL_IN_USE,
        )


async def validate_user_exists(directory: AccountDirectory, email: str) -> Profile:
    """Sign-in precondition; a missing profile looks exactly like a bad password."""
    profile = await directory.find_by_email(email)
    if profile is None:
        raise invalid_credentials()
    return profile


async def validate_admin_exists(directory: AccountDirectory, email: str) -> Profile:
    profile = await directory.find_by_email(email)
    if profile is None or profile.role != ROLE_ADMIN:
        raise AuthError(
            status.HTTP_401_UNAUTHORIZED,
            "Invalid admin credentials",
            ErrorCode.INVALID_ADMIN_CREDENTIALS,
        )
    return profile


def validate_admin_role(role: str) -> None:
    if role != ROLE_ADMIN:
        raise AuthError(
            status.HTTP_403_FORBIDDEN,
            "Admin access required",
            ErrorCode.ADMIN_ACCESS_REQUIRED,
        )


def validate_account_status(account_status: str) -> None:
    if account_status == STATUS_SUSPENDED:
        raise AuthError(
            status.HTTP_403_FORBIDDEN,
            "Account is suspended. Contact support for assistance.",
            ErrorCode.ACCOUNT_SUSPENDED,
        )


def validate_verification_type(verification_type: str) -> None:
    if verification_type not in VERIFICATION_TYPES:
        raise AuthError(
            status.HTTP_400_BAD_REQUEST,
            f"Unsupported verification type: {verification_type}",
            ErrorCode.UNSUPPORTED_VERIFICATION_TYPE,
        )


def validate_environment_config() -> str:
    """Return the frontend URL password-reset links point at."""
    if not settings.frontend_url:
        raise AuthError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Password reset configuration error",
            ErrorCode.CONFIG_ERROR,
        )
    return settings.frontend_url.rstrip("/")
