"""Typed authentication failures and provider error translation."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from .constants import ErrorCode
from .provider import AdminClientUnavailable, ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)


class AuthError(HTTPException):
    """HTTP-mappable failure carrying a stable machine-readable code."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        **extra: Any,
    ) -> None:
        super().__init__(
            status_code=status_code,
            detail={"code": code, "message": message, **extra},
        )
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def invalid_credentials() -> AuthError:
    return AuthError(
        status.HTTP_401_UNAUTHORIZED,
        "Invalid email or password",
        ErrorCode.INVALID_CREDENTIALS,
    )


def user_not_found() -> AuthError:
    return AuthError(
        status.HTTP_404_NOT_FOUND,
        "User profile not found",
        ErrorCode.USER_NOT_FOUND,
    )


def external_service_error(message: str) -> AuthError:
    return AuthError(
        status.HTTP_502_BAD_GATEWAY,
        f"Authentication service error: {message}",
        ErrorCode.EXTERNAL_SERVICE_ERROR,
    )


def translate_provider_error(error: ProviderError) -> AuthError:
    """Map a provider failure onto the closest known taxonomy entry."""
    if isinstance(error, AdminClientUnavailable):
        return AuthError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Admin operations not available. Service role key not configured.",
            ErrorCode.ADMIN_CLIENT_UNAVAILABLE,
        )
    if isinstance(error, ProviderTimeout):
        return external_service_error("request timed out")

    message = error.message.lower()
    if "already registered" in message or "already been registered" in message:
        return AuthError(
            status.HTTP_409_CONFLICT,
            "User with this email already exists",
            ErrorCode.USER_EXISTS,
        )
    if "invalid login credentials" in message:
        return invalid_credentials()
    if "email not confirmed" in message:
        return AuthError(
            status.HTTP_403_FORBIDDEN,
            "Please verify your email address before signing in",
            ErrorCode.EMAIL_NOT_VERIFIED,
        )
    if "password" in message:
        return AuthError(
            status.HTTP_400_BAD_REQUEST,
            "Password does not meet requirements",
            ErrorCode.WEAK_PASSWORD,
        )

    logger.warning(
        "Unrecognized identity provider error",
        extra={"provider_status": error.status_code, "provider_message": error.message},
    )
    return external_service_error(error.message)
