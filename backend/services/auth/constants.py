"""Shared constants for the identity and session lifecycle."""

from __future__ import annotations

from typing import Literal

from models import ROLE_ADMIN, ROLE_USER

AccountStatus = Literal["inactive", "active", "suspended"]
TokenType = Literal["access", "refresh"]

STATUS_INACTIVE: AccountStatus = "inactive"
STATUS_ACTIVE: AccountStatus = "active"
STATUS_SUSPENDED: AccountStatus = "suspended"
ACCOUNT_STATUSES = frozenset({STATUS_INACTIVE, STATUS_ACTIVE, STATUS_SUSPENDED})

TOKEN_TYPE_ACCESS: TokenType = "access"
TOKEN_TYPE_REFRESH: TokenType = "refresh"

USER_ROLES = frozenset({ROLE_USER, ROLE_ADMIN})

VERIFICATION_TYPES = frozenset({"signup", "email"})

SESSION_KEY_PREFIX = "session:user:"
BLACKLIST_KEY_PREFIX = "blacklist:token:"
ACCOUNT_STATUS_KEY_PREFIX = "account:status:"
REGISTRATION_RATE_KEY_PREFIX = "rate:limit:registration:"

REGISTRATION_SUCCESS_MESSAGE = (
    "Registration successful. Please check your email to confirm your account."
)
PASSWORD_RESET_MESSAGE = (
    "If an account exists for that email, a password reset link has been sent."
)
EMAIL_VERIFIED_MESSAGE = "Email verified successfully. Your account is now active."
EMAIL_VERIFICATION_FAILED_MESSAGE = "Email verification failed. Please try again."


class ErrorCode:
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_ADMIN_CREDENTIALS = "INVALID_ADMIN_CREDENTIALS"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ADMIN_ACCESS_REQUIRED = "ADMIN_ACCESS_REQUIRED"

    USER_EXISTS = "USER_EXISTS"
    BLOCKED_DOMAIN = "BLOCKED_DOMAIN"
    INVALID_ROLE_ASSIGNMENT = "INVALID_ROLE_ASSIGNMENT"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    REGISTRATION_RATE_LIMIT = "REGISTRATION_RATE_LIMIT"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    ADMIN_CLIENT_UNAVAILABLE = "ADMIN_CLIENT_UNAVAILABLE"
    CONFIG_ERROR = "CONFIG_ERROR"

    USER_NOT_FOUND = "USER_NOT_FOUND"
    PROFILE_CREATION_FAILED = "PROFILE_CREATION_FAILED"
    EMAIL_IN_USE = "EMAIL_IN_USE"

    TOKEN_REVOKED = "TOKEN_REVOKED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_SESSION = "INVALID_SESSION"

    EMAIL_VERIFICATION_FAILED = "EMAIL_VERIFICATION_FAILED"
    UNSUPPORTED_VERIFICATION_TYPE = "UNSUPPORTED_VERIFICATION_TYPE"
    MISSING_VERIFICATION_PARAMS = "MISSING_VERIFICATION_PARAMS"

    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    PASSWORD_UPDATE_FAILED = "PASSWORD_UPDATE_FAILED"
    ACCOUNT_DELETION_FAILED = "ACCOUNT_DELETION_FAILED"
