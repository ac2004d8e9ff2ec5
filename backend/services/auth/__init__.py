"""Identity and session lifecycle services."""

from .cookies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    bearer_token,
    clear_token_cookies,
    set_token_cookies,
)
from .directory import AccountDirectory, normalize_email
from .errors import AuthError, translate_provider_error
from .provider import (
    AdminClientUnavailable,
    CredentialProvider,
    GoTrueCredentialProvider,
    ProviderError,
    ProviderSession,
    ProviderTimeout,
    ProviderUser,
)
from .registration import RegistrationSaga, SagaStep
from .schemas import (
    AuthResult,
    CreateAccountInput,
    Credentials,
    EmailConfirmation,
    NewPassword,
    ProfileRead,
    ProfileUpdate,
    RegistrationResult,
)
from .service import AuthService
from .session_store import DeviceInfo, SessionData, SessionStore
from .tokens import TokenPair, TokenPayload, TokenService

__all__ = [
    "ACCESS_COOKIE",
    "REFRESH_COOKIE",
    "bearer_token",
    "clear_token_cookies",
    "set_token_cookies",
    "AccountDirectory",
    "normalize_email",
    "AuthError",
    "translate_provider_error",
    "AdminClientUnavailable",
    "CredentialProvider",
    "GoTrueCredentialProvider",
    "ProviderError",
    "ProviderSession",
    "ProviderTimeout",
    "ProviderUser",
    "RegistrationSaga",
    "SagaStep",
    "AuthResult",
    "CreateAccountInput",
    "Credentials",
    "EmailConfirmation",
    "NewPassword",
    "ProfileRead",
    "ProfileUpdate",
    "RegistrationResult",
    "AuthService",
    "DeviceInfo",
    "SessionData",
    "SessionStore",
    "TokenPair",
    "TokenPayload",
    "TokenService",
]
