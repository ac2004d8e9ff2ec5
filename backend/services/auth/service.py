"""Identity and session lifecycle operations exposed to the HTTP layer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import status
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError

from core import settings
from db.errors import is_unique_violation

from .constants import (
    EMAIL_VERIFICATION_FAILED_MESSAGE,
    EMAIL_VERIFIED_MESSAGE,
    PASSWORD_RESET_MESSAGE,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    TOKEN_TYPE_ACCESS,
    ErrorCode,
)
from .directory import AccountDirectory
from .errors import (
    AuthError,
    external_service_error,
    invalid_credentials,
    translate_provider_error,
    user_not_found,
)
from .provider import CredentialProvider, ProviderError
from .registration import RegistrationSaga
from .schemas import (
    AuthResult,
    CreateAccountInput,
    Credentials,
    EmailConfirmation,
    ProfileRead,
    ProfileUpdate,
    RegistrationResult,
)
from .session_store import DeviceInfo, SessionStore
from .tokens import TokenPair, TokenPayload, TokenService
from .validators import (
    validate_account_status,
    validate_admin_exists,
    validate_admin_role,
    validate_email_uniqueness,
    validate_environment_config,
    validate_user_exists,
    validate_verification_type,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthService:
    def __init__(
        self,
        *,
        provider: CredentialProvider,
        directory: AccountDirectory,
        store: SessionStore,
        tokens: TokenService,
        timeout_seconds: float | None = None,
    ) -> None:
        self.provider = provider
        self.directory = directory
        self.store = store
        self.tokens = tokens
        self.timeout = timeout_seconds or settings.external_call_timeout_seconds

    async def _provider_call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Identity provider call timed out", extra={"timeout": self.timeout})
            raise external_service_error("request timed out") from exc
        except ProviderError as exc:
            raise translate_provider_error(exc) from exc

    # Registration and sign-in

    async def register(
        self,
        candidate: CreateAccountInput,
        device: DeviceInfo | None = None,
        email_redirect_to: str | None = None,
    ) -> RegistrationResult:
        saga = RegistrationSaga(
            self.provider,
            self.directory,
            self.store,
            timeout_seconds=self.timeout,
        )
        return await saga.run(
            candidate,
            ip_address=device.ip_address if device else None,
            email_redirect_to=email_redirect_to,
        )

    async def authenticate(
        self, credentials: Credentials, device: DeviceInfo | None = None
    ) -> AuthResult:
        """Exchange credentials for a token pair.

        Only ``active`` accounts receive tokens. An ``inactive`` account is
        promoted when the provider reports a confirmed email and refused
        otherwise; ``suspended`` accounts are refused before the provider is
        contacted.
        """
        profile = await validate_user_exists(self.directory, str(credentials.email))
        account_status = await self.store.get_account_status(profile.id)
        validate_account_status(account_status)

        provider_session = await self._provider_call(
            self.provider.verify_credentials(profile.email, credentials.password)
        )
        if provider_session.user.id != profile.id:
            logger.warning(
                "Identity provider returned a different user than the local profile",
                extra={"user_id": profile.id, "provider_user_id": provider_session.user.id},
            )
            raise invalid_credentials()

        if account_status == STATUS_INACTIVE:
            if provider_session.user.email_confirmed_at is None:
                raise AuthError(
                    status.HTTP_403_FORBIDDEN,
                    "Please verify your email address before signing in",
                    ErrorCode.EMAIL_NOT_VERIFIED,
                )
            await self.store.set_account_status(profile.id, STATUS_ACTIVE)
            logger.info("Activated account on first confirmed sign-in", extra={"user_id": profile.id})

        tokens = await self.tokens.issue(
            profile.id,
            profile.email,
            profile.role,
            device=device,
            provider_access_token=provider_session.access_token,
            provider_refresh_token=provider_session.refresh_token or None,
        )
        logger.info(
            "Signed in",
            extra={"user_id": profile.id, "session_id": tokens.session_id},
        )
        return AuthResult(profile=ProfileRead.model_validate(profile), tokens=tokens)

    async def admin_authenticate(
        self, credentials: Credentials, device: DeviceInfo | None = None
    ) -> AuthResult:
        await validate_admin_exists(self.directory, str(credentials.email))
        result = await self.authenticate(credentials, device)
        try:
            validate_admin_role(result.profile.role)
        except AuthError:
            # The role changed between the two lookups; drop the session just issued.
            await self.store.delete(result.profile.id, result.tokens.session_id)
            raise
        return result

    # Token lifecycle

    async def refresh(self, refresh_token: str) -> TokenPair:
        payload, pair = await self.tokens.rotate(refresh_token)
        await self._refresh_provider_session(payload)
        return pair

    async def _refresh_provider_session(self, payload: TokenPayload) -> None:
        """Keep the stored provider session alive; failures never fail the refresh."""
        try:
            session = await self.store.get(payload.sub, payload.sid)
            if session is None or not session.provider_refresh_token:
                return
            provider_session = await asyncio.wait_for(
                self.provider.refresh_external_session(session.provider_refresh_token),
                timeout=self.timeout,
            )
            await self.store.update(
                payload.sub,
                payload.sid,
                provider_access_token=provider_session.access_token,
                provider_refresh_token=provider_session.refresh_token or None,
            )
        except (ProviderError, AuthError, RedisError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Could not refresh identity provider session",
                extra={"user_id": payload.sub, "session_id": payload.sid},
                exc_info=exc,
            )

    async def sign_out(
        self,
        access_token: str | None,
        *,
        refresh_token: str | None = None,
        everywhere: bool = False,
    ) -> None:
        """Revoke the presented tokens and drop their session.

        Tolerates expired or missing tokens and never raises; cleanup that
        could not be completed is logged.
        """
        payload = self.tokens.decode_without_expiry(access_token) if access_token else None
        if payload is None and refresh_token:
            payload = self.tokens.decode_without_expiry(refresh_token)

        provider_access_token: str | None = None
        try:
            if payload is not None:
                session = await self.store.get(payload.sub, payload.sid)
                if session is not None:
                    provider_access_token = session.provider_access_token
            for token in (access_token, refresh_token):
                if token:
                    await self.tokens.revoke(token)
            if payload is not None:
                if everywhere:
                    await self.tokens.revoke_all(payload.sub)
                else:
                    await self.store.delete(payload.sub, payload.sid)
        except (RedisError, OSError) as exc:
            logger.warning(
                "Sign-out cleanup incomplete",
                extra={"user_id": payload.sub if payload else None},
                exc_info=exc,
            )

        if provider_access_token:
            try:
                await asyncio.wait_for(
                    self.provider.sign_out_external(provider_access_token),
                    timeout=self.timeout,
                )
            except (ProviderError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Identity provider sign-out failed",
                    extra={"user_id": payload.sub if payload else None},
                    exc_info=exc,
                )

        if payload is not None:
            logger.info(
                "Signed out",
                extra={"user_id": payload.sub, "session_id": payload.sid, "everywhere": everywhere},
            )

    async def current_user(self, access_token: str) -> ProfileRead:
        payload = await self.tokens.verify(access_token, expected_type=TOKEN_TYPE_ACCESS)
        return await self.get_profile(payload.sub)

    async def get_profile(self, user_id: str) -> ProfileRead:
        profile = await self.directory.find_by_id(user_id)
        if profile is None:
            raise user_not_found()
        return ProfileRead.model_validate(profile)

    # Password reset

    async def request_password_reset(self, email: str) -> str:
        """Send a reset link; the returned message never reveals whether the account exists."""
        frontend_url = validate_environment_config()
        profile = await self.directory.find_by_email(email)
        if profile is None:
            logger.info("Password reset requested for unknown email")
            return PASSWORD_RESET_MESSAGE
        await self._provider_call(
            self.provider.send_password_reset_email(
                profile.email, redirect_to=f"{frontend_url}/reset-password"
            )
        )
        logger.info("Password reset email requested", extra={"user_id": profile.id})
        return PASSWORD_RESET_MESSAGE

    async def complete_password_reset(self, token: str, new_password: str) -> None:
        try:
            user = await asyncio.wait_for(self.provider.get_user(token), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise external_service_error("request timed out") from exc
        except ProviderError as exc:
            if exc.status_code is not None and 400 <= exc.status_code < 500:
                raise AuthError(
                    status.HTTP_401_UNAUTHORIZED,
                    "Invalid or expired password reset session",
                    ErrorCode.INVALID_SESSION,
                ) from exc
            raise translate_provider_error(exc) from exc

        await self._provider_call(self.provider.set_new_password(token, new_password))
        dropped = await self.store.delete_all(user.id)
        logger.info("Password updated", extra={"user_id": user.id, "sessions_dropped": dropped})

    # Email confirmation

    async def confirm_email(self, token_hash: str, verification_type: str) -> EmailConfirmation:
        validate_verification_type(verification_type)
        try:
            user = await asyncio.wait_for(
                self.provider.verify_email_token(token_hash, verification_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise external_service_error("request timed out") from exc
        except ProviderError as exc:
            if exc.status_code is not None and 400 <= exc.status_code < 500:
                raise AuthError(
                    status.HTTP_400_BAD_REQUEST,
                    EMAIL_VERIFICATION_FAILED_MESSAGE,
                    ErrorCode.EMAIL_VERIFICATION_FAILED,
                ) from exc
            raise translate_provider_error(exc) from exc

        if user.email_confirmed_at is not None:
            profile = await self.directory.find_by_id(user.id)
            if profile is not None:
                await self.store.set_account_status(profile.id, STATUS_ACTIVE)
                logger.info("Email confirmed", extra={"user_id": profile.id})
                return EmailConfirmation(
                    verified=True,
                    message=EMAIL_VERIFIED_MESSAGE,
                    profile=ProfileRead.model_validate(profile),
                )

        return EmailConfirmation(verified=False, message=EMAIL_VERIFICATION_FAILED_MESSAGE)

    # Profile management

    async def update_profile(self, user_id: str, changes: ProfileUpdate) -> ProfileRead:
        data = changes.model_dump(exclude_unset=True, exclude={"role"})
        if data.get("email"):
            await validate_email_uniqueness(self.directory, str(data["email"]), user_id)
        try:
            profile = await self.directory.update(user_id, data)
        except IntegrityError as exc:
            if is_unique_violation(exc, column="email"):
                raise AuthError(
                    status.HTTP_409_CONFLICT,
                    "Email is already in use by another account",
                    ErrorCode.EMAIL_IN_USE,
                ) from exc
            raise
        if profile is None:
            raise user_not_found()
        return ProfileRead.model_validate(profile)

    async def delete_account(self, user_id: str) -> None:
        """Remove the profile, the identity record and every session."""
        if not await self.directory.delete(user_id):
            raise user_not_found()
        try:
            await self._provider_call(self.provider.delete_account(user_id))
        except AuthError:
            logger.warning(
                "Profile deleted but identity record remains; manual cleanup required",
                extra={"user_id": user_id},
            )
            raise
        finally:
            await self.store.delete_all(user_id)
            await self.store.clear_account_status(user_id)
        logger.info("Deleted account", extra={"user_id": user_id})
