"""Signup across the identity provider and the local profile table.

The two systems share no transaction, so registration runs as an ordered list
of steps. When a step fails, the steps that already completed are undone in
reverse order. Compensations are idempotent and best-effort: a compensation
that fails is logged and the original failure is still what the caller sees.
Whatever a failed compensation leaves behind has to be reconciled out of band.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from fastapi import status
from sqlalchemy.exc import IntegrityError

from core import settings
from db.errors import is_unique_violation
from models import ROLE_USER, Profile

from .constants import REGISTRATION_SUCCESS_MESSAGE, STATUS_INACTIVE, ErrorCode
from .directory import AccountDirectory
from .errors import AuthError, external_service_error, translate_provider_error
from .provider import CredentialProvider, ProviderError, ProviderUser
from .schemas import CreateAccountInput, ProfileRead, RegistrationResult
from .session_store import SessionStore
from .validators import validate_signup_business_rules

logger = logging.getLogger(__name__)

PROVIDER_METADATA_FIELDS = ("phone", "city", "state", "country")


@dataclass
class RegistrationContext:
    candidate: CreateAccountInput
    ip_address: str | None = None
    email_redirect_to: str | None = None
    identity: ProviderUser | None = None
    profile: Profile | None = None
    completed: list[str] = field(default_factory=list)


StepCallable = Callable[[RegistrationContext], Awaitable[None]]


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: StepCallable
    compensation: StepCallable | None = None


def build_provider_metadata(candidate: CreateAccountInput) -> dict[str, str | None]:
    metadata: dict[str, str | None] = {
        "first_name": candidate.first_name,
        "last_name": candidate.last_name,
        "full_name": f"{candidate.first_name} {candidate.last_name}",
        "role": ROLE_USER,
    }
    for name in PROVIDER_METADATA_FIELDS:
        metadata[name] = getattr(candidate, name)
    return metadata


def build_profile_data(candidate: CreateAccountInput, user_id: str) -> dict[str, object]:
    data = candidate.model_dump(exclude={"password", "role"}, exclude_none=True)
    data["id"] = user_id
    # Signup never grants anything but the base role.
    data["role"] = ROLE_USER
    return data


def default_email_redirect() -> str | None:
    if not settings.frontend_url:
        return None
    return f"{settings.frontend_url.rstrip('/')}/auth/confirm"


class RegistrationSaga:
    def __init__(
        self,
        provider: CredentialProvider,
        directory: AccountDirectory,
        store: SessionStore,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self.provider = provider
        self.directory = directory
        self.store = store
        self.timeout = timeout_seconds or settings.external_call_timeout_seconds

    @property
    def steps(self) -> list[SagaStep]:
        return [
            SagaStep("validate", self._validate),
            SagaStep("create_identity", self._create_identity, self._delete_identity),
            SagaStep("create_profile", self._create_profile, self._delete_profile),
            SagaStep("set_status", self._set_status),
        ]

    async def run(
        self,
        candidate: CreateAccountInput,
        *,
        ip_address: str | None = None,
        email_redirect_to: str | None = None,
    ) -> RegistrationResult:
        context = RegistrationContext(
            candidate=candidate,
            ip_address=ip_address,
            email_redirect_to=email_redirect_to or default_email_redirect(),
        )
        completed: list[SagaStep] = []

        for step in self.steps:
            try:
                await asyncio.wait_for(step.action(context), timeout=self.timeout)
            except Exception as exc:
                await self._compensate(completed, context, failed_step=step.name)
                raise self._failure_for(step.name, exc) from exc
            completed.append(step)
            context.completed.append(step.name)

        if context.profile is None:
            raise AuthError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Registration failed unexpectedly. Please try again.",
                ErrorCode.REGISTRATION_FAILED,
            )
        logger.info(
            "Registered account",
            extra={"user_id": context.profile.id, "steps": context.completed},
        )
        return RegistrationResult(
            profile=ProfileRead.model_validate(context.profile),
            message=REGISTRATION_SUCCESS_MESSAGE,
        )

    async def _compensate(
        self,
        completed: list[SagaStep],
        context: RegistrationContext,
        *,
        failed_step: str,
    ) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            user_id = context.identity.id if context.identity else None
            try:
                await asyncio.wait_for(step.compensation(context), timeout=self.timeout)
            except Exception as exc:
                logger.warning(
                    "Registration compensation failed; manual cleanup required",
                    extra={"step": step.name, "failed_step": failed_step, "user_id": user_id},
                    exc_info=exc,
                )
                continue
            logger.info(
                "Registration step compensated",
                extra={"step": step.name, "failed_step": failed_step, "user_id": user_id},
            )

    def _failure_for(self, step_name: str, exc: Exception) -> AuthError:
        if isinstance(exc, AuthError):
            return exc
        if isinstance(exc, ProviderError):
            return translate_provider_error(exc)
        if isinstance(exc, asyncio.TimeoutError) and step_name == "create_identity":
            return external_service_error("request timed out")
        if step_name == "create_profile":
            if isinstance(exc, IntegrityError) and is_unique_violation(exc, column="email"):
                return AuthError(
                    status.HTTP_409_CONFLICT,
                    "User with this email already exists",
                    ErrorCode.USER_EXISTS,
                )
            logger.warning("Profile creation failed", extra={"step": step_name}, exc_info=exc)
            return AuthError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Registration failed due to profile error. Please try again.",
                ErrorCode.PROFILE_CREATION_FAILED,
            )
        logger.warning("Registration step failed", extra={"step": step_name}, exc_info=exc)
        return AuthError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Registration failed unexpectedly. Please try again.",
            ErrorCode.REGISTRATION_FAILED,
        )

    # Steps

    async def _validate(self, context: RegistrationContext) -> None:
        await validate_signup_business_rules(
            context.candidate,
            directory=self.directory,
            store=self.store,
            ip_address=context.ip_address,
        )

    async def _create_identity(self, context: RegistrationContext) -> None:
        candidate = context.candidate
        context.identity = await self.provider.create_account(
            str(candidate.email),
            candidate.password,
            metadata=build_provider_metadata(candidate),
            redirect_to=context.email_redirect_to,
        )

    async def _delete_identity(self, context: RegistrationContext) -> None:
        if context.identity is None:
            return
        await self.provider.delete_account(context.identity.id)

    async def _create_profile(self, context: RegistrationContext) -> None:
        if context.identity is None:
            raise ProviderError("Identity provider did not return a user id")
        context.profile = await self.directory.create(
            build_profile_data(context.candidate, context.identity.id)
        )

    async def _delete_profile(self, context: RegistrationContext) -> None:
        if context.profile is None:
            return
        await self.directory.delete(context.profile.id)

    async def _set_status(self, context: RegistrationContext) -> None:
        if context.profile is None:
            raise RuntimeError("Profile missing before status assignment")
        await self.store.set_account_status(context.profile.id, STATUS_INACTIVE)
