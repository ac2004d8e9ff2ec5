"""Authentication endpoints."""

from __future__ import annotations

from typing import Any
from urllib.parse import unquote, urlsplit

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr, Field

from api.deps import (
    get_access_token,
    get_auth_service,
    get_current_user,
    get_device_info,
)
from core import settings
from services.auth import (
    REFRESH_COOKIE,
    AuthError,
    AuthResult,
    AuthService,
    CreateAccountInput,
    Credentials,
    DeviceInfo,
    EmailConfirmation,
    NewPassword,
    ProfileRead,
    ProfileUpdate,
    RegistrationResult,
    TokenPair,
    TokenPayload,
    bearer_token,
    clear_token_cookies,
    set_token_cookies,
)
from services.auth.constants import ErrorCode

router = APIRouter(prefix="/auth", tags=["auth"])

MAX_CALLBACK_PARAM_LENGTH = 512
# Redirect targets pointing back at auth endpoints would loop.
AUTH_PATH_MARKERS = ("/auth/", "/api/auth/", "/api/v1/auth/")


class SignupRequest(CreateAccountInput):
    email_redirect_to: str | None = Field(default=None, max_length=MAX_CALLBACK_PARAM_LENGTH)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class CallbackRequest(BaseModel):
    token_hash: str | None = Field(default=None, max_length=MAX_CALLBACK_PARAM_LENGTH)
    type: str | None = Field(default=None, max_length=50)
    next: str | None = Field(default=None, max_length=MAX_CALLBACK_PARAM_LENGTH)


class MessageResponse(BaseModel):
    detail: str


def _allowed_redirect_origins() -> set[str]:
    origins = {origin.rstrip("/") for origin in settings.cors_origins}
    if settings.frontend_url:
        origins.add(settings.frontend_url.rstrip("/"))
    return origins


def resolve_redirect_target(next_url: str | None) -> str | None:
    """Return a safe post-confirmation redirect target, or None to answer with JSON."""
    if not next_url:
        return None
    target = unquote(next_url).strip()
    if not target or any(marker in target for marker in AUTH_PATH_MARKERS):
        return None

    parts = urlsplit(target)
    if parts.scheme in {"http", "https"}:
        origin = f"{parts.scheme}://{parts.netloc}"
        return target if origin in _allowed_redirect_origins() else None
    if parts.scheme or parts.netloc or target.startswith("//"):
        return None
    return target if target.startswith("/") else f"/{target}"


def _provider_bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        raise AuthError(
            status.HTTP_401_UNAUTHORIZED,
            "Missing password reset session",
            ErrorCode.INVALID_SESSION,
        )
    return value.strip()


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=RegistrationResult)
async def signup(
    payload: SignupRequest,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
) -> RegistrationResult:
    candidate = CreateAccountInput.model_validate(
        payload.model_dump(exclude={"email_redirect_to"})
    )
    return await service.register(candidate, device, payload.email_redirect_to)


@router.post("/signin", response_model=AuthResult)
async def signin(
    payload: Credentials,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
) -> AuthResult:
    result = await service.authenticate(payload, device)
    set_token_cookies(response, result.tokens)
    return result


@router.post("/admin/signin", response_model=AuthResult)
async def admin_signin(
    payload: Credentials,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
) -> AuthResult:
    result = await service.admin_authenticate(payload, device)
    set_token_cookies(response, result.tokens)
    return result


async def _confirm(service: AuthService, params: CallbackRequest) -> Any:
    if not params.token_hash or not params.type:
        raise AuthError(
            status.HTTP_400_BAD_REQUEST,
            "Missing required verification parameters (token_hash and type)",
            ErrorCode.MISSING_VERIFICATION_PARAMS,
        )
    result: EmailConfirmation = await service.confirm_email(params.token_hash, params.type)
    if not result.verified:
        raise AuthError(
            status.HTTP_400_BAD_REQUEST,
            result.message,
            ErrorCode.EMAIL_VERIFICATION_FAILED,
        )
    target = resolve_redirect_target(params.next)
    if target is not None:
        return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
    return result


@router.get("/callback", response_model=EmailConfirmation)
async def callback(
    token_hash: str | None = Query(default=None, max_length=MAX_CALLBACK_PARAM_LENGTH),
    type: str | None = Query(default=None, max_length=50),
    next: str | None = Query(default=None, max_length=MAX_CALLBACK_PARAM_LENGTH),
    service: AuthService = Depends(get_auth_service),
) -> Any:
    return await _confirm(service, CallbackRequest(token_hash=token_hash, type=type, next=next))


@router.post("/callback", response_model=EmailConfirmation)
async def callback_post(
    request: Request,
    payload: CallbackRequest | None = Body(default=None),
    service: AuthService = Depends(get_auth_service),
) -> Any:
    # Query parameters win: provider redirects carry them in the URL.
    merged = (payload or CallbackRequest()).model_dump()
    for key in ("token_hash", "type", "next"):
        value = request.query_params.get(key)
        if value:
            merged[key] = value
    return await _confirm(service, CallbackRequest.model_validate(merged))


@router.post("/signout", response_model=MessageResponse)
async def signout(
    request: Request,
    response: Response,
    everywhere: bool = Query(default=False),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.sign_out(
        bearer_token(request),
        refresh_token=request.cookies.get(REFRESH_COOKIE),
        everywhere=everywhere,
    )
    clear_token_cookies(response)
    return MessageResponse(detail="Signed out successfully")


@router.post("/refresh", response_model=TokenPair)
async def refresh_tokens(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = Body(default=None),
    service: AuthService = Depends(get_auth_service),
) -> TokenPair:
    refresh_token = payload.refresh_token if payload else request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise AuthError(
            status.HTTP_401_UNAUTHORIZED,
            "Missing refresh token",
            ErrorCode.INVALID_REFRESH_TOKEN,
        )
    pair = await service.refresh(refresh_token)
    set_token_cookies(response, pair)
    return pair


@router.get("/me", response_model=ProfileRead)
async def read_me(
    token: str = Depends(get_access_token),
    service: AuthService = Depends(get_auth_service),
) -> ProfileRead:
    return await service.current_user(token)


@router.patch("/me", response_model=ProfileRead)
async def update_me(
    payload: ProfileUpdate,
    current_user: TokenPayload = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileRead:
    return await service.update_profile(current_user.sub, payload)


@router.delete("/me", response_model=MessageResponse)
async def delete_me(
    response: Response,
    current_user: TokenPayload = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.delete_account(current_user.sub)
    clear_token_cookies(response)
    return MessageResponse(detail="Account deleted successfully")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: PasswordResetRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    message = await service.request_password_reset(str(payload.email))
    return MessageResponse(detail=message)


@router.put("/update-password", response_model=MessageResponse)
async def update_password(
    request: Request,
    payload: NewPassword,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.complete_password_reset(_provider_bearer_token(request), payload.new_password)
    return MessageResponse(detail="Password updated successfully")
