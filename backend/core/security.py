"""JWT signing and decoding helpers."""

from __future__ import annotations

from typing import Any

import jwt

from .config import settings

REQUIRED_CLAIMS = ["sub", "sid", "jti", "type", "iat", "exp"]


class TokenDecodeError(ValueError):
    """Raised when a token is malformed, tampered with or fails claim checks."""


class TokenExpiredError(TokenDecodeError):
    """Raised when a structurally valid token is past its expiry."""


def encode_token(claims: dict[str, Any]) -> str:
    payload = {
        **claims,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, *, verify_exp: bool = True) -> dict[str, Any]:
    """Decode and validate a signed token.

    With ``verify_exp=False`` the signature is still checked but an expired
    token is accepted, which lets revocation work on tokens past their expiry.
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": REQUIRED_CLAIMS, "verify_exp": verify_exp},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpiredError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenDecodeError("Invalid token") from exc
