"""Core configuration and security primitives."""

from .config import settings
from .security import TokenDecodeError, TokenExpiredError, decode_token, encode_token

__all__ = [
    "settings",
    "encode_token",
    "decode_token",
    "TokenDecodeError",
    "TokenExpiredError",
]
