"""SQLModel models package."""

from .profile import ROLE_ADMIN, ROLE_USER, Profile

__all__ = ["Profile", "ROLE_USER", "ROLE_ADMIN"]
