"""Database error helpers."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(error: IntegrityError, *, column: str | None = None) -> bool:
    """Return True when the IntegrityError is a unique-constraint conflict.

    When ``column`` is given the conflict must also mention it, so callers can
    tell a duplicate email apart from a duplicate primary key.
    """
    original = getattr(error, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    message = str(original or error).lower()
    if sqlstate != UNIQUE_VIOLATION_SQLSTATE and not (
        "duplicate key" in message or "unique constraint" in message
    ):
        return False
    return column is None or column.lower() in message


__all__ = ["is_unique_violation"]
