"""Maintenance script that removes session and blacklist keys without a TTL.

Every key the store writes carries an expiry. Keys that lost it (manual
edits, restores from a snapshot) would otherwise live forever.

Usage:
    uv run python scripts/cleanup_sessions.py

Environment overrides:
    SESSION_CLEANUP_MAX_ELAPSED_SECONDS=60
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from time import perf_counter

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from services.auth.session_store import SessionStore  # noqa: E402
from services.cache import SupportsKeyValueCache, get_redis_client  # noqa: E402

MAX_ELAPSED_SECONDS_ENV = "SESSION_CLEANUP_MAX_ELAPSED_SECONDS"
DEFAULT_MAX_ELAPSED_SECONDS = 60


def _parse_positive_int(raw_value: str | None, *, default: int, label: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{label} must be positive")
    return parsed


async def run(redis_client: SupportsKeyValueCache | None = None) -> int:
    max_elapsed_seconds = _parse_positive_int(
        os.getenv(MAX_ELAPSED_SECONDS_ENV),
        default=DEFAULT_MAX_ELAPSED_SECONDS,
        label=MAX_ELAPSED_SECONDS_ENV,
    )
    store = SessionStore(redis_client or get_redis_client())

    started_at = perf_counter()
    cleaned = await asyncio.wait_for(store.cleanup_unexpiring_keys(), timeout=max_elapsed_seconds)
    elapsed_ms = int((perf_counter() - started_at) * 1000)
    print(f"Session cleanup complete: keys_deleted={cleaned}, elapsed_ms={elapsed_ms}")
    return cleaned


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
