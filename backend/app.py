"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import get_identity_provider
from api.v1 import auth
from core import settings
from core.logging import configure_logging
from services import RateLimitMiddleware, get_rate_limiter
from services.auth import GoTrueCredentialProvider

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting application", extra={"app_env": settings.app_env})
    yield
    provider = get_identity_provider()
    if isinstance(provider, GoTrueCredentialProvider):
        await provider.aclose()
    get_identity_provider.cache_clear()


def create_app() -> FastAPI:
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        RateLimitMiddleware,
        limiter_factory=get_rate_limiter,
        exempt_paths={"/health"},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(auth.router, prefix=API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
