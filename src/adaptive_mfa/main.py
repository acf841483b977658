# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""AdaptiveMFA - Main Application Module."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from beartype import beartype
from fastapi import FastAPI

from . import __version__
from .api.v1 import router as v1_router
from .core.auth.components import AuthComponents, build_components
from .core.cache import Cache, CacheConfig
from .core.config import Settings, get_settings
from .core.database import Database
from .core.logging_utils import configure_logging
from .storage import InMemoryStorage, PostgresStorage
from .storage.base import Storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle - startup and shutdown."""
    if getattr(app.state, "components", None) is not None:
        # Components supplied by the caller own their resources.
        yield
        return

    settings: Settings = app.state.settings
    logger.info("Starting AdaptiveMFA in %s mode", settings.api_env)

    db: Database | None = None
    storage: Storage
    if settings.storage_backend == "postgres":
        db = Database(settings)
        await db.connect()
        storage = PostgresStorage(db)
        logger.info("Database connection pool initialized")
    else:
        storage = InMemoryStorage()
        logger.info("Using in-memory storage")

    cache: Cache | None = None
    if settings.risk_cache_enabled:
        cache = Cache(CacheConfig.from_settings(settings))
        await cache.connect()
        logger.info("Redis connection pool initialized")

    app.state.components = build_components(settings, storage, cache=cache)

    yield

    logger.info("Shutting down AdaptiveMFA")
    app.state.components = None
    if cache is not None:
        await cache.disconnect()
    await storage.close()
    if db is not None:
        await db.disconnect()


@beartype
def create_app(
    settings: Settings | None = None, components: AuthComponents | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to run with; the cached environment settings by default
        components: Prebuilt components; when given, the lifespan builds nothing

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or (components.settings if components else get_settings())
    configure_logging()

    app = FastAPI(
        title="AdaptiveMFA",
        description="Risk-adaptive multi-factor authentication",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = components

    app.include_router(v1_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint returning API information."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.api_env,
        }

    return app


@beartype
def main() -> None:
    """Run the main application entry point."""
    settings = get_settings()

    uvicorn.run(
        "adaptive_mfa.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level="info" if not settings.is_production else "error",
    )


if __name__ == "__main__":
    main()
