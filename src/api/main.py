from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.api.middleware import authentication_middleware, correlation_id_middleware
from src.api.routes import register_routes
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.infrastructure.db.session import dispose_engine
from src.infrastructure.directory import DirectoryAuthenticator
from src.infrastructure.reset_tokens import ResetTokenStore, build_reset_token_store

logger = structlog.get_logger()


def create_app(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    reset_token_store: ResetTokenStore | None = None,
    directory: DirectoryAuthenticator | None = None,
) -> FastAPI:
    """Application factory for the identity API.

    Collaborators default to the ones described by the settings; tests pass
    their own session factory, reset-token store and directory.
    """
    setup_logging(get_settings().log_level)
    settings = get_settings()

    if reset_token_store is None:
        reset_token_store = build_reset_token_store(settings)
    if directory is None and settings.ldap_enabled:
        directory = DirectoryAuthenticator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "service_startup",
            service=settings.app_name,
            environment=settings.environment,
            version=settings.version,
            directory_enabled=app.state.directory is not None,
        )
        yield
        close = getattr(app.state.reset_token_store, "close", None)
        if close is not None:
            await close()
        if app.state.session_factory is None:
            await dispose_engine()
        logger.info("service_shutdown", service=settings.app_name)

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.reset_token_store = reset_token_store
    app.state.directory = directory

    # CORS - Allow frontend to access API
    cors_origins = [
        "http://localhost:3000",  # React dev
        "http://localhost:5173",  # Vite dev
        "http://127.0.0.1:3000",  # Alternative localhost
    ]

    # Allow all origins in local/development environment
    if settings.environment in ["local", "development"]:
        cors_origins.append("*")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if "*" not in cors_origins else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    # Registered last so it wraps authentication and clears its context vars.
    app.middleware("http")(authentication_middleware)
    app.middleware("http")(correlation_id_middleware)

    return app


app = create_app()
