"""HTTP middleware: request correlation and bearer-token authentication.

The authentication middleware only *establishes* identity. It never rejects a
request; routes that need a caller depend on ``require_roles`` /
``get_current_identity`` which answer 401/403.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.core.auth import ROLE_ALIASES, TokenError, decode_token, normalize_authority
from src.domain import Identity
from src.infrastructure.db.session import get_session_factory
from src.infrastructure.repositories.users import UserRepository
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger()

BEARER_PREFIX = "Bearer "

CallNext = Callable[[Request], Awaitable[Response]]


def session_factory_for(request: Request) -> async_sessionmaker[AsyncSession]:
    """Session factory installed on the app, or the process-wide default."""
    factory = getattr(request.app.state, "session_factory", None)
    return factory or get_session_factory()


async def correlation_id_middleware(request: Request, call_next: CallNext) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_contextvars(
        request_id=request_id,
        path=str(request.url.path),
        method=request.method,
    )
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_contextvars()


async def authentication_middleware(request: Request, call_next: CallNext) -> Response:
    request.state.identity = None
    identity = await resolve_identity(request)
    if identity is not None:
        request.state.identity = identity
        bind_contextvars(user_email=identity.email)
    return await call_next(request)


async def resolve_identity(request: Request) -> Identity | None:
    """Derive the caller from the Authorization header, or None for anonymous.

    Never raises: every failure is logged and the request proceeds anonymously.
    """
    header = request.headers.get("authorization")
    if not header or not header.startswith(BEARER_PREFIX):
        return None

    token = header[len(BEARER_PREFIX) :].strip()
    if not token:
        return None

    try:
        claims = decode_token(token)
    except TokenError as exc:
        await logger.awarning("bearer_token_rejected", reason=str(exc))
        return None

    email = claims["sub"]
    try:
        async with session_factory_for(request)() as session:
            user = await UserRepository(session).find_by_email(email)
    except Exception as exc:
        # A store outage leaves the request anonymous.
        await logger.aerror("bearer_principal_lookup_failed", email=email, error=str(exc))
        return None

    if user is None or not user.is_active:
        await logger.awarning("bearer_principal_unavailable", email=email, found=user is not None)
        return None

    token_role = claims.get("role")
    if token_role is not None and ROLE_ALIASES.get(token_role, token_role) != user.role.value:
        await logger.awarning(
            "bearer_token_role_stale",
            email=email,
            token_role=token_role,
            current_role=user.role.value,
        )
        return None

    return Identity(
        email=email,
        authority=normalize_authority(token_role or user.role.value),
        user_id=user.user_id,
        name=claims.get("name") or user.name,
    )
