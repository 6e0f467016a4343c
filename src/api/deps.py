from __future__ import annotations

from collections.abc import AsyncIterator, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.middleware import session_factory_for
from src.core.auth import Role
from src.domain import Identity
from src.domain.services.auth_service import AuthService
from src.domain.services.password_reset import PasswordResetBroker
from src.infrastructure.directory import DirectoryAuthenticator
from src.infrastructure.reset_tokens import ResetTokenStore

# Documents the bearer scheme in OpenAPI; the middleware does the actual work.
bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Provide an async SQLAlchemy session for API handlers."""
    async with session_factory_for(request)() as session:
        yield session


def get_reset_token_store(request: Request) -> ResetTokenStore:
    return request.app.state.reset_token_store


def get_directory(request: Request) -> DirectoryAuthenticator | None:
    return getattr(request.app.state, "directory", None)


def get_auth_service(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
    directory: DirectoryAuthenticator | None = Depends(get_directory),  # noqa: B008
) -> AuthService:
    return AuthService(session, directory=directory)


def get_password_reset_broker(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
    store: ResetTokenStore = Depends(get_reset_token_store),  # noqa: B008
) -> PasswordResetBroker:
    return PasswordResetBroker(session, store)


def get_current_identity(
    request: Request,
    _credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> Identity:
    """Return the identity established by the authentication middleware."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise _unauthorized("Authentication required")
    return identity


def require_roles(*required_roles: Role) -> Callable[[Identity], Identity]:
    """Dependency factory enforcing that the caller holds one of the required roles."""
    if not required_roles:
        raise ValueError("At least one role is required")

    required = set(required_roles)

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:  # noqa: B008
        if not identity.has_any_role(required):
            raise _forbidden("Insufficient role privileges")
        return identity

    return dependency


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
