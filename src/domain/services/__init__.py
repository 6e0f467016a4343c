"""Domain services."""

from src.domain.services.auth_service import (
    AuthError,
    AuthService,
    InvalidCredentialsError,
    LoginResult,
    UserExistsError,
    UserInactiveError,
    UserNotFoundError,
)
from src.domain.services.password_reset import (
    InvalidResetTokenError,
    PasswordResetBroker,
    ResetTokenExpiredError,
)
from src.domain.services.user_admin import SelfModificationError, UserAdminService

__all__ = [
    "AuthError",
    "AuthService",
    "InvalidCredentialsError",
    "InvalidResetTokenError",
    "LoginResult",
    "PasswordResetBroker",
    "ResetTokenExpiredError",
    "SelfModificationError",
    "UserAdminService",
    "UserExistsError",
    "UserInactiveError",
    "UserNotFoundError",
]
