"""Password reset tokens: issue, redeem once, validate."""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.config import get_settings
from src.domain.services.auth_service import (
    AuthError,
    UserInactiveError,
    UserNotFoundError,
    hash_password,
)
from src.infrastructure.repositories.users import UserRepository
from src.infrastructure.reset_tokens import ResetTokenRecord, ResetTokenStore

logger = structlog.get_logger()


class InvalidResetTokenError(AuthError):
    """Raised when a reset token is unknown or already used."""


class ResetTokenExpiredError(AuthError):
    """Raised when a reset token is past its expiry."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PasswordResetBroker:
    """Issue and redeem single-use password reset tokens."""

    def __init__(
        self,
        session: AsyncSession,
        store: ResetTokenStore,
        *,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = UserRepository(session)
        self.store = store
        self.ttl = ttl or timedelta(seconds=get_settings().reset_token_ttl_seconds)
        self.clock = clock

    async def request_reset(self, email: str) -> str:
        """Store a new token for ``email`` and return it; delivery is the caller's job."""
        user = await self.users.find_by_email(email)
        if user is None:
            await logger.awarning("reset_request_user_not_found", email=email)
            raise UserNotFoundError(f"User not found with email: {email}")
        if not user.is_active:
            await logger.awarning("reset_request_inactive_user", email=email)
            raise UserInactiveError("User account is deactivated")

        token = secrets.token_urlsafe(32)
        expires_at = self.clock() + self.ttl
        await self.store.put(token, ResetTokenRecord(email=email, expires_at=expires_at))

        await logger.ainfo(
            "reset_token_issued", user_id=user.user_id, expires_at=expires_at.isoformat()
        )
        return token

    async def redeem(self, token: str, new_password: str) -> None:
        """Consume ``token`` and set a new password for its owner.

        The token is removed on every terminal outcome: success, expiry, or an
        owner that no longer exists.
        """
        record = await self.store.get(token)
        if record is None:
            raise InvalidResetTokenError("Invalid or expired password reset token")

        if record.is_expired(self.clock()):
            await self.store.delete(token)
            await logger.ainfo("reset_token_expired", email=record.email)
            raise ResetTokenExpiredError("Password reset token has expired")

        # Claim before writing so concurrent redemptions cannot both succeed.
        if not await self.store.delete(token):
            raise InvalidResetTokenError("Invalid or expired password reset token")

        user = await self.users.find_by_email(record.email)
        if user is None:
            raise UserNotFoundError(f"User not found with email: {record.email}")

        user.hashed_password = hash_password(new_password)
        user.is_first_login = False
        await self.users.save(user)

        await logger.ainfo("password_reset_completed", user_id=user.user_id)

    async def is_valid(self, token: str) -> bool:
        record = await self.store.get(token)
        return record is not None and not record.is_expired(self.clock())
