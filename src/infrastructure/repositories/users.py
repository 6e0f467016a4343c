"""Persistence adapter for local principals."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role
from src.infrastructure.db.models import UserModel

logger = structlog.get_logger()


class UserRepository:
    """Lookup and save operations for ``UserModel`` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_email(self, email: str) -> UserModel | None:
        """Exact, case-sensitive match on the unique email column."""
        stmt = select(UserModel).where(UserModel.email == email)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, user_id: int) -> UserModel | None:
        return await self.session.get(UserModel, user_id)

    async def list_users(self, *, role: Role | None = None) -> Sequence[UserModel]:
        stmt = select(UserModel).order_by(UserModel.user_id)
        if role is not None:
            stmt = stmt.where(UserModel.role == role)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count(
        self,
        *,
        role: Role | None = None,
        is_active: bool | None = None,
        created_since: datetime | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(UserModel)
        if role is not None:
            stmt = stmt.where(UserModel.role == role)
        if is_active is not None:
            stmt = stmt.where(UserModel.is_active.is_(is_active))
        if created_since is not None:
            stmt = stmt.where(UserModel.created_at >= created_since)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def add(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def save(self, user: UserModel) -> UserModel:
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def record_login(self, user: UserModel) -> UserModel:
        user.last_login_at = datetime.now(UTC)
        return await self.save(user)
