from __future__ import annotations

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role, issue_token
from src.domain.services.auth_service import hash_password
from src.infrastructure.db.models import UserModel

TEST_JWT_SECRET = "test-secret-that-is-definitely-longer-than-32-bytes"


async def create_user(
    session: AsyncSession,
    *,
    email: str = "alice@example.com",
    password: str | None = "pw123",
    name: str | None = "Alice Doe",
    role: Role = Role.STUDENT,
    is_active: bool = True,
    is_first_login: bool = False,
) -> UserModel:
    """Insert a principal directly, bypassing the registration rules."""
    user = UserModel(
        email=email,
        name=name,
        hashed_password=hash_password(password) if password is not None else None,
        role=role,
        is_active=is_active,
        is_first_login=is_first_login,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


def auth_headers(user: UserModel, *, expires_delta: timedelta | None = None) -> dict[str, str]:
    token = issue_token(user, expires_delta=expires_delta)
    return {"Authorization": f"Bearer {token}"}
