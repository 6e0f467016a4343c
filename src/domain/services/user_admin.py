"""Administrative operations on local principals, plus self-service profile edits."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role
from src.domain.services.auth_service import (
    AuthError,
    AuthService,
    UserExistsError,
    UserNotFoundError,
)
from src.infrastructure.db.models import UserModel
from src.infrastructure.repositories.users import UserRepository

logger = structlog.get_logger()

# Fields a principal may change on their own account.
PROFILE_FIELDS = frozenset({"name", "phone", "address", "emergency_contact", "date_of_birth"})
ADMIN_FIELDS = PROFILE_FIELDS | {"email", "role", "is_active", "department_id"}
# Columns that cannot be cleared; a null value leaves them unchanged.
_REQUIRED_FIELDS = frozenset({"email", "role", "is_active"})

RECENT_USER_WINDOW = timedelta(days=30)


class SelfModificationError(AuthError):
    """Raised when an admin tries to deactivate or demote their own account."""


@dataclass(slots=True)
class UserStats:
    total_users: int
    total_admins: int
    total_instructors: int
    total_students: int
    active_users: int
    recent_users: int


class UserAdminService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = UserRepository(session)

    async def list_users(self, *, role: Role | None = None) -> Sequence[UserModel]:
        return await self.users.list_users(role=role)

    async def get_user(self, user_id: int) -> UserModel:
        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def create_user(
        self,
        *,
        name: str | None,
        email: str,
        password: str,
        role: Role = Role.STUDENT,
        is_active: bool = True,
        phone: str | None = None,
        date_of_birth: date | None = None,
        address: str | None = None,
        emergency_contact: str | None = None,
        department_id: int | None = None,
        actor_id: int | None = None,
    ) -> UserModel:
        """Create an account on someone's behalf.

        Follows the registration rules (instructors must change the password on
        first login) and can create the account already deactivated.
        """
        user = await AuthService(self.session).register_user(
            name=name,
            email=email,
            password=password,
            role=role,
            phone=phone,
            date_of_birth=date_of_birth,
            address=address,
            emergency_contact=emergency_contact,
            department_id=department_id,
        )
        if not is_active:
            user.is_active = False
            user = await self.users.save(user)

        await logger.ainfo(
            "user_created_by_admin",
            user_id=user.user_id,
            role=user.role.value,
            active=user.is_active,
            actor_id=actor_id,
        )
        return user

    async def update_profile(self, email: str, changes: Mapping[str, Any]) -> UserModel:
        """Apply profile edits to the caller's own account. Role and status are not editable."""
        user = await self.users.find_by_email(email)
        if user is None:
            raise UserNotFoundError(f"User {email} not found")

        changed = _apply(user, changes, PROFILE_FIELDS)
        user = await self.users.save(user)

        await logger.ainfo("profile_updated", user_id=user.user_id, fields=sorted(changed))
        return user

    async def update_user(
        self, user_id: int, changes: Mapping[str, Any], *, actor_id: int | None
    ) -> UserModel:
        """Partial update of any account field by an admin."""
        user = await self.get_user(user_id)

        if user_id == actor_id:
            if changes.get("role") not in (None, user.role):
                raise SelfModificationError("Cannot change your own role")
            if changes.get("is_active") is False:
                raise SelfModificationError("Cannot deactivate your own account")

        email = changes.get("email")
        if email is not None and email != user.email:
            if await self.users.find_by_email(email) is not None:
                raise UserExistsError("Email is already in use")

        changed = _apply(user, changes, ADMIN_FIELDS)
        user = await self.users.save(user)

        await logger.ainfo(
            "user_updated", user_id=user_id, fields=sorted(changed), actor_id=actor_id
        )
        return user

    async def set_active(self, user_id: int, active: bool, *, actor_id: int | None) -> UserModel:
        """Toggle the active flag; deactivation is the only removal path."""
        if not active and user_id == actor_id:
            raise SelfModificationError("Cannot deactivate your own account")

        user = await self.get_user(user_id)
        user.is_active = active
        user = await self.users.save(user)

        await logger.ainfo("user_active_changed", user_id=user_id, active=active, actor_id=actor_id)
        return user

    async def change_role(self, user_id: int, role: Role, *, actor_id: int | None) -> UserModel:
        if user_id == actor_id:
            raise SelfModificationError("Cannot change your own role")

        user = await self.get_user(user_id)
        previous = user.role
        user.role = role
        user = await self.users.save(user)

        await logger.ainfo(
            "user_role_changed",
            user_id=user_id,
            previous_role=previous.value,
            role=role.value,
            actor_id=actor_id,
        )
        return user

    async def stats(self, *, now: datetime | None = None) -> UserStats:
        """Dashboard counters; "recent" means created within the last 30 days."""
        since = (now or datetime.now(UTC)) - RECENT_USER_WINDOW
        return UserStats(
            total_users=await self.users.count(),
            total_admins=await self.users.count(role=Role.ADMIN),
            total_instructors=await self.users.count(role=Role.INSTRUCTOR),
            total_students=await self.users.count(role=Role.STUDENT),
            active_users=await self.users.count(is_active=True),
            recent_users=await self.users.count(created_since=since),
        )


def _apply(user: UserModel, changes: Mapping[str, Any], allowed: frozenset[str]) -> set[str]:
    changed: set[str] = set()
    for field, value in changes.items():
        if field not in allowed:
            continue
        if value is None and field in _REQUIRED_FIELDS:
            continue
        if getattr(user, field) != value:
            setattr(user, field, value)
            changed.add(field)
    return changed
