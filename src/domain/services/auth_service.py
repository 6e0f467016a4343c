"""Authentication service with password hashing and login orchestration."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date

import structlog
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role, issue_token
from src.infrastructure.db.models import UserModel
from src.infrastructure.directory import DirectoryAuthenticator, DirectoryIdentity
from src.infrastructure.repositories.users import UserRepository

logger = structlog.get_logger()

# Password hashing context with bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthError(Exception):
    """Base exception for authentication errors."""

    pass


class UserExistsError(AuthError):
    """Raised when attempting to register with existing email."""

    pass


class InvalidCredentialsError(AuthError):
    """Raised when login credentials are invalid."""

    pass


class UserNotFoundError(AuthError):
    """Raised when user is not found."""

    pass


class UserInactiveError(AuthError):
    """Raised when user account is deactivated."""

    pass


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against its hash. Accounts without a hash never match."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("stored_password_hash_unrecognized")
        return False


@dataclass(slots=True)
class LoginResult:
    """Outcome of a successful login."""

    token: str
    user: UserModel
    is_first_login: bool
    auth_type: str = "LOCAL"


class AuthService:
    """Service for authentication operations."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        directory: DirectoryAuthenticator | None = None,
    ) -> None:
        self.session = session
        self.users = UserRepository(session)
        self.directory = directory

    async def register_user(
        self,
        *,
        name: str | None,
        email: str,
        password: str,
        role: Role = Role.STUDENT,
        phone: str | None = None,
        date_of_birth: date | None = None,
        address: str | None = None,
        emergency_contact: str | None = None,
        department_id: int | None = None,
    ) -> UserModel:
        """Register a new local user.

        Only instructors are flagged for a mandatory password change on their
        first login.
        """
        await logger.ainfo("register_attempt", email=email, role=role.value)

        if await self.users.find_by_email(email) is not None:
            await logger.awarning("register_duplicate_email", email=email)
            raise UserExistsError("Email is already in use")

        user = UserModel(
            name=name,
            email=email,
            hashed_password=hash_password(password),
            role=role,
            is_active=True,
            is_first_login=role == Role.INSTRUCTOR,
            phone=phone,
            date_of_birth=date_of_birth,
            address=address,
            emergency_contact=emergency_contact,
            department_id=department_id,
        )

        try:
            user = await self.users.add(user)
        except IntegrityError as exc:
            await self.session.rollback()
            await logger.awarning("register_duplicate_email", email=email)
            raise UserExistsError("Email is already in use") from exc

        await logger.ainfo("register_success", user_id=user.user_id, email=email)
        return user

    async def login(self, *, email: str, password: str) -> LoginResult:
        """Authenticate a local user with email and password."""
        await logger.ainfo("login_attempt", email=email)

        user = await self.users.find_by_email(email)
        if user is None:
            await logger.awarning("login_user_not_found", email=email)
            raise UserNotFoundError(f"User not found with email: {email}")

        # Deactivation is reported before any hash comparison.
        if not user.is_active:
            await logger.awarning("login_inactive_user", email=email)
            raise UserInactiveError("User account is deactivated")

        if not verify_password(password, user.hashed_password):
            await logger.awarning("login_invalid_password", email=email)
            raise InvalidCredentialsError("Invalid password")

        user = await self.users.record_login(user)
        token = issue_token(user)

        await logger.ainfo("login_success", user_id=user.user_id, email=email)

        return LoginResult(
            token=token,
            user=user,
            is_first_login=user.role == Role.INSTRUCTOR and user.is_first_login,
        )

    async def login_with_directory(self, *, email: str, password: str) -> LoginResult:
        """Authenticate against the directory and mirror the account locally.

        Every directory failure, including an unreachable server, reaches the
        caller as ``InvalidCredentialsError``; the directory module logs the
        actual failure kind.
        """
        if self.directory is None:
            raise AuthError("Directory authentication is not configured")
        if not email or not email.strip() or not password or not password.strip():
            raise InvalidCredentialsError("Email and password are required")

        await logger.ainfo("directory_login_attempt", email=email)

        outcome = await asyncio.to_thread(self.directory.authenticate, email, password)
        if not outcome.ok:
            await logger.awarning(
                "directory_login_failed", email=email, kind=outcome.error.value
            )
            raise InvalidCredentialsError("Invalid directory credentials")

        user = await self._sync_directory_user(outcome.value)
        user = await self.users.record_login(user)
        token = issue_token(user)

        await logger.ainfo(
            "directory_login_success", user_id=user.user_id, email=email, role=user.role.value
        )

        return LoginResult(token=token, user=user, is_first_login=False, auth_type="AD")

    async def get_user_by_id(self, user_id: int) -> UserModel:
        """Get user by ID."""
        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def get_user_by_email(self, email: str) -> UserModel:
        user = await self.users.find_by_email(email)
        if user is None:
            raise UserNotFoundError(f"User not found with email: {email}")
        return user

    async def change_password(
        self, *, email: str, current_password: str, new_password: str
    ) -> None:
        """Change a user's password and clear the first-login flag."""
        user = await self.get_user_by_email(email)

        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredentialsError("Current password is incorrect")

        user.hashed_password = hash_password(new_password)
        user.is_first_login = False
        await self.users.save(user)

        await logger.ainfo("password_changed", user_id=user.user_id)

    async def _sync_directory_user(self, identity: DirectoryIdentity) -> UserModel:
        name = identity.name or identity.email.split("@")[0]
        user = await self.users.find_by_email(identity.email)

        if user is None:
            user = UserModel(
                email=identity.email,
                name=name,
                role=identity.role,
                hashed_password=None,
                is_active=True,
                is_first_login=False,
            )
            user = await self.users.add(user)
            await logger.ainfo(
                "directory_user_created", user_id=user.user_id, role=identity.role.value
            )
            return user

        if not user.is_active:
            await logger.awarning("login_inactive_user", email=identity.email)
            raise UserInactiveError("User account is deactivated")

        user.name = name
        user.role = identity.role
        return await self.users.save(user)
