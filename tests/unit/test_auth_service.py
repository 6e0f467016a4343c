"""Unit tests for authentication service."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.schemas.auth import LoginRequest, RegisterRequest, UserResponse
from src.core.auth import Role, decode_token
from src.domain.services.auth_service import (
    AuthError,
    AuthService,
    InvalidCredentialsError,
    UserExistsError,
    UserInactiveError,
    UserNotFoundError,
    hash_password,
    verify_password,
)
from src.infrastructure.directory import DirectoryErrorKind, DirectoryIdentity, DirectoryResult
from src.infrastructure.repositories.users import UserRepository

from tests.utils import create_user


class StubDirectory:
    """Stands in for DirectoryAuthenticator.authenticate."""

    def __init__(self, result: DirectoryResult[DirectoryIdentity]) -> None:
        self.result = result
        self.calls: list[tuple[str, str]] = []

    def authenticate(self, identifier: str, password: str) -> DirectoryResult[DirectoryIdentity]:
        self.calls.append((identifier, password))
        return self.result


def _identity(role: Role = Role.INSTRUCTOR, name: str = "Bob Smith") -> DirectoryIdentity:
    return DirectoryIdentity(
        email="bob@corp.example.com",
        name=name,
        first_name="Bob",
        last_name="Smith",
        account_name="bsmith",
        distinguished_name="CN=Bob Smith,OU=Staff,DC=corp,DC=example,DC=com",
        role=role,
    )


class TestPasswordHashing:
    """Tests for password hashing functions."""

    def test_hash_password_returns_bcrypt_hash(self) -> None:
        hashed = hash_password("test_password_123")

        # bcrypt hashes start with $2b$
        assert hashed.startswith("$2b$")
        assert len(hashed) == 60

    def test_hash_password_is_not_plaintext(self) -> None:
        password = "test_password_123"

        assert password not in hash_password(password)

    def test_hash_password_unique_per_call(self) -> None:
        """Same password should produce different hashes (due to salt)."""
        assert hash_password("test_password_123") != hash_password("test_password_123")

    def test_verify_password_correct_and_incorrect(self) -> None:
        hashed = hash_password("TestPassword123")

        assert verify_password("TestPassword123", hashed) is True
        assert verify_password("testpassword123", hashed) is False
        assert verify_password("wrong_password", hashed) is False

    def test_verify_password_without_stored_hash(self) -> None:
        """Directory-only accounts have no hash and never match."""
        assert verify_password("anything", None) is False
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestLocalLogin:
    async def test_login_returns_token_for_principal(self, db: AsyncSession) -> None:
        user = await create_user(db, email="alice@example.com", password="pw123")

        result = await AuthService(db).login(email="alice@example.com", password="pw123")

        claims = decode_token(result.token)
        assert claims["sub"] == "alice@example.com"
        assert claims["role"] == user.role.value
        assert claims["userId"] == user.user_id
        assert result.user.last_login_at is not None
        assert result.is_first_login is False

    async def test_login_wrong_password(self, db: AsyncSession) -> None:
        await create_user(db, email="alice@example.com", password="pw123")

        with pytest.raises(InvalidCredentialsError):
            await AuthService(db).login(email="alice@example.com", password="wrong")

    async def test_login_unknown_email(self, db: AsyncSession) -> None:
        with pytest.raises(UserNotFoundError):
            await AuthService(db).login(email="nobody@example.com", password="pw123")

    async def test_login_email_match_is_case_sensitive(self, db: AsyncSession) -> None:
        await create_user(db, email="alice@example.com", password="pw123")

        with pytest.raises(UserNotFoundError):
            await AuthService(db).login(email="Alice@example.com", password="pw123")

    async def test_deactivated_user_rejected_before_password_check(
        self, db: AsyncSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await create_user(db, email="alice@example.com", password="pw123", is_active=False)
        checked: list[str] = []

        def spy(plain: str, stored: str | None) -> bool:
            checked.append(plain)
            return True

        monkeypatch.setattr("src.domain.services.auth_service.verify_password", spy)

        with pytest.raises(UserInactiveError):
            await AuthService(db).login(email="alice@example.com", password="pw123")
        assert checked == []

    async def test_first_login_flag_only_for_instructors(self, db: AsyncSession) -> None:
        await create_user(
            db, email="ins@example.com", role=Role.INSTRUCTOR, is_first_login=True
        )
        await create_user(db, email="stu@example.com", role=Role.STUDENT, is_first_login=True)
        service = AuthService(db)

        instructor = await service.login(email="ins@example.com", password="pw123")
        student = await service.login(email="stu@example.com", password="pw123")

        assert instructor.is_first_login is True
        assert student.is_first_login is False


class TestRegistration:
    async def test_instructor_registration_forces_password_change(self, db: AsyncSession) -> None:
        user = await AuthService(db).register_user(
            name="Ivy", email="ivy@example.com", password="password123", role=Role.INSTRUCTOR
        )

        assert user.is_first_login is True
        assert user.hashed_password != "password123"

    async def test_student_registration_has_no_first_login(self, db: AsyncSession) -> None:
        user = await AuthService(db).register_user(
            name="Sam", email="sam@example.com", password="password123"
        )

        assert user.role is Role.STUDENT
        assert user.is_first_login is False

    async def test_duplicate_email_rejected(self, db: AsyncSession) -> None:
        await create_user(db, email="alice@example.com")

        with pytest.raises(UserExistsError):
            await AuthService(db).register_user(
                name="Other", email="alice@example.com", password="password123"
            )


class TestChangePassword:
    async def test_change_password_clears_first_login(self, db: AsyncSession) -> None:
        await create_user(
            db, email="ins@example.com", role=Role.INSTRUCTOR, is_first_login=True
        )
        service = AuthService(db)

        await service.change_password(
            email="ins@example.com", current_password="pw123", new_password="new-password-1"
        )

        result = await service.login(email="ins@example.com", password="new-password-1")
        assert result.is_first_login is False

    async def test_change_password_requires_current(self, db: AsyncSession) -> None:
        await create_user(db, email="alice@example.com")

        with pytest.raises(InvalidCredentialsError):
            await AuthService(db).change_password(
                email="alice@example.com", current_password="nope", new_password="whatever1"
            )


class TestDirectoryLogin:
    async def test_first_directory_login_creates_principal(self, db: AsyncSession) -> None:
        directory = StubDirectory(DirectoryResult.success(_identity()))
        service = AuthService(db, directory=directory)

        result = await service.login_with_directory(
            email="bob@corp.example.com", password="secret"
        )

        user = await UserRepository(db).find_by_email("bob@corp.example.com")
        assert user is not None
        assert user.hashed_password is None
        assert user.is_first_login is False
        assert user.role is Role.INSTRUCTOR
        assert user.name == "Bob Smith"
        assert result.auth_type == "AD"
        assert result.is_first_login is False
        assert decode_token(result.token)["role"] == "INSTRUCTOR"

    async def test_directory_login_refreshes_existing_principal(self, db: AsyncSession) -> None:
        await create_user(
            db, email="bob@corp.example.com", name="Old Name", role=Role.STUDENT, password=None
        )
        directory = StubDirectory(DirectoryResult.success(_identity(role=Role.ADMIN)))

        result = await AuthService(db, directory=directory).login_with_directory(
            email="bob@corp.example.com", password="secret"
        )

        assert result.user.role is Role.ADMIN
        assert result.user.name == "Bob Smith"
        assert result.user.last_login_at is not None

    async def test_directory_name_falls_back_to_email_local_part(self, db: AsyncSession) -> None:
        directory = StubDirectory(DirectoryResult.success(_identity(name="")))

        result = await AuthService(db, directory=directory).login_with_directory(
            email="bob@corp.example.com", password="secret"
        )

        assert result.user.name == "bob"

    @pytest.mark.parametrize(
        "kind",
        [
            DirectoryErrorKind.INVALID_CREDENTIALS,
            DirectoryErrorKind.NOT_FOUND,
            DirectoryErrorKind.AMBIGUOUS,
            DirectoryErrorKind.UNAVAILABLE,
        ],
    )
    async def test_directory_failures_surface_as_invalid_credentials(
        self, db: AsyncSession, kind: DirectoryErrorKind
    ) -> None:
        directory = StubDirectory(DirectoryResult.failure(kind))

        with pytest.raises(InvalidCredentialsError):
            await AuthService(db, directory=directory).login_with_directory(
                email="bob@corp.example.com", password="secret"
            )
        assert await UserRepository(db).find_by_email("bob@corp.example.com") is None

    async def test_deactivated_directory_principal_rejected(self, db: AsyncSession) -> None:
        await create_user(db, email="bob@corp.example.com", password=None, is_active=False)
        directory = StubDirectory(DirectoryResult.success(_identity()))

        with pytest.raises(UserInactiveError):
            await AuthService(db, directory=directory).login_with_directory(
                email="bob@corp.example.com", password="secret"
            )

    async def test_blank_credentials_never_reach_directory(self, db: AsyncSession) -> None:
        directory = StubDirectory(DirectoryResult.success(_identity()))

        with pytest.raises(InvalidCredentialsError):
            await AuthService(db, directory=directory).login_with_directory(
                email="bob@corp.example.com", password="   "
            )
        assert directory.calls == []

    async def test_directory_login_without_directory(self, db: AsyncSession) -> None:
        with pytest.raises(AuthError):
            await AuthService(db).login_with_directory(email="bob@x.com", password="secret")


class TestAuthSchemas:
    """Tests for auth request/response schemas."""

    def test_register_request_defaults_to_student(self) -> None:
        request = RegisterRequest(
            email="test@example.com", password="password123", name="Test User"
        )

        assert request.role is Role.STUDENT
        assert request.name == "Test User"

    def test_register_request_accepts_role_aliases(self) -> None:
        request = RegisterRequest(email="t@example.com", password="password123", role="teacher")

        assert request.role is Role.INSTRUCTOR

    def test_register_request_rejects_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            RegisterRequest(email="t@example.com", password="password123", role="janitor")

    def test_register_request_password_min_length(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            RegisterRequest(email="test@example.com", password="short")

        assert "String should have at least 8 characters" in str(exc_info.value)

    def test_register_request_invalid_email(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            RegisterRequest(email="not-an-email", password="password123")

        assert "value is not a valid email address" in str(exc_info.value)

    def test_login_request_accepts_account_names(self) -> None:
        request = LoginRequest(email="bsmith", password="secret")

        assert request.email == "bsmith"

    async def test_user_response_splits_display_name(self, db: AsyncSession) -> None:
        user = await create_user(db, name="Mary Ann Smith")

        response = UserResponse.from_model(user)

        assert response.first_name == "Mary"
        assert response.last_name == "Ann Smith"
        assert response.role == "STUDENT"
