"""Pydantic schemas for authentication endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, field_validator
from src.core.auth import Role
from src.infrastructure.db.models import UserModel


def parse_role(value: object) -> object:
    if isinstance(value, str):
        try:
            return Role.parse(value)
        except ValueError as exc:
            raise ValueError(f"Invalid role: {value}") from exc
    return value


# --- Request Schemas ---


class RegisterRequest(BaseModel):
    """Request schema for user registration."""

    name: str | None = Field(None, max_length=255, description="Display name")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(
        ...,
        min_length=8,
        max_length=72,
        description="Password (8 to 72 characters)",
    )
    role: Role = Field(default=Role.STUDENT, description="User role (defaults to STUDENT)")
    phone: str | None = Field(None, max_length=32)
    date_of_birth: date | None = Field(None, description="YYYY-MM-DD")
    address: str | None = Field(None, max_length=512)
    emergency_contact: str | None = Field(None, max_length=255)
    department_id: int | None = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        return parse_role(value)


class LoginRequest(BaseModel):
    """Request schema for local and directory login.

    The identifier is matched exactly; for directory login it may also be an
    account name rather than an email address.
    """

    email: str = Field(..., min_length=1, max_length=255, description="Email or account name")
    password: str = Field(..., min_length=1, description="User password")


class ChangePasswordRequest(BaseModel):
    """Request schema for password change."""

    current_password: str = Field(..., description="Current password")
    new_password: str = Field(
        ...,
        min_length=8,
        max_length=72,
        description="New password (8 to 72 characters)",
    )


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Reset token")
    new_password: str = Field(..., min_length=8, max_length=72)


# --- Response Schemas ---


class UserResponse(BaseModel):
    """Response schema for user data."""

    id: int = Field(..., description="User ID")
    name: str | None = Field(None, description="Display name")
    first_name: str = Field("", description="First word of the display name")
    last_name: str = Field("", description="Remainder of the display name")
    email: str = Field(..., description="User email")
    role: str = Field(..., description="User role")
    is_active: bool = Field(..., description="Account active flag")
    is_first_login: bool = Field(..., description="Password change pending")
    phone: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    emergency_contact: str | None = None
    department_id: int | None = None
    created_at: datetime | None = Field(None, description="Account creation timestamp")
    last_login_at: datetime | None = Field(None, description="Last login timestamp")

    @classmethod
    def from_model(cls, user: UserModel) -> UserResponse:
        parts = (user.name or "").split()
        return cls(
            id=user.user_id,
            name=user.name,
            first_name=parts[0] if parts else "",
            last_name=" ".join(parts[1:]),
            email=user.email,
            role=user.role.value,
            is_active=user.is_active,
            is_first_login=user.is_first_login,
            phone=user.phone,
            date_of_birth=user.date_of_birth,
            address=user.address,
            emergency_contact=user.emergency_contact,
            department_id=user.department_id,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class RegisterResponse(BaseModel):
    """Response schema for user registration."""

    message: str = Field(default="User registered successfully")
    user: UserResponse


class LoginResponse(BaseModel):
    """Response schema for user login."""

    message: str = Field(default="Login successful")
    token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Access token TTL in seconds")
    is_first_login: bool = Field(..., description="Client should force a password change")
    auth_type: str = Field(default="LOCAL", description="LOCAL or AD")
    user: UserResponse


class MeResponse(BaseModel):
    """Response schema for current user info."""

    user: UserResponse


class ForgotPasswordResponse(BaseModel):
    message: str = Field(default="Password reset token generated successfully")
    email: str
    # Returned directly because delivery (e.g. email) is handled elsewhere.
    token: str


class ValidateResetTokenResponse(BaseModel):
    valid: bool


class MessageResponse(BaseModel):
    message: str
