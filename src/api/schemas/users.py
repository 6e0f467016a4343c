"""Pydantic schemas for user administration and profile endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, EmailStr, Field, field_validator
from src.api.schemas.auth import RegisterRequest, UserResponse, parse_role
from src.core.auth import Role


class ChangeRoleRequest(BaseModel):
    role: Role = Field(..., description="ADMIN, INSTRUCTOR or STUDENT")

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        return parse_role(value)


class CreateUserRequest(RegisterRequest):
    """Admin-created account; may start out deactivated."""

    is_active: bool = Field(default=True, description="Create the account active")


class ProfileUpdateRequest(BaseModel):
    """Self-service profile edit. Only the fields sent are changed."""

    name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)
    date_of_birth: date | None = Field(None, description="YYYY-MM-DD")
    address: str | None = Field(None, max_length=512)
    emergency_contact: str | None = Field(None, max_length=255)


class UserUpdateRequest(ProfileUpdateRequest):
    """Admin edit of any account field. Only the fields sent are changed."""

    email: EmailStr | None = None
    role: Role | None = Field(None, description="ADMIN, INSTRUCTOR or STUDENT")
    is_active: bool | None = None
    department_id: int | None = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        return parse_role(value)


class UserListResponse(BaseModel):
    users: list[UserResponse]


class UserStatsResponse(BaseModel):
    total_users: int
    total_admins: int
    total_instructors: int
    total_students: int
    active_users: int
    recent_users: int = Field(..., description="Accounts created in the last 30 days")
