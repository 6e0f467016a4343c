"""User administration routes (admin only) and self-service profile routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import get_current_identity, get_db_session, require_roles
from src.api.schemas.auth import UserResponse, parse_role
from src.api.schemas.users import (
    ChangeRoleRequest,
    CreateUserRequest,
    ProfileUpdateRequest,
    UserListResponse,
    UserStatsResponse,
    UserUpdateRequest,
)
from src.core.auth import Role
from src.domain import Identity
from src.domain.services.auth_service import UserExistsError, UserNotFoundError
from src.domain.services.user_admin import SelfModificationError, UserAdminService

router = APIRouter(prefix="/users", tags=["users"])

require_admin = require_roles(Role.ADMIN)


def get_user_admin_service(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
) -> UserAdminService:
    return UserAdminService(session)


@router.get("", response_model=UserListResponse, summary="List users")
async def list_users(
    role: str | None = Query(None, description="Filter by role"),
    _admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserListResponse:
    role_filter: Role | None = None
    if role:
        try:
            role_filter = parse_role(role)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            ) from exc

    users = await service.list_users(role=role_filter)
    return UserListResponse(users=[UserResponse.from_model(user) for user in users])


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create user",
    responses={409: {"description": "Email already in use"}},
)
async def create_user(
    payload: CreateUserRequest,
    admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    try:
        user = await service.create_user(
            **payload.model_dump(exclude={"is_active"}),
            is_active=payload.is_active,
            actor_id=admin.user_id,
        )
    except UserExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return UserResponse.from_model(user)


@router.get("/stats", response_model=UserStatsResponse, summary="User statistics")
async def user_stats(
    _admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserStatsResponse:
    stats = await service.stats()
    return UserStatsResponse(
        total_users=stats.total_users,
        total_admins=stats.total_admins,
        total_instructors=stats.total_instructors,
        total_students=stats.total_students,
        active_users=stats.active_users,
        recent_users=stats.recent_users,
    )


@router.put("/profile", response_model=UserResponse, summary="Update own profile")
async def update_profile(
    payload: ProfileUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    """Any authenticated user may edit their own contact details; role and status are fixed."""
    try:
        user = await service.update_profile(
            identity.email, payload.model_dump(exclude_unset=True)
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return UserResponse.from_model(user)


@router.get("/{user_id}", response_model=UserResponse, summary="Get user")
async def get_user(
    user_id: int,
    _admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    try:
        user = await service.get_user(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return UserResponse.from_model(user)


@router.put("/{user_id}", response_model=UserResponse, summary="Update user")
async def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    try:
        user = await service.update_user(
            user_id, payload.model_dump(exclude_unset=True), actor_id=admin.user_id
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UserExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SelfModificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return UserResponse.from_model(user)


@router.put("/{user_id}/activate", response_model=UserResponse, summary="Activate user")
async def activate_user(
    user_id: int,
    admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    return await _set_active(service, user_id, True, admin)


@router.put("/{user_id}/deactivate", response_model=UserResponse, summary="Deactivate user")
async def deactivate_user(
    user_id: int,
    admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    return await _set_active(service, user_id, False, admin)


@router.put("/{user_id}/role", response_model=UserResponse, summary="Change user role")
async def change_role(
    user_id: int,
    payload: ChangeRoleRequest,
    admin: Identity = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserResponse:
    try:
        user = await service.change_role(user_id, payload.role, actor_id=admin.user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SelfModificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return UserResponse.from_model(user)


async def _set_active(
    service: UserAdminService, user_id: int, active: bool, admin: Identity
) -> UserResponse:
    try:
        user = await service.set_active(user_id, active, actor_id=admin.user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SelfModificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return UserResponse.from_model(user)
