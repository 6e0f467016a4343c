"""Authentication routes - register, login, password reset, profile."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from src.api.deps import (
    get_auth_service,
    get_current_identity,
    get_directory,
    get_password_reset_broker,
)
from src.api.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserResponse,
    ValidateResetTokenResponse,
)
from src.core.config import get_settings
from src.domain import Identity
from src.domain.services.auth_service import (
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
from src.infrastructure.directory import DirectoryAuthenticator

logger = structlog.get_logger()
router = APIRouter(prefix="/auth", tags=["authentication"])

# Same message for unknown email and wrong password
_LOGIN_FAIL = "Invalid email or password"


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register new user",
    description="Create a local account. Defaults to the STUDENT role.",
)
async def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    try:
        user = await service.register_user(
            name=payload.name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
            phone=payload.phone,
            date_of_birth=payload.date_of_birth,
            address=payload.address,
            emergency_contact=payload.emergency_contact,
            department_id=payload.department_id,
        )
    except UserExistsError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    return RegisterResponse(user=UserResponse.from_model(user))


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="User login",
    description="Authenticate with email and password, returns a JWT.",
)
async def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        result = await service.login(email=payload.email, password=payload.password)
    except (UserNotFoundError, InvalidCredentialsError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_LOGIN_FAIL,
        ) from exc
    except UserInactiveError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc

    return _login_response(result)


@router.post(
    "/login-ad",
    response_model=LoginResponse,
    summary="Directory login",
    description="Authenticate against the LDAP / Active Directory server, returns a JWT.",
)
async def login_with_directory(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    directory: DirectoryAuthenticator | None = Depends(get_directory),
) -> LoginResponse:
    if directory is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Directory login is not enabled",
        )

    try:
        result = await service.login_with_directory(
            email=payload.email, password=payload.password
        )
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except UserInactiveError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc

    return _login_response(result)


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    summary="Request password reset",
    description="Generate a password reset token valid for 24 hours.",
)
async def forgot_password(
    payload: ForgotPasswordRequest,
    broker: PasswordResetBroker = Depends(get_password_reset_broker),
) -> ForgotPasswordResponse:
    try:
        token = await broker.request_reset(payload.email)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UserInactiveError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return ForgotPasswordResponse(email=payload.email, token=token)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Reset password",
    description="Redeem a reset token and set a new password. Each token works once.",
)
async def reset_password(
    payload: ResetPasswordRequest,
    broker: PasswordResetBroker = Depends(get_password_reset_broker),
) -> MessageResponse:
    try:
        await broker.redeem(payload.token, payload.new_password)
    except (InvalidResetTokenError, ResetTokenExpiredError, UserNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return MessageResponse(message="Password has been reset successfully")


@router.get(
    "/validate-reset-token",
    response_model=ValidateResetTokenResponse,
    summary="Check a reset token",
)
async def validate_reset_token(
    token: str = Query(..., min_length=1),
    broker: PasswordResetBroker = Depends(get_password_reset_broker),
) -> ValidateResetTokenResponse:
    return ValidateResetTokenResponse(valid=await broker.is_valid(token))


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Get current user",
    description="Get the currently authenticated user's profile.",
)
async def get_me(
    identity: Identity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    try:
        user = await service.get_user_by_email(identity.email)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    return MeResponse(user=UserResponse.from_model(user))


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password",
    description="Change the current user's password and clear the first-login flag.",
)
async def change_password(
    payload: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await service.change_password(
            email=identity.email,
            current_password=payload.current_password,
            new_password=payload.new_password,
        )
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    return MessageResponse(message="Password changed successfully")


def _login_response(result: LoginResult) -> LoginResponse:
    return LoginResponse(
        token=result.token,
        expires_in=get_settings().access_token_ttl_seconds,
        is_first_login=result.is_first_login,
        auth_type=result.auth_type,
        user=UserResponse.from_model(result.user),
    )
