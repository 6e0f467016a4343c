from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol, TypeVar

import jwt
from src.core.config import get_settings

T = TypeVar("T")

AUTHORITY_PREFIX = "ROLE_"
MIN_SECRET_BYTES = 32


class TokenError(Exception):
    """Raised when a token cannot be decoded or validated."""


class TokenInvalidError(TokenError):
    """Token is malformed, carries a bad signature or was signed with another key."""


class TokenExpiredError(TokenError):
    """Token signature is valid but its expiration has passed."""


class Role(str, Enum):
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"

    @classmethod
    def contains(cls, value: str) -> bool:
        return value in {role.value for role in cls}

    @classmethod
    def parse(cls, value: str) -> Role:
        """Resolve a role name case-insensitively, honouring aliases."""
        candidate = value.strip().upper()
        if candidate.startswith(AUTHORITY_PREFIX):
            candidate = candidate[len(AUTHORITY_PREFIX) :]
        candidate = ROLE_ALIASES.get(candidate, candidate)
        return cls(candidate)


# Organisation-specific names accepted wherever the canonical role is.
ROLE_ALIASES: dict[str, str] = {"TEACHER": Role.INSTRUCTOR.value}


class TokenSubject(Protocol):
    email: str
    user_id: int | None
    name: str | None
    role: Role | str


def signing_key() -> bytes:
    """Derive the HMAC key from the configured secret."""
    key = get_settings().jwt_secret.encode("utf-8")
    if len(key) < MIN_SECRET_BYTES:
        raise TokenError(f"JWT secret must be at least {MIN_SECRET_BYTES} bytes")
    return key


def role_name(role: Role | str) -> str:
    return role.value if isinstance(role, Role) else str(role)


def issue_token(principal: TokenSubject, *, expires_delta: timedelta | None = None) -> str:
    """Generate a signed access token for a principal."""
    settings = get_settings()

    now = datetime.now(UTC)
    ttl = expires_delta if expires_delta is not None else timedelta(
        seconds=settings.access_token_ttl_seconds
    )
    payload = {
        "sub": principal.email,
        "role": role_name(principal.role),
        "userId": principal.user_id,
        "name": principal.name,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }

    return jwt.encode(payload, signing_key(), algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Verify the signature and expiry of a token and return its claims."""
    payload = _decode(token, verify_exp=True)
    _ensure_role(payload.get("role"))
    return payload


def is_token_expired(token: str, *, now: datetime | None = None) -> bool:
    """Compare the token's expiration with the current time.

    The signature is still verified; a token that cannot be decoded raises
    ``TokenInvalidError`` rather than reporting an expiry state.
    """
    payload = _decode(token, verify_exp=False)
    expires_at = datetime.fromtimestamp(payload["exp"], tz=UTC)
    return expires_at <= (now or datetime.now(UTC))


def extract_claim(token: str, resolver: Callable[[dict[str, Any]], T]) -> T:
    return resolver(decode_token(token))


def extract_subject(token: str) -> str:
    return extract_claim(token, lambda claims: claims["sub"])


def extract_role(token: str) -> str | None:
    return extract_claim(token, lambda claims: claims.get("role"))


def extract_user_id(token: str) -> int | None:
    return extract_claim(token, lambda claims: claims.get("userId"))


def extract_name(token: str) -> str | None:
    return extract_claim(token, lambda claims: claims.get("name"))


def normalize_authority(role: str) -> str:
    """Return the role in the ``ROLE_`` form the authorization layer expects."""
    if role.startswith(AUTHORITY_PREFIX):
        return role
    return f"{AUTHORITY_PREFIX}{role}"


def _decode(token: str, *, verify_exp: bool) -> dict[str, Any]:
    settings = get_settings()

    try:
        return jwt.decode(
            token,
            signing_key(),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"], "verify_exp": verify_exp},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired") from exc
    except jwt.PyJWTError as exc:  # pragma: no cover - third-party raises numerous subclasses
        raise TokenInvalidError("Invalid token") from exc


def _ensure_role(role: Any) -> None:
    if role is None:
        return
    if not isinstance(role, str) or not (Role.contains(role) or role in ROLE_ALIASES):
        raise TokenInvalidError(f"Unsupported role: {role}")
