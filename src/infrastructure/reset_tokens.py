"""Key-value stores for password reset tokens.

The broker only needs ``get``/``put``/``delete``. ``delete`` reports whether the
caller removed the entry, which lets the broker consume a token exactly once
even when two requests redeem it concurrently.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import structlog
from redis.asyncio import Redis
from src.core.config import Settings, get_settings

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ResetTokenRecord:
    email: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at


class ResetTokenStore(Protocol):
    async def get(self, token: str) -> ResetTokenRecord | None: ...

    async def put(self, token: str, record: ResetTokenRecord) -> None: ...

    async def delete(self, token: str) -> bool: ...


class InMemoryResetTokenStore:
    """Process-local store; tokens are lost on restart."""

    def __init__(self) -> None:
        self._records: dict[str, ResetTokenRecord] = {}
        self._lock = threading.Lock()

    async def get(self, token: str) -> ResetTokenRecord | None:
        with self._lock:
            return self._records.get(token)

    async def put(self, token: str, record: ResetTokenRecord) -> None:
        with self._lock:
            self._records[token] = record

    async def delete(self, token: str) -> bool:
        with self._lock:
            return self._records.pop(token, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RedisResetTokenStore:
    """Shared store for multi-instance deployments.

    Entries carry a Redis TTL matching their expiry plus a grace period, so an
    expired token is still visible long enough for the broker to report it as
    expired rather than unknown.
    """

    KEY_PREFIX = "password-reset:"
    GRACE_SECONDS = 3600

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisResetTokenStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, token: str) -> ResetTokenRecord | None:
        raw = await self._client.get(self._key(token))
        if raw is None:
            return None
        data = json.loads(raw)
        return ResetTokenRecord(
            email=data["email"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    async def put(self, token: str, record: ResetTokenRecord) -> None:
        ttl = int((record.expires_at - datetime.now(UTC)).total_seconds()) + self.GRACE_SECONDS
        payload = json.dumps(
            {"email": record.email, "expires_at": record.expires_at.isoformat()}
        )
        await self._client.set(self._key(token), payload, ex=max(ttl, 1))

    async def delete(self, token: str) -> bool:
        return bool(await self._client.delete(self._key(token)))

    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"


def build_reset_token_store(settings: Settings | None = None) -> ResetTokenStore:
    """Create the store selected by ``RESET_TOKEN_BACKEND``."""
    settings = settings or get_settings()
    backend = settings.reset_token_backend.lower()

    if backend == "redis":
        logger.info("reset_token_store_selected", backend="redis")
        return RedisResetTokenStore.from_url(settings.redis_url)
    if backend == "memory":
        logger.info("reset_token_store_selected", backend="memory")
        return InMemoryResetTokenStore()
    raise ValueError(f"Unsupported reset token backend: {settings.reset_token_backend}")
