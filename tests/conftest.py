from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from src.api.main import create_app
from src.core.config import get_settings
from src.infrastructure.db.base import Base
from src.infrastructure.reset_tokens import InMemoryResetTokenStore

from tests.utils import TEST_JWT_SECRET


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Pin the settings every test relies on, independent of the local .env."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "86400")
    monkeypatch.setenv("RESET_TOKEN_BACKEND", "memory")
    monkeypatch.setenv("RESET_TOKEN_TTL_SECONDS", "86400")
    monkeypatch.setenv("LDAP_ENABLED", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # File database: every session opens its own connection.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Provide a database session for tests that need direct DB access."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def reset_store() -> InMemoryResetTokenStore:
    return InMemoryResetTokenStore()


@pytest.fixture()
def app(
    session_factory: async_sessionmaker[AsyncSession],
    reset_store: InMemoryResetTokenStore,
) -> FastAPI:
    return create_app(session_factory=session_factory, reset_token_store=reset_store)


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Async HTTP client for testing async routes."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
