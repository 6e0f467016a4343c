from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request
from sqlalchemy import text
from src.api.middleware import session_factory_for
from src.core.config import get_settings
from src.infrastructure.directory import DirectoryAuthenticator
from src.infrastructure.reset_tokens import RedisResetTokenStore

router = APIRouter(tags=["Observability"])
logger = structlog.get_logger()


async def check_database(request: Request) -> dict:
    """Check the credential store connection."""
    try:
        async with session_factory_for(request)() as session:
            await session.execute(text("SELECT 1"))
            return {"status": "ok"}
    except Exception as e:
        return {"status": "error", "message": str(e)[:100]}


async def check_redis(store: RedisResetTokenStore) -> dict:
    """Check the Redis reset-token store."""
    try:
        await store.ping()
        return {"status": "ok"}
    except Exception as e:
        return {"status": "error", "message": str(e)[:100]}


async def check_directory(directory: DirectoryAuthenticator) -> dict:
    """Bind to the directory with the service account."""
    result = await asyncio.to_thread(directory.ping)
    if result.ok:
        return {"status": "ok"}
    return {"status": "error", "message": (result.detail or result.error.value)[:100]}


@router.get("/health", summary="Service health probe")
async def health_check(request: Request) -> dict:
    """Return basic service and datastore status information."""
    settings = get_settings()

    datastores = {"database": await check_database(request)}

    store = request.app.state.reset_token_store
    if isinstance(store, RedisResetTokenStore):
        datastores["redis"] = await check_redis(store)

    directory = request.app.state.directory
    if directory is not None:
        datastores["directory"] = await check_directory(directory)

    # Overall status is ok only if every checked dependency is ok
    overall_status = "ok"
    if any(item.get("status") != "ok" for item in datastores.values()):
        overall_status = "degraded"

    payload = {
        "service": settings.app_name,
        "version": settings.version,
        "status": overall_status,
        "timestamp": datetime.now(UTC).isoformat(),
        "datastores": datastores,
    }
    logger.info("health_probe", **payload)
    return payload
