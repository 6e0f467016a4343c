#!/usr/bin/env python3
"""
Create the first ADMIN account from FIRST_ADMIN_EMAIL / FIRST_ADMIN_PASSWORD.

Run with:
    python scripts/seed_admin.py
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio

from dotenv import load_dotenv

load_dotenv()

from src.core.auth import Role
from src.core.config import get_settings
from src.domain.services.auth_service import AuthService, UserExistsError
from src.infrastructure.db.session import dispose_engine, get_session_factory


async def seed_admin() -> int:
    settings = get_settings()
    if not settings.first_admin_email or not settings.first_admin_password:
        print("FIRST_ADMIN_EMAIL and FIRST_ADMIN_PASSWORD must be set")
        return 1

    try:
        async with get_session_factory()() as session:
            service = AuthService(session)
            try:
                user = await service.register_user(
                    name="Administrator",
                    email=settings.first_admin_email,
                    password=settings.first_admin_password,
                    role=Role.ADMIN,
                )
            except UserExistsError:
                print(f"Admin {settings.first_admin_email} already exists, nothing to do")
                return 0
    finally:
        await dispose_engine()

    print(f"Created admin {user.email} (id={user.user_id})")
    return 0


def main() -> None:
    sys.exit(asyncio.run(seed_admin()))


if __name__ == "__main__":
    main()
