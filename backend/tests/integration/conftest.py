"""
Fixtures for tests against a migrated PostgreSQL database.

These run only when ``TEST_DATABASE_URL`` points at PostgreSQL; the schema
is rebuilt from the Alembic migrations so native row security, the
identity helper functions and the column allowlist triggers are all live.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from spine.core.config import get_settings

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")

BACKEND_DIR = Path(__file__).resolve().parents[2]


def _alembic_config() -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "spine" / "db" / "migrations"))
    return config


@pytest_asyncio.fixture
async def test_engine(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[AsyncEngine, None]:
    """Migrated PostgreSQL database, rebuilt for each test."""
    if not TEST_DATABASE_URL.startswith("postgresql"):
        pytest.skip("TEST_DATABASE_URL does not point at PostgreSQL")

    monkeypatch.setenv("DATABASE_URL", TEST_DATABASE_URL)
    monkeypatch.setenv("NATIVE_RLS_ENABLED", "true")
    get_settings.cache_clear()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.execute(text("DROP SCHEMA public CASCADE;"))
        await conn.execute(text("CREATE SCHEMA public;"))

    # env.py drives its own event loop.
    await asyncio.to_thread(command.upgrade, _alembic_config(), "head")

    async with engine.begin() as conn:
        # The seeded fixtures bring their own home organization.
        await conn.execute(text("DELETE FROM public.organizations"))

    yield engine

    await engine.dispose()
