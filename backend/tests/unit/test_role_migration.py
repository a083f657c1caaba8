"""Tests for the legacy role column conversion."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import create_async_engine

from spine.core.errors import MigrationStateConflict
from spine.core.security.roles import UserRole
from spine.db import role_migration
from spine.db.role_migration import (
    LEGACY_ROLE_MAP,
    RoleColumnState,
    build_role_migration_sql,
    classify_role_type,
    detect_role_column_state,
    drop_legacy_organization_column,
    map_legacy_role,
    migrate_role_column,
)


@pytest.mark.parametrize(
    ("legacy", "expected"),
    [
        ("SUPER_ADMIN", UserRole.SUPER_ADMIN),
        ("super_admin", UserRole.SUPER_ADMIN),
        ("admin", UserRole.ORG_ADMIN),
        ("ORG_ADMIN", UserRole.ORG_ADMIN),
        ("operator", UserRole.OPERATOR),
        ("OPERATOR", UserRole.OPERATOR),
        ("user", UserRole.CITIZEN),
        ("Admin", UserRole.CITIZEN),
        ("", UserRole.CITIZEN),
        (None, UserRole.CITIZEN),
    ],
)
def test_map_legacy_role(legacy: str | None, expected: UserRole) -> None:
    assert map_legacy_role(legacy) is expected


def test_classify_role_type() -> None:
    assert classify_role_type(sa.String(50)) is RoleColumnState.LEGACY
    assert classify_role_type(sa.Text()) is RoleColumnState.LEGACY
    assert classify_role_type(sa.Enum(UserRole, name="user_role")) is RoleColumnState.MIGRATED
    with pytest.raises(MigrationStateConflict):
        classify_role_type(sa.Integer())


def test_migration_sql_is_ordered_and_covers_every_legacy_value() -> None:
    statements = build_role_migration_sql()
    assert statements[0].endswith("ADD COLUMN role_new public.user_role NOT NULL DEFAULT 'CITIZEN'")
    assert statements[2] == "ALTER TABLE public.users DROP COLUMN role"
    assert statements[3] == "ALTER TABLE public.users RENAME COLUMN role_new TO role"
    assert "idx_users_role" in statements[4]

    update = statements[1]
    for legacy, role in LEGACY_ROLE_MAP.items():
        assert f"WHEN role = '{legacy}' THEN '{role.name}'::public.user_role" in update
    assert "ELSE 'CITIZEN'::public.user_role" in update


async def _inspect_with(tmp_path, ddl: str, check):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
    try:
        async with engine.begin() as conn:
            await conn.exec_driver_sql(ddl)
            return await conn.run_sync(check)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_detects_free_text_role_column(tmp_path) -> None:
    state = await _inspect_with(
        tmp_path,
        "CREATE TABLE users (id CHAR(32) PRIMARY KEY, role VARCHAR(50) DEFAULT 'user')",
        detect_role_column_state,
    )
    assert state is RoleColumnState.LEGACY


@pytest.mark.asyncio
async def test_interrupted_conversion_is_a_conflict(tmp_path) -> None:
    with pytest.raises(MigrationStateConflict, match="role_new"):
        await _inspect_with(
            tmp_path,
            "CREATE TABLE users (id CHAR(32) PRIMARY KEY, role VARCHAR(50), role_new VARCHAR(20))",
            detect_role_column_state,
        )


@pytest.mark.asyncio
async def test_missing_role_column_is_a_conflict(tmp_path) -> None:
    with pytest.raises(MigrationStateConflict, match="missing"):
        await _inspect_with(
            tmp_path,
            "CREATE TABLE users (id CHAR(32) PRIMARY KEY)",
            detect_role_column_state,
        )


@pytest.mark.asyncio
async def test_drops_legacy_organization_column_once(tmp_path) -> None:
    def _drop_twice(connection) -> tuple[bool, bool]:
        return (
            drop_legacy_organization_column(connection),
            drop_legacy_organization_column(connection),
        )

    first, second = await _inspect_with(
        tmp_path,
        "CREATE TABLE users (id CHAR(32) PRIMARY KEY, organization VARCHAR(255))",
        _drop_twice,
    )
    assert (first, second) == (True, False)


def test_migrate_is_a_no_op_when_already_migrated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        role_migration, "detect_role_column_state", lambda _conn: RoleColumnState.MIGRATED
    )
    connection = MagicMock()
    assert migrate_role_column(connection) is False
    connection.execute.assert_not_called()


def test_migrate_runs_every_statement_on_legacy_schema(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        role_migration, "detect_role_column_state", lambda _conn: RoleColumnState.LEGACY
    )
    connection = MagicMock()
    assert migrate_role_column(connection) is True
    executed = [str(call.args[0]) for call in connection.execute.call_args_list]
    assert executed == build_role_migration_sql()


def test_migrate_propagates_conflicts(monkeypatch: pytest.MonkeyPatch) -> None:
    def _conflict(_conn):
        raise MigrationStateConflict("users.role is missing")

    monkeypatch.setattr(role_migration, "detect_role_column_state", _conflict)
    connection = MagicMock()
    with pytest.raises(MigrationStateConflict):
        migrate_role_column(connection)
    connection.execute.assert_not_called()
