"""
One-shot conversion of the legacy free-text ``users.role`` column.

Earlier schemas stored roles as ``VARCHAR`` with inconsistent spellings
(``admin``, ``super_admin``, ``operator``...). The conversion adds an
enum-typed ``role_new`` column, maps every legacy value onto a canonical
tier, drops the old column and renames the new one into place. Unknown
and missing values become the lowest tier. It runs only while the column
is still free text, so repeating it is a no-op.
"""

from enum import Enum

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from spine.core.errors import MigrationStateConflict
from spine.core.logging import get_logger
from spine.core.security.roles import LOWEST_TIER, UserRole

logger = get_logger(__name__)

# Exact, case-sensitive spellings found in legacy rows.
LEGACY_ROLE_MAP: dict[str, UserRole] = {
    "SUPER_ADMIN": UserRole.SUPER_ADMIN,
    "super_admin": UserRole.SUPER_ADMIN,
    "admin": UserRole.ORG_ADMIN,
    "ORG_ADMIN": UserRole.ORG_ADMIN,
    "OPERATOR": UserRole.OPERATOR,
    "operator": UserRole.OPERATOR,
}

# Free-text organization name superseded by ``users.org_id``.
LEGACY_ORGANIZATION_COLUMN = "organization"


class RoleColumnState(str, Enum):
    """Shape of ``users.role`` as found in the database."""

    LEGACY = "legacy"
    MIGRATED = "migrated"


def map_legacy_role(value: str | None) -> UserRole:
    """Canonical tier for a legacy role value."""
    if value is None:
        return LOWEST_TIER
    return LEGACY_ROLE_MAP.get(value, LOWEST_TIER)


def classify_role_type(column_type: sa.types.TypeEngine) -> RoleColumnState:
    """Classify a reflected ``users.role`` type."""
    # Enum subclasses String, so it must be checked first.
    if isinstance(column_type, sa.Enum):
        return RoleColumnState.MIGRATED
    if isinstance(column_type, sa.String):
        return RoleColumnState.LEGACY
    raise MigrationStateConflict(f"users.role has unexpected type {column_type!r}")


def detect_role_column_state(connection: Connection) -> RoleColumnState:
    """Inspect ``users`` and report whether the conversion still has to run."""
    columns = {column["name"]: column for column in sa.inspect(connection).get_columns("users")}
    if "role_new" in columns:
        raise MigrationStateConflict(
            "users.role_new exists; a previous role conversion was interrupted"
        )
    role = columns.get("role")
    if role is None:
        raise MigrationStateConflict("users.role is missing")
    return classify_role_type(role["type"])


def _case_expression() -> str:
    branches = "\n".join(
        f"        WHEN role = '{legacy}' THEN '{role.name}'::public.user_role"
        for legacy, role in LEGACY_ROLE_MAP.items()
    )
    return (
        "    CASE\n"
        f"{branches}\n"
        f"        ELSE '{LOWEST_TIER.name}'::public.user_role\n"
        "    END"
    )


def build_role_migration_sql() -> list[str]:
    """Ordered PostgreSQL statements performing the conversion."""
    return [
        "ALTER TABLE public.users "
        f"ADD COLUMN role_new public.user_role NOT NULL DEFAULT '{LOWEST_TIER.name}'",
        f"UPDATE public.users SET role_new =\n{_case_expression()}",
        "ALTER TABLE public.users DROP COLUMN role",
        "ALTER TABLE public.users RENAME COLUMN role_new TO role",
        "CREATE INDEX IF NOT EXISTS idx_users_role ON public.users (role)",
    ]


def migrate_role_column(connection: Connection) -> bool:
    """
    Convert ``users.role`` in place if it is still free text.

    Returns True when the conversion ran. The caller owns the transaction,
    so a failure leaves the schema exactly as it was.
    """
    state = detect_role_column_state(connection)
    if state is RoleColumnState.MIGRATED:
        logger.info("role_migration_skipped", reason="already_migrated")
        return False

    for statement in build_role_migration_sql():
        connection.execute(sa.text(statement))
    logger.info("role_migration_applied")
    return True


def drop_legacy_organization_column(connection: Connection) -> bool:
    """Drop the free-text organization column if it is still present."""
    columns = {column["name"] for column in sa.inspect(connection).get_columns("users")}
    if LEGACY_ORGANIZATION_COLUMN not in columns:
        return False
    connection.execute(sa.text(f"ALTER TABLE users DROP COLUMN {LEGACY_ORGANIZATION_COLUMN}"))
    logger.info("legacy_organization_column_dropped")
    return True
