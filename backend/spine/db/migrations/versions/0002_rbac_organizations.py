"""Organization-scoped RBAC with native row-level security

Adds the role enum and organizations, converts the legacy free-text role,
installs the identity helper functions and maps every policy rule onto a
native row-security policy.

Revision ID: 0002_rbac_organizations
Revises: 0001_initial
Create Date: 2026-09-21
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from spine.core.config import get_settings
from spine.core.security.policies import render_policy_ddl
from spine.core.security.roles import UserRole
from spine.db.models import PROFILE_FIELDS, PROTECTED_MODELS, VERIFICATION_WORKFLOW_FIELDS, User
from spine.db.role_migration import drop_legacy_organization_column, migrate_role_column

# revision identifiers, used by Alembic.
revision = "0002_rbac_organizations"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


AUTHENTICATED_ROLE = "authenticated"
SERVICE_ROLE = "spine_service"

def _home_organization() -> tuple[str, str]:
    """Name and normalized domain of the seeded home organization."""
    settings = get_settings()
    return settings.home_organization_name, settings.home_domain

PROTECTED_TABLES = tuple(model.__tablename__ for model in PROTECTED_MODELS)


def _profile_columns() -> list[str]:
    mapper = sa.inspect(User)
    return sorted(mapper.attrs[key].columns[0].name for key in PROFILE_FIELDS)


def _create_roles() -> None:
    op.execute(
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{AUTHENTICATED_ROLE}') THEN
                CREATE ROLE {AUTHENTICATED_ROLE} NOLOGIN;
            END IF;
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{SERVICE_ROLE}') THEN
                CREATE ROLE {SERVICE_ROLE} BYPASSRLS NOLOGIN;
            END IF;
            EXECUTE format('GRANT {AUTHENTICATED_ROLE} TO %I', current_user);
            EXECUTE format('GRANT {SERVICE_ROLE} TO %I', current_user);
        END
        $$;
        """
    )


def _create_identity_functions() -> None:
    op.execute(
        """
CREATE OR REPLACE FUNCTION public.current_user_info()
RETURNS TABLE(user_id UUID, org_id UUID, role public.user_role)
LANGUAGE sql STABLE SECURITY DEFINER
SET search_path = public
AS $$
    SELECT u.id, u.org_id, u.role
    FROM public.users u
    WHERE u.auth_user_id = NULLIF(current_setting('app.current_principal', true), '')::uuid
    LIMIT 1;
$$;
        """
    )
    op.execute(
        """
CREATE OR REPLACE FUNCTION public.identity_org_id(identity UUID)
RETURNS UUID
LANGUAGE sql STABLE SECURITY DEFINER
SET search_path = public
AS $$
    SELECT u.org_id FROM public.users u WHERE u.id = identity;
$$;
        """
    )
    op.execute(
        """
CREATE OR REPLACE FUNCTION public.identity_exists(identity UUID)
RETURNS BOOLEAN
LANGUAGE sql STABLE SECURITY DEFINER
SET search_path = public
AS $$
    SELECT EXISTS (SELECT 1 FROM public.users u WHERE u.id = identity);
$$;
        """
    )
    # Row security cannot restrict columns per policy branch, so the
    # column allowlists of field-restricted updates are enforced here.
    op.execute(
        f"""
CREATE OR REPLACE FUNCTION public.enforce_update_allowlist()
RETURNS TRIGGER
LANGUAGE plpgsql
SET search_path = public
AS $$
DECLARE
    _role public.user_role;
    _allowed text[];
BEGIN
    IF current_user <> '{AUTHENTICATED_ROLE}' THEN
        RETURN NEW;
    END IF;
    SELECT cui.role INTO _role FROM public.current_user_info() cui;
    IF _role IS NOT NULL AND _role >= TG_ARGV[0]::public.user_role THEN
        RETURN NEW;
    END IF;
    _allowed := TG_ARGV[1:TG_NARGS - 1] || ARRAY['updated_at'];
    IF (to_jsonb(NEW) - _allowed) IS DISTINCT FROM (to_jsonb(OLD) - _allowed) THEN
        RAISE EXCEPTION 'Operation not permitted' USING ERRCODE = '42501';
    END IF;
    RETURN NEW;
END;
$$;
        """
    )


def _create_allowlist_trigger(table: str, minimum: UserRole, columns: list[str]) -> None:
    arguments = ", ".join(f"'{value}'" for value in [minimum.name, *columns])
    op.execute(
        f"""
        CREATE TRIGGER {table}_update_allowlist
        BEFORE UPDATE ON public.{table}
        FOR EACH ROW EXECUTE FUNCTION public.enforce_update_allowlist({arguments})
        """
    )


def upgrade() -> None:
    bind = op.get_bind()

    user_role = postgresql.ENUM(*(role.name for role in UserRole), name="user_role")
    user_role.create(bind, checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("registration_number", sa.String(length=50), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "suspended", "inactive", name="organization_status"),
            server_default="active",
            nullable=False,
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_number"),
        sa.UniqueConstraint("domain"),
    )
    op.create_index("idx_organizations_domain", "organizations", ["domain"])
    op.create_index("idx_organizations_status", "organizations", ["status"])
    op.execute(
        """
        CREATE TRIGGER set_organizations_updated_at
        BEFORE UPDATE ON public.organizations
        FOR EACH ROW EXECUTE FUNCTION public.handle_updated_at()
        """
    )

    name, domain = _home_organization()
    op.execute(
        sa.text(
            "INSERT INTO public.organizations (name, domain, status) "
            "VALUES (:name, :domain, 'active') ON CONFLICT (domain) DO NOTHING"
        ).bindparams(name=name, domain=domain)
    )

    op.add_column(
        "users",
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    op.create_index("idx_users_org_id", "users", ["org_id"])

    migrate_role_column(bind)
    drop_legacy_organization_column(bind)

    _create_roles()
    _create_identity_functions()

    op.execute(f"GRANT USAGE ON SCHEMA public TO {AUTHENTICATED_ROLE}, {SERVICE_ROLE}")
    for table in PROTECTED_TABLES:
        op.execute(f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"GRANT SELECT, INSERT, UPDATE, DELETE ON public.{table} "
            f"TO {AUTHENTICATED_ROLE}, {SERVICE_ROLE}"
        )

    for statement in render_policy_ddl(AUTHENTICATED_ROLE):
        op.execute(statement)

    _create_allowlist_trigger("users", UserRole.ORG_ADMIN, _profile_columns())
    _create_allowlist_trigger(
        "eid_national_id_metadata",
        UserRole.SUPER_ADMIN,
        sorted(VERIFICATION_WORKFLOW_FIELDS),
    )


def downgrade() -> None:
    op.execute(
        "DROP TRIGGER IF EXISTS eid_national_id_metadata_update_allowlist "
        "ON public.eid_national_id_metadata"
    )
    op.execute("DROP TRIGGER IF EXISTS users_update_allowlist ON public.users")

    for statement in render_policy_ddl(AUTHENTICATED_ROLE):
        if statement.startswith("DROP POLICY"):
            op.execute(statement)

    for table in PROTECTED_TABLES:
        if table == "organizations":
            continue
        op.execute(f"ALTER TABLE public.{table} DISABLE ROW LEVEL SECURITY")
        op.execute(
            f"REVOKE SELECT, INSERT, UPDATE, DELETE ON public.{table} "
            f"FROM {AUTHENTICATED_ROLE}, {SERVICE_ROLE}"
        )

    op.execute("DROP FUNCTION IF EXISTS public.enforce_update_allowlist()")
    op.execute("DROP FUNCTION IF EXISTS public.identity_exists(UUID)")
    op.execute("DROP FUNCTION IF EXISTS public.identity_org_id(UUID)")
    op.execute("DROP FUNCTION IF EXISTS public.current_user_info()")

    op.add_column("users", sa.Column("organization", sa.String(length=255), nullable=True))
    op.execute("ALTER TABLE public.users ALTER COLUMN role DROP DEFAULT")
    op.execute("ALTER TABLE public.users ALTER COLUMN role TYPE VARCHAR(50) USING role::text")
    op.execute("ALTER TABLE public.users ALTER COLUMN role SET DEFAULT 'user'")

    op.drop_index("idx_users_org_id", table_name="users")
    op.drop_column("users", "org_id")

    op.execute("DROP TRIGGER IF EXISTS set_organizations_updated_at ON public.organizations")
    op.drop_table("organizations")
    op.execute("DROP TYPE IF EXISTS organization_status")
    op.execute("DROP TYPE IF EXISTS user_role")
