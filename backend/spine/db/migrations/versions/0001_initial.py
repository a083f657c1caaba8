"""Initial schema

Identity profiles with the legacy free-text role, personal security
artifacts, and the signing and identity-verification audit trails.

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-14
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


UPDATED_AT_TABLES = (
    "users",
    "user_mfa_settings",
    "user_totp",
    "gesign_certificates",
    "eid_national_id_metadata",
)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _owner_column(ondelete: str) -> sa.Column:
    return sa.Column(
        "user_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete=ondelete),
        nullable=False,
    )


def _metadata_column() -> sa.Column:
    return sa.Column(
        "metadata",
        postgresql.JSONB(astext_type=sa.Text()),
        server_default=sa.text("'{}'::jsonb"),
        nullable=True,
    )


def _timestamp_columns(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("now()"),
                nullable=False,
            )
        )
    return columns


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')
    op.execute(
        """
CREATE OR REPLACE FUNCTION public.handle_updated_at()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
        """
    )

    certificate_status = sa.Enum(
        "active", "expired", "revoked", "suspended", "pending", name="certificate_status"
    )
    verification_status = sa.Enum(
        "pending",
        "verified",
        "rejected",
        "expired",
        "suspended",
        name="identity_verification_status",
    )
    verification_type = sa.Enum(
        "document_ocr",
        "face_match",
        "liveness_check",
        "database_check",
        "manual_review",
        "certificate_verify",
        "nfc_read",
        name="verification_type",
    )
    verification_outcome = sa.Enum(
        "pending",
        "success",
        "failure",
        "error",
        "timeout",
        "manual_review",
        name="verification_outcome",
    )

    # ------------------------------------------------------------------ users
    op.create_table(
        "users",
        _id_column(),
        sa.Column("auth_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("register_number", sa.String(length=10), nullable=True),
        sa.Column("national_id", sa.String(length=20), nullable=True),
        sa.Column("organization", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("position", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("role", sa.String(length=50), server_default="user", nullable=False),
        sa.Column("mfa_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("mfa_method", sa.String(length=20), nullable=True),
        _metadata_column(),
        sa.Column("last_sign_in_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_user_id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_auth_user_id", "users", ["auth_user_id"])
    op.create_index("idx_users_email", "users", ["email"])
    op.create_index("idx_users_role", "users", ["role"])

    # ------------------------------------------------------ personal security
    op.create_table(
        "user_mfa_settings",
        _id_column(),
        _owner_column("CASCADE"),
        sa.Column("totp_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "passkey_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("push_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("require_mfa", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("preferred_method", sa.String(length=20), server_default="totp"),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_user_mfa_settings_user"),
    )
    op.create_index("ix_user_mfa_settings_user_id", "user_mfa_settings", ["user_id"])

    op.create_table(
        "user_totp",
        _id_column(),
        _owner_column("CASCADE"),
        sa.Column("encrypted_secret", sa.Text(), nullable=False),
        sa.Column("encryption_iv", sa.Text(), nullable=False),
        sa.Column("encryption_tag", sa.Text(), nullable=False),
        sa.Column("algorithm", sa.String(length=10), server_default="SHA1", nullable=False),
        sa.Column("digits", sa.Integer(), server_default=sa.text("6"), nullable=False),
        sa.Column("period", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_user_totp_user"),
    )
    op.create_index("ix_user_totp_user_id", "user_totp", ["user_id"])

    op.create_table(
        "mfa_recovery_codes",
        _id_column(),
        _owner_column("CASCADE"),
        sa.Column("code_hash", sa.Text(), nullable=False),
        sa.Column("is_used", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_ip", sa.String(length=45), nullable=True),
        *_timestamp_columns(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mfa_recovery_codes_user_id", "mfa_recovery_codes", ["user_id"])
    op.create_index("idx_recovery_codes_unused", "mfa_recovery_codes", ["user_id", "is_used"])

    # ------------------------------------------------------------- signatures
    op.create_table(
        "gesign_certificates",
        _id_column(),
        _owner_column("RESTRICT"),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("common_name", sa.String(length=255), nullable=False),
        sa.Column("subject_dn", sa.Text(), nullable=False),
        sa.Column("issuer_dn", sa.Text(), nullable=False),
        sa.Column("certificate_pem", sa.Text(), nullable=False),
        sa.Column("public_key_pem", sa.Text(), nullable=False),
        sa.Column("key_algorithm", sa.String(length=20), server_default="RSA", nullable=False),
        sa.Column("key_size", sa.Integer(), server_default=sa.text("2048"), nullable=False),
        sa.Column("not_before", sa.DateTime(timezone=True), nullable=False),
        sa.Column("not_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.String(length=50), nullable=True),
        sa.Column("status", certificate_status, server_default="active", nullable=False),
        sa.Column("sign_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _metadata_column(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("serial_number"),
    )
    op.create_index("ix_gesign_certificates_user_id", "gesign_certificates", ["user_id"])
    op.create_index("idx_certificates_status", "gesign_certificates", ["status"])
    op.create_index("idx_certificates_not_after", "gesign_certificates", ["not_after"])

    op.create_table(
        "gesign_signing_logs",
        _id_column(),
        _owner_column("RESTRICT"),
        sa.Column(
            "certificate_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("gesign_certificates.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("document_hash", sa.String(length=128), nullable=False),
        sa.Column("document_name", sa.String(length=500), nullable=True),
        sa.Column("document_type", sa.String(length=50), nullable=True),
        sa.Column("document_size_bytes", sa.BigInteger(), nullable=True),
        sa.Column(
            "signature_algorithm",
            sa.String(length=50),
            server_default="SHA256withRSA",
            nullable=False,
        ),
        sa.Column("signature_value", sa.Text(), nullable=False),
        sa.Column(
            "signature_format", sa.String(length=20), server_default="CAdES", nullable=False
        ),
        sa.Column("timestamp_token", sa.Text(), nullable=True),
        sa.Column("timestamp_authority", sa.String(length=255), nullable=True),
        sa.Column("is_valid", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "verification_status", sa.String(length=20), server_default="valid", nullable=False
        ),
        sa.Column("client_ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        _metadata_column(),
        *_timestamp_columns(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_gesign_signing_logs_user_id", "gesign_signing_logs", ["user_id"])
    op.create_index(
        "ix_gesign_signing_logs_certificate_id", "gesign_signing_logs", ["certificate_id"]
    )
    op.create_index("idx_signing_logs_document_hash", "gesign_signing_logs", ["document_hash"])
    op.create_index("idx_signing_logs_created_at", "gesign_signing_logs", ["created_at"])

    # ------------------------------------------------- identity verification
    op.create_table(
        "eid_national_id_metadata",
        _id_column(),
        _owner_column("RESTRICT"),
        sa.Column(
            "document_type", sa.String(length=20), server_default="national_id", nullable=False
        ),
        sa.Column("document_number", sa.String(length=50), nullable=False),
        sa.Column("issuing_country", sa.String(length=3), server_default="MNG", nullable=False),
        sa.Column("issuing_authority", sa.String(length=255), nullable=True),
        sa.Column("family_name", sa.String(length=255), nullable=False),
        sa.Column("given_name", sa.String(length=255), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("gender", sa.String(length=10), nullable=True),
        sa.Column("nationality", sa.String(length=3), server_default="MNG", nullable=True),
        sa.Column("register_number", sa.String(length=10), nullable=True),
        sa.Column("father_name", sa.String(length=255), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column(
            "verification_status", verification_status, server_default="pending", nullable=False
        ),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "verified_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column("front_image_path", sa.Text(), nullable=True),
        sa.Column("back_image_path", sa.Text(), nullable=True),
        sa.Column("selfie_image_path", sa.Text(), nullable=True),
        _metadata_column(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "document_type", name="uq_national_id_user_doctype"),
    )
    op.create_index(
        "ix_eid_national_id_metadata_user_id", "eid_national_id_metadata", ["user_id"]
    )
    op.create_index(
        "idx_national_id_document_number", "eid_national_id_metadata", ["document_number"]
    )
    op.create_index(
        "idx_national_id_verification_status",
        "eid_national_id_metadata",
        ["verification_status"],
    )

    op.create_table(
        "eid_verification_logs",
        _id_column(),
        _owner_column("RESTRICT"),
        sa.Column(
            "national_id_record_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("eid_national_id_metadata.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("verification_type", verification_type, nullable=False),
        sa.Column("status", verification_outcome, server_default="pending", nullable=False),
        sa.Column("confidence_score", sa.Numeric(5, 4), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=100), nullable=True),
        sa.Column("provider_request_id", sa.String(length=255), nullable=True),
        sa.Column("provider_response", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("client_ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        _metadata_column(),
        *_timestamp_columns(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_eid_verification_logs_user_id", "eid_verification_logs", ["user_id"])
    op.create_index(
        "ix_eid_verification_logs_national_id_record_id",
        "eid_verification_logs",
        ["national_id_record_id"],
    )
    op.create_index("idx_verification_logs_type", "eid_verification_logs", ["verification_type"])
    op.create_index("idx_verification_logs_status", "eid_verification_logs", ["status"])
    op.create_index("idx_verification_logs_created_at", "eid_verification_logs", ["created_at"])

    for table_name in UPDATED_AT_TABLES:
        op.execute(
            f"""
            CREATE TRIGGER set_{table_name}_updated_at
            BEFORE UPDATE ON public.{table_name}
            FOR EACH ROW EXECUTE FUNCTION public.handle_updated_at()
            """
        )


def downgrade() -> None:
    for table_name in UPDATED_AT_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS set_{table_name}_updated_at ON public.{table_name}")

    op.drop_table("eid_verification_logs")
    op.drop_table("eid_national_id_metadata")
    op.drop_table("gesign_signing_logs")
    op.drop_table("gesign_certificates")
    op.drop_table("mfa_recovery_codes")
    op.drop_table("user_totp")
    op.drop_table("user_mfa_settings")
    op.drop_table("users")

    for enum_name in (
        "verification_outcome",
        "verification_type",
        "identity_verification_status",
        "certificate_status",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
    op.execute("DROP FUNCTION IF EXISTS public.handle_updated_at()")
