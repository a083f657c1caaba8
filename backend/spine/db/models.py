"""
SQLAlchemy ORM models for the shared identity database.

Every table listed here is protected by the policy rule set; each model
declares its ``__resource_type__`` so the enforcement layer can find the
rule that governs it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship

from spine.core.security.resources import ResourceType
from spine.core.security.roles import UserRole


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON().with_variant(JSONB(), "postgresql"),
    }


# =============================================================================
# Enums
# =============================================================================


class OrganizationStatus(str, PyEnum):
    """Lifecycle status for organizations."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class CertificateStatus(str, PyEnum):
    """Certificate lifecycle status."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    SUSPENDED = "suspended"
    PENDING = "pending"


class IdentityVerificationStatus(str, PyEnum):
    """Verification state of a national-id record."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class VerificationType(str, PyEnum):
    """Kinds of identity verification checks."""

    DOCUMENT_OCR = "document_ocr"
    FACE_MATCH = "face_match"
    LIVENESS_CHECK = "liveness_check"
    DATABASE_CHECK = "database_check"
    MANUAL_REVIEW = "manual_review"
    CERTIFICATE_VERIFY = "certificate_verify"
    NFC_READ = "nfc_read"


class VerificationOutcome(str, PyEnum):
    """Result of a single verification check."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    TIMEOUT = "timeout"
    MANUAL_REVIEW = "manual_review"


def _values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


# =============================================================================
# Organizations
# =============================================================================


class Organization(Base):
    """Tenant boundary; principals are matched to one by email domain."""

    __tablename__ = "organizations"
    __resource_type__: ClassVar[ResourceType] = ResourceType.ORGANIZATION

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    registration_number: Mapped[str | None] = mapped_column(String(50), unique=True)
    domain: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        comment="Email domain used for automatic principal matching",
    )
    status: Mapped[OrganizationStatus] = mapped_column(
        Enum(OrganizationStatus, name="organization_status", values_callable=_values),
        default=OrganizationStatus.ACTIVE,
        nullable=False,
    )
    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # No delete cascade: the database sets members' org_id to NULL.
    members: Mapped[list["User"]] = relationship(
        back_populates="organization",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_organizations_domain", "domain"),
        Index("idx_organizations_status", "status"),
    )


# =============================================================================
# Identity
# =============================================================================


class User(Base):
    """
    Internal identity profile bound to exactly one authenticated principal.

    ``role`` is never NULL. ``org_id`` is NULL for unaffiliated identities.
    """

    __tablename__ = "users"
    __resource_type__: ClassVar[ResourceType] = ResourceType.IDENTITY

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    auth_user_id: Mapped[UUID] = mapped_column(
        unique=True,
        nullable=False,
        comment="Authenticated principal id issued by the auth boundary",
    )

    # Identity
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    full_name: Mapped[str | None] = mapped_column(String(255))
    display_name: Mapped[str | None] = mapped_column(String(100))
    avatar_url: Mapped[str | None] = mapped_column(Text)
    register_number: Mapped[str | None] = mapped_column(
        String(10), comment="Civil registration number"
    )
    national_id: Mapped[str | None] = mapped_column(String(20))

    # Organization
    org_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        active_history=True,
    )
    department: Mapped[str | None] = mapped_column(String(255))
    position: Mapped[str | None] = mapped_column(String(255))

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"),
        default=UserRole.CITIZEN,
        nullable=False,
        active_history=True,
    )

    # MFA summary flags (denormalized for quick checks)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mfa_method: Mapped[str | None] = mapped_column(String(20))

    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    last_sign_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    organization: Mapped[Organization | None] = relationship(back_populates="members")

    __table_args__ = (
        Index("idx_users_auth_user_id", "auth_user_id"),
        Index("idx_users_email", "email"),
        Index("idx_users_org_id", "org_id"),
        Index("idx_users_role", "role"),
    )


# Columns an identity may change on its own row. Role, organization and the
# principal link are reassigned only by privileged actors.
PROFILE_FIELDS: frozenset[str] = frozenset(
    {
        "phone",
        "full_name",
        "display_name",
        "avatar_url",
        "register_number",
        "national_id",
        "department",
        "position",
        "mfa_enabled",
        "mfa_method",
        "attrs",
        "last_sign_in_at",
    }
)


class OwnedResourceMixin:
    """
    Mixin for rows owned by exactly one identity.

    ``__owner_ondelete__`` selects the referential action on the owner FK:
    personal security artifacts go with their owner, audit records block
    the owner's deletion.
    """

    __owner_ondelete__: ClassVar[str] = "RESTRICT"

    @declared_attr
    def user_id(cls) -> Mapped[UUID]:
        return mapped_column(
            ForeignKey("users.id", ondelete=cls.__owner_ondelete__),
            nullable=False,
            index=True,
            active_history=True,
        )


# =============================================================================
# Personal Security Artifacts
# =============================================================================


class UserMfaSettings(OwnedResourceMixin, Base):
    """Per-identity MFA configuration."""

    __tablename__ = "user_mfa_settings"
    __resource_type__: ClassVar[ResourceType] = ResourceType.MFA_SETTINGS
    __owner_ondelete__ = "CASCADE"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    totp_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    passkey_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    push_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    require_mfa: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    preferred_method: Mapped[str | None] = mapped_column(String(20), default="totp")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (UniqueConstraint("user_id", name="uq_user_mfa_settings_user"),)


class UserTotp(OwnedResourceMixin, Base):
    """One-time-credential secret, stored as opaque ciphertext."""

    __tablename__ = "user_totp"
    __resource_type__: ClassVar[ResourceType] = ResourceType.TOTP_SECRET
    __owner_ondelete__ = "CASCADE"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    encryption_iv: Mapped[str] = mapped_column(Text, nullable=False)
    encryption_tag: Mapped[str] = mapped_column(Text, nullable=False)
    algorithm: Mapped[str] = mapped_column(String(10), default="SHA1", nullable=False)
    digits: Mapped[int] = mapped_column(Integer, default=6, nullable=False)
    period: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (UniqueConstraint("user_id", name="uq_user_totp_user"),)


class MfaRecoveryCode(OwnedResourceMixin, Base):
    """One-time recovery code, stored as a hash only."""

    __tablename__ = "mfa_recovery_codes"
    __resource_type__: ClassVar[ResourceType] = ResourceType.RECOVERY_CODE
    __owner_ondelete__ = "CASCADE"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code_hash: Mapped[str] = mapped_column(Text, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    used_ip: Mapped[str | None] = mapped_column(String(45))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (Index("idx_recovery_codes_unused", "user_id", "is_used"),)


# =============================================================================
# Digital Signature Audit Trail
# =============================================================================


class Certificate(OwnedResourceMixin, Base):
    """X.509 signing certificate issued to an identity."""

    __tablename__ = "gesign_certificates"
    __resource_type__: ClassVar[ResourceType] = ResourceType.CERTIFICATE

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    serial_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    common_name: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_dn: Mapped[str] = mapped_column(Text, nullable=False)
    issuer_dn: Mapped[str] = mapped_column(Text, nullable=False)
    certificate_pem: Mapped[str] = mapped_column(Text, nullable=False)
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    key_algorithm: Mapped[str] = mapped_column(String(20), default="RSA", nullable=False)
    key_size: Mapped[int] = mapped_column(Integer, default=2048, nullable=False)
    not_before: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    not_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revocation_reason: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[CertificateStatus] = mapped_column(
        Enum(CertificateStatus, name="certificate_status", values_callable=_values),
        default=CertificateStatus.ACTIVE,
        nullable=False,
    )
    sign_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_certificates_status", "status"),
        Index("idx_certificates_not_after", "not_after"),
    )


class SigningLog(OwnedResourceMixin, Base):
    """Audit record of one document signing operation."""

    __tablename__ = "gesign_signing_logs"
    __resource_type__: ClassVar[ResourceType] = ResourceType.SIGNING_LOG

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    certificate_id: Mapped[UUID] = mapped_column(
        ForeignKey("gesign_certificates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    document_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    document_name: Mapped[str | None] = mapped_column(String(500))
    document_type: Mapped[str | None] = mapped_column(String(50))
    document_size_bytes: Mapped[int | None] = mapped_column(BigInteger)
    signature_algorithm: Mapped[str] = mapped_column(
        String(50), default="SHA256withRSA", nullable=False
    )
    signature_value: Mapped[str] = mapped_column(Text, nullable=False)
    signature_format: Mapped[str] = mapped_column(String(20), default="CAdES", nullable=False)
    timestamp_token: Mapped[str | None] = mapped_column(Text)
    timestamp_authority: Mapped[str | None] = mapped_column(String(255))
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    verification_status: Mapped[str] = mapped_column(String(20), default="valid", nullable=False)
    client_ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(100))
    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_signing_logs_document_hash", "document_hash"),
        Index("idx_signing_logs_created_at", "created_at"),
    )


# =============================================================================
# Electronic Identity Verification Trail
# =============================================================================


class NationalIdMetadata(OwnedResourceMixin, Base):
    """Identity-document metadata; sensitive fields arrive pre-encrypted."""

    __tablename__ = "eid_national_id_metadata"
    __resource_type__: ClassVar[ResourceType] = ResourceType.NATIONAL_ID

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document_type: Mapped[str] = mapped_column(String(20), default="national_id", nullable=False)
    document_number: Mapped[str] = mapped_column(String(50), nullable=False)
    issuing_country: Mapped[str] = mapped_column(String(3), default="MNG", nullable=False)
    issuing_authority: Mapped[str | None] = mapped_column(String(255))
    family_name: Mapped[str] = mapped_column(String(255), nullable=False)
    given_name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str | None] = mapped_column(String(10))
    nationality: Mapped[str | None] = mapped_column(String(3), default="MNG")
    register_number: Mapped[str | None] = mapped_column(String(10))
    father_name: Mapped[str | None] = mapped_column(String(255))
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    verification_status: Mapped[IdentityVerificationStatus] = mapped_column(
        Enum(
            IdentityVerificationStatus,
            name="identity_verification_status",
            values_callable=_values,
        ),
        default=IdentityVerificationStatus.PENDING,
        nullable=False,
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verified_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    front_image_path: Mapped[str | None] = mapped_column(Text)
    back_image_path: Mapped[str | None] = mapped_column(Text)
    selfie_image_path: Mapped[str | None] = mapped_column(Text)
    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "document_type", name="uq_national_id_user_doctype"),
        Index("idx_national_id_document_number", "document_number"),
        Index("idx_national_id_verification_status", "verification_status"),
    )


# Columns an OPERATOR+ of the owner's organization may write while working a
# verification case.
VERIFICATION_WORKFLOW_FIELDS: frozenset[str] = frozenset(
    {"verification_status", "verified_at", "verified_by"}
)


class VerificationLog(OwnedResourceMixin, Base):
    """Audit record of one identity verification check."""

    __tablename__ = "eid_verification_logs"
    __resource_type__: ClassVar[ResourceType] = ResourceType.VERIFICATION_LOG

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    national_id_record_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("eid_national_id_metadata.id", ondelete="SET NULL"),
        index=True,
    )
    verification_type: Mapped[VerificationType] = mapped_column(
        Enum(VerificationType, name="verification_type", values_callable=_values),
        nullable=False,
    )
    status: Mapped[VerificationOutcome] = mapped_column(
        Enum(VerificationOutcome, name="verification_outcome", values_callable=_values),
        default=VerificationOutcome.PENDING,
        nullable=False,
    )
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(5, 4))
    failure_reason: Mapped[str | None] = mapped_column(Text)
    provider: Mapped[str | None] = mapped_column(String(100))
    provider_request_id: Mapped[str | None] = mapped_column(String(255))
    provider_response: Mapped[dict[str, Any] | None] = mapped_column()
    client_ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    attrs: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_verification_logs_type", "verification_type"),
        Index("idx_verification_logs_status", "status"),
        Index("idx_verification_logs_created_at", "created_at"),
    )


PROTECTED_MODELS: tuple[type[Base], ...] = (
    Organization,
    User,
    UserMfaSettings,
    UserTotp,
    MfaRecoveryCode,
    Certificate,
    SigningLog,
    NationalIdMetadata,
    VerificationLog,
)

# Owned rows whose existence blocks deletion of their owner.
AUDIT_MODELS: tuple[type[Base], ...] = (
    Certificate,
    SigningLog,
    NationalIdMetadata,
    VerificationLog,
)
