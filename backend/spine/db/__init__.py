"""Database package.

Session helpers live in ``spine.db.session``; they depend on the
enforcement layer, which in turn depends on these models.
"""

from spine.db.models import (
    AUDIT_MODELS,
    PROFILE_FIELDS,
    PROTECTED_MODELS,
    VERIFICATION_WORKFLOW_FIELDS,
    Base,
    Certificate,
    CertificateStatus,
    IdentityVerificationStatus,
    MfaRecoveryCode,
    NationalIdMetadata,
    Organization,
    OrganizationStatus,
    SigningLog,
    User,
    UserMfaSettings,
    UserRole,
    UserTotp,
    VerificationLog,
    VerificationOutcome,
    VerificationType,
)

__all__ = [
    "Base",
    "Organization",
    "OrganizationStatus",
    "User",
    "UserRole",
    "UserMfaSettings",
    "UserTotp",
    "MfaRecoveryCode",
    "Certificate",
    "CertificateStatus",
    "SigningLog",
    "NationalIdMetadata",
    "IdentityVerificationStatus",
    "VerificationLog",
    "VerificationType",
    "VerificationOutcome",
    "PROTECTED_MODELS",
    "AUDIT_MODELS",
    "PROFILE_FIELDS",
    "VERIFICATION_WORKFLOW_FIELDS",
]
