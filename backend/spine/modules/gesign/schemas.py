"""Schemas for certificates and signing logs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from spine.db.models import CertificateStatus


class CertificateResponse(BaseModel):
    id: UUID
    owner_id: UUID
    serial_number: str
    common_name: str
    subject_dn: str
    issuer_dn: str
    key_algorithm: str
    key_size: int
    not_before: datetime
    not_after: datetime
    status: CertificateStatus
    is_revoked: bool
    revoked_at: datetime | None
    revocation_reason: str | None
    sign_count: int
    last_used_at: datetime | None


class CertificateListResponse(BaseModel):
    items: list[CertificateResponse]
    count: int


class RevocationRequest(BaseModel):
    """Revocation request; ``reason`` is an RFC 5280 CRLReason name."""

    reason: str = Field(default="unspecified", max_length=50)


class SigningLogResponse(BaseModel):
    id: UUID
    owner_id: UUID
    certificate_id: UUID
    document_hash: str
    document_name: str | None
    document_type: str | None
    signature_algorithm: str
    signature_format: str
    is_valid: bool
    verification_status: str
    created_at: datetime


class SigningLogListResponse(BaseModel):
    items: list[SigningLogResponse]
    count: int
