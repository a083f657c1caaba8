"""Schemas for national-id records and verification logs."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from spine.db.models import IdentityVerificationStatus, VerificationOutcome, VerificationType


class NationalIdResponse(BaseModel):
    id: UUID
    owner_id: UUID
    document_type: str
    document_number: str
    issuing_country: str
    family_name: str
    given_name: str
    date_of_birth: date
    issue_date: date
    expiry_date: date
    verification_status: IdentityVerificationStatus
    verified_at: datetime | None
    verified_by: UUID | None
    created_at: datetime


class NationalIdListResponse(BaseModel):
    items: list[NationalIdResponse]
    count: int


class VerificationLogResponse(BaseModel):
    id: UUID
    owner_id: UUID
    national_id_record_id: UUID | None
    verification_type: VerificationType
    status: VerificationOutcome
    confidence_score: Decimal | None
    failure_reason: str | None
    provider: str | None
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
    created_at: datetime | None


class VerificationLogListResponse(BaseModel):
    items: list[VerificationLogResponse]
    count: int


class VerificationRecordRequest(BaseModel):
    """One completed verification check against a national-id record."""

    verification_type: VerificationType
    outcome: VerificationOutcome
    new_status: IdentityVerificationStatus | None = None
    confidence_score: Decimal | None = Field(default=None, ge=0, le=1)
    failure_reason: str | None = None
    provider: str | None = Field(default=None, max_length=100)
    provider_response: dict[str, Any] | None = None


class VerificationRecordResponse(BaseModel):
    record: NationalIdResponse
    log: VerificationLogResponse
