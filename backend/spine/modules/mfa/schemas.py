"""Schemas for MFA configuration."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class MfaSettingsUpdateRequest(BaseModel):
    totp_enabled: bool | None = None
    passkey_enabled: bool | None = None
    push_enabled: bool | None = None
    require_mfa: bool | None = None
    preferred_method: str | None = Field(default=None, max_length=20)


class MfaSettingsResponse(BaseModel):
    identity_id: UUID
    totp_enabled: bool
    passkey_enabled: bool
    push_enabled: bool
    require_mfa: bool
    preferred_method: str | None
    updated_at: datetime | None = None


class RecoveryCodeStatus(BaseModel):
    """Recovery code state without the code material."""

    id: UUID
    is_used: bool
    used_at: datetime | None
    created_at: datetime


class RecoveryCodeStatusResponse(BaseModel):
    items: list[RecoveryCodeStatus]
    remaining: int
