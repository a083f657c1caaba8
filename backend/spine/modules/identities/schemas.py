"""Schemas for identity profiles."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class IdentityResponse(BaseModel):
    """Identity profile as returned to callers allowed to see it."""

    id: UUID
    email: str
    full_name: str | None
    display_name: str | None
    phone: str | None
    avatar_url: str | None
    department: str | None
    position: str | None
    org_id: UUID | None
    role: str
    is_active: bool
    is_verified: bool
    mfa_enabled: bool
    mfa_method: str | None
    created_at: datetime
    updated_at: datetime


class IdentityListResponse(BaseModel):
    items: list[IdentityResponse]
    count: int


class ProfileUpdateRequest(BaseModel):
    """Patch request for self-service profile fields."""

    phone: str | None = Field(default=None, max_length=20)
    full_name: str | None = Field(default=None, max_length=255)
    display_name: str | None = Field(default=None, max_length=100)
    avatar_url: str | None = None
    register_number: str | None = Field(default=None, max_length=10)
    national_id: str | None = Field(default=None, max_length=20)
    department: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=255)


class RoleAssignmentRequest(BaseModel):
    role: str = Field(..., min_length=1, max_length=32)


class OrganizationAssignmentRequest(BaseModel):
    org_id: UUID | None = None


class IdentityCreateRequest(BaseModel):
    """Administrative creation of an identity outside the provisioning hook."""

    principal_id: UUID
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    full_name: str | None = Field(default=None, max_length=255)
    org_id: UUID | None = None
    role: str = "CITIZEN"
