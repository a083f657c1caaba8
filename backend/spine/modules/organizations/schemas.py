"""Schemas for the organization directory."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from spine.db.models import OrganizationStatus


class OrganizationCreateRequest(BaseModel):
    """Create request for an organization."""

    name: str = Field(..., min_length=1, max_length=255)
    domain: str | None = Field(default=None, max_length=255)
    registration_number: str | None = Field(default=None, max_length=50)
    metadata: dict[str, Any] = Field(default_factory=dict)


class OrganizationUpdateRequest(BaseModel):
    """Patch request for mutable organization fields."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    domain: str | None = Field(default=None, max_length=255)
    registration_number: str | None = Field(default=None, max_length=50)
    status: OrganizationStatus | None = None
    metadata: dict[str, Any] | None = None


class OrganizationResponse(BaseModel):
    """Response for organization records."""

    id: UUID
    name: str
    registration_number: str | None
    domain: str | None
    status: OrganizationStatus
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class OrganizationListResponse(BaseModel):
    items: list[OrganizationResponse]
    count: int
