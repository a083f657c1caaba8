"""Schemas for the principal-created hook."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from spine.modules.provisioning.service import ProvisioningOutcome


class PrincipalCreatedRequest(BaseModel):
    """Payload sent by the authentication boundary when it creates a principal."""

    principal_id: UUID
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProvisioningResponse(BaseModel):
    outcome: ProvisioningOutcome
    identity_id: UUID | None = None
