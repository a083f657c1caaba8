"""
Identity provisioning on first contact.

When the authentication boundary creates a principal it notifies this
service, which creates the matching identity row and assigns organization
and role from the principal's email domain:

* the home domain gets the top tier and the home organization;
* a domain registered by an organization gets that organization and the
  lowest tier;
* any other domain gets the lowest tier and no organization.

Provisioning runs under service bypass because no rule could authorize a
principal before its identity exists. It is idempotent: a principal that
already has an identity is left untouched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.config import Settings, get_settings
from spine.core.errors import ProvisioningConflict, ProvisioningError
from spine.core.logging import get_logger
from spine.core.security.enforcement import service_bypass
from spine.core.security.roles import LOWEST_TIER, TOP_TIER, UserRole
from spine.db.models import Organization, User

logger = get_logger(__name__)

_BYPASS_REASON = "identity_provisioning"


@dataclass(frozen=True)
class PrincipalCreated:
    """A principal was created by the authentication boundary."""

    principal_id: UUID
    email: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


class ProvisioningOutcome(str, Enum):
    CREATED = "created"
    ALREADY_PROVISIONED = "already_provisioned"
    FAILED = "failed"


@dataclass(frozen=True)
class ProvisioningResult:
    outcome: ProvisioningOutcome
    identity_id: UUID | None = None


def extract_domain(email: str) -> str:
    """Domain part of an address, lowercased; empty if there is none."""
    parts = email.strip().split("@")
    if len(parts) < 2:
        return ""
    return parts[1].strip().lower()


def derive_full_name(email: str, metadata: Mapping[str, Any]) -> str:
    """Display name from principal metadata, falling back to the address local part."""
    for key in ("full_name", "name"):
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return email.strip().split("@")[0]


class IdentityProvisioner:
    """Creates identity rows for newly created principals."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()

    async def handle_principal_created(self, event: PrincipalCreated) -> ProvisioningResult:
        async with service_bypass(self._session, reason=_BYPASS_REASON):
            existing = await self._existing_identity(event.principal_id)
            if existing is not None:
                logger.info(
                    "identity_already_provisioned",
                    principal_id=str(event.principal_id),
                    identity_id=str(existing),
                )
                return ProvisioningResult(ProvisioningOutcome.ALREADY_PROVISIONED, existing)

            try:
                org_id, role = await self._assignment(extract_domain(event.email))
                identity = await self._insert_identity(event, org_id, role)
            except ProvisioningConflict:
                existing = await self._existing_identity(event.principal_id)
                logger.info(
                    "provisioning_conflict_ignored",
                    principal_id=str(event.principal_id),
                )
                return ProvisioningResult(ProvisioningOutcome.ALREADY_PROVISIONED, existing)
            except SQLAlchemyError as exc:
                return self._failed(event, exc)

        logger.info(
            "identity_provisioned",
            principal_id=str(event.principal_id),
            identity_id=str(identity.id),
            role=identity.role.name,
            org_id=str(identity.org_id) if identity.org_id else None,
        )
        return ProvisioningResult(ProvisioningOutcome.CREATED, identity.id)

    async def _existing_identity(self, principal_id: UUID) -> UUID | None:
        result = await self._session.execute(
            select(User.id).where(User.auth_user_id == principal_id)
        )
        return result.scalar_one_or_none()

    async def _organization_by_domain(self, domain: str) -> UUID | None:
        result = await self._session.execute(
            select(Organization.id).where(Organization.domain == domain).limit(1)
        )
        return result.scalar_one_or_none()

    async def _assignment(self, domain: str) -> tuple[UUID | None, UserRole]:
        if not domain:
            return None, LOWEST_TIER
        org_id = await self._organization_by_domain(domain)
        if domain == self._settings.home_domain:
            if org_id is None:
                logger.warning("home_organization_missing", domain=domain)
            return org_id, TOP_TIER
        return org_id, LOWEST_TIER

    async def _insert_identity(
        self,
        event: PrincipalCreated,
        org_id: UUID | None,
        role: UserRole,
    ) -> User:
        identity = User(
            auth_user_id=event.principal_id,
            email=event.email.strip(),
            full_name=derive_full_name(event.email, event.metadata),
            org_id=org_id,
            role=role,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(identity)
                await self._session.flush()
        except IntegrityError as exc:
            # A concurrent call may have provisioned the same principal.
            if await self._existing_identity(event.principal_id) is not None:
                raise ProvisioningConflict(str(event.principal_id)) from exc
            raise
        return identity

    def _failed(self, event: PrincipalCreated, exc: Exception) -> ProvisioningResult:
        logger.error(
            "identity_provisioning_failed",
            principal_id=str(event.principal_id),
            error_type=type(exc).__name__,
        )
        if self._settings.provisioning_failure_mode == "raise":
            raise ProvisioningError("Identity provisioning failed") from exc
        return ProvisioningResult(ProvisioningOutcome.FAILED)
