"""Service layer for organizations."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.logging import get_logger
from spine.db.models import Organization, OrganizationStatus

logger = get_logger(__name__)

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)(?:[a-z0-9-]{1,63}\.)+[a-z0-9-]{2,63}$",
    re.IGNORECASE,
)

_MUTABLE_FIELDS = frozenset({"name", "registration_number", "domain", "status", "attrs"})


class OrganizationError(ValueError):
    """Raised for invalid organization operations."""


class OrganizationService:
    """Directory operations for organizations.

    Any resolved identity may read the directory; writes are reserved to
    the top tier and enforced at flush time.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def normalize_domain(domain: str) -> str:
        """Normalize and validate an email domain."""
        raw = domain.strip().lower().rstrip(".")
        if not raw:
            raise OrganizationError("domain is required")
        if "@" in raw:
            raise OrganizationError("domain must not include a mailbox")
        if "://" in raw or "/" in raw or ":" in raw:
            raise OrganizationError("domain must be a bare hostname")
        if not _DOMAIN_RE.fullmatch(raw):
            raise OrganizationError("domain is not a valid DNS name")
        for label in raw.split("."):
            if label.startswith("-") or label.endswith("-"):
                raise OrganizationError("domain labels cannot start or end with '-'")
        return raw

    async def list_organizations(
        self,
        *,
        status: OrganizationStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Organization]:
        query = select(Organization)
        if status is not None:
            query = query.where(Organization.status == status)
        result = await self._session.execute(
            query.order_by(Organization.name, Organization.id).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def get_organization(self, org_id: UUID) -> Organization | None:
        result = await self._session.execute(
            select(Organization).where(Organization.id == org_id)
        )
        return result.scalar_one_or_none()

    async def get_by_domain(self, domain: str) -> Organization | None:
        result = await self._session.execute(
            select(Organization).where(Organization.domain == self.normalize_domain(domain))
        )
        return result.scalar_one_or_none()

    async def create_organization(
        self,
        *,
        name: str,
        domain: str | None = None,
        registration_number: str | None = None,
        attrs: Mapping[str, Any] | None = None,
    ) -> Organization:
        name = name.strip()
        if not name:
            raise OrganizationError("name is required")
        row = Organization(
            name=name,
            domain=self.normalize_domain(domain) if domain else None,
            registration_number=registration_number,
            status=OrganizationStatus.ACTIVE,
            attrs=dict(attrs or {}),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except IntegrityError as exc:
            raise OrganizationError("domain or registration number already registered") from exc
        logger.info("organization_created", org_id=str(row.id), domain=row.domain)
        return row

    async def update_organization(
        self, org_id: UUID, changes: Mapping[str, Any]
    ) -> Organization | None:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise OrganizationError(f"not an organization field: {', '.join(sorted(unknown))}")

        row = await self.get_organization(org_id)
        if row is None:
            return None
        try:
            async with self._session.begin_nested():
                for key, value in changes.items():
                    if key == "domain" and value is not None:
                        value = self.normalize_domain(value)
                    if key == "name":
                        value = (value or "").strip()
                        if not value:
                            raise OrganizationError("name is required")
                    setattr(row, key, value)
                await self._session.flush()
        except IntegrityError as exc:
            raise OrganizationError("domain or registration number already registered") from exc
        return row

    async def delete_organization(self, org_id: UUID) -> bool:
        """Delete an organization; its members become unaffiliated."""
        row = await self.get_organization(org_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        logger.info("organization_deleted", org_id=str(org_id))
        return True
