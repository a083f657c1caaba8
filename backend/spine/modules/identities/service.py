"""Service layer for identity profiles.

All reads and writes go through the policy-enforcing session: rows the
caller may not see are simply absent, and forbidden writes raise
``AuthorizationDenied`` at flush time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.errors import OwnerConstraintViolation
from spine.core.logging import get_logger
from spine.core.security.roles import LOWEST_TIER, UserRole
from spine.db.models import PROFILE_FIELDS, Organization, User

logger = get_logger(__name__)


class IdentityError(ValueError):
    """Raised for invalid identity operations."""


class IdentityService:
    """Lookup and lifecycle operations for identities."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_identity(self, identity_id: UUID) -> User | None:
        result = await self._session.execute(select(User).where(User.id == identity_id))
        return result.scalar_one_or_none()

    async def list_identities(
        self,
        *,
        org_id: UUID | None = None,
        role: UserRole | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[User]:
        query = select(User)
        if org_id is not None:
            query = query.where(User.org_id == org_id)
        if role is not None:
            query = query.where(User.role == role)
        result = await self._session.execute(
            query.order_by(User.created_at.desc(), User.email).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def update_profile(self, identity_id: UUID, changes: Mapping[str, Any]) -> User | None:
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise IdentityError(f"not a profile field: {', '.join(sorted(unknown))}")

        row = await self.get_identity(identity_id)
        if row is None:
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        await self._session.flush()
        return row

    async def assign_role(self, identity_id: UUID, role: UserRole) -> User | None:
        row = await self.get_identity(identity_id)
        if row is None:
            return None
        previous = row.role
        row.role = role
        await self._session.flush()
        logger.info(
            "identity_role_assigned",
            identity_id=str(identity_id),
            previous=previous.name,
            role=role.name,
        )
        return row

    async def assign_organization(self, identity_id: UUID, org_id: UUID | None) -> User | None:
        row = await self.get_identity(identity_id)
        if row is None:
            return None
        if org_id is not None:
            await self._require_organization(org_id)
        row.org_id = org_id
        await self._session.flush()
        logger.info(
            "identity_organization_assigned",
            identity_id=str(identity_id),
            org_id=str(org_id) if org_id else None,
        )
        return row

    async def create_identity(
        self,
        *,
        principal_id: UUID,
        email: str,
        full_name: str | None = None,
        org_id: UUID | None = None,
        role: UserRole = LOWEST_TIER,
    ) -> User:
        if org_id is not None:
            await self._require_organization(org_id)
        row = User(
            auth_user_id=principal_id,
            email=email.strip(),
            full_name=full_name,
            org_id=org_id,
            role=role,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def delete_identity(self, identity_id: UUID) -> bool:
        row = await self.get_identity(identity_id)
        if row is None:
            return False

        try:
            async with self._session.begin_nested():
                await self._session.delete(row)
                await self._session.flush()
        except IntegrityError as exc:
            # Owner FK on audit tables is ON DELETE RESTRICT.
            raise OwnerConstraintViolation(
                "Identity is still referenced by audit records"
            ) from exc
        logger.info("identity_deleted", identity_id=str(identity_id))
        return True

    async def _require_organization(self, org_id: UUID) -> None:
        result = await self._session.execute(
            select(Organization.id).where(Organization.id == org_id)
        )
        if result.scalar_one_or_none() is None:
            raise IdentityError("organization not found")
