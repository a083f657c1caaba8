"""
MFA configuration for the calling identity.

Settings and recovery codes are personal security artifacts: the owner
has full access, the top tier may read them, and nobody else sees them.
Recovery codes are exposed as status only; their hashes never leave the
service.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.errors import PrincipalUnresolved
from spine.core.logging import get_logger
from spine.core.security.context import IdentityContext
from spine.db.models import MfaRecoveryCode, User, UserMfaSettings

logger = get_logger(__name__)

MFA_METHODS = frozenset({"totp", "passkey", "push"})
_SETTINGS_FIELDS = frozenset(
    {"totp_enabled", "passkey_enabled", "push_enabled", "require_mfa", "preferred_method"}
)


class MfaError(ValueError):
    """Raised for invalid MFA configuration."""


def _own_id(context: IdentityContext) -> UUID:
    if context.identity_id is None:
        raise PrincipalUnresolved("No identity for the calling principal")
    return context.identity_id


class MfaService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_settings(self, identity_id: UUID) -> UserMfaSettings | None:
        result = await self._session.execute(
            select(UserMfaSettings).where(UserMfaSettings.user_id == identity_id)
        )
        return result.scalar_one_or_none()

    async def get_own_settings(self, context: IdentityContext) -> UserMfaSettings | None:
        return await self.get_settings(_own_id(context))

    async def upsert_own_settings(
        self, context: IdentityContext, changes: Mapping[str, Any]
    ) -> UserMfaSettings:
        """Create or update the caller's settings and mirror the summary onto the profile."""
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise MfaError(f"not an MFA setting: {', '.join(sorted(unknown))}")
        method = changes.get("preferred_method")
        if method is not None and method not in MFA_METHODS:
            raise MfaError(f"unknown MFA method: {method}")

        identity_id = _own_id(context)
        row = await self.get_settings(identity_id)
        if row is None:
            row = UserMfaSettings(
                user_id=identity_id,
                totp_enabled=False,
                passkey_enabled=False,
                push_enabled=False,
                require_mfa=False,
                preferred_method="totp",
            )
            self._session.add(row)
        for key, value in changes.items():
            setattr(row, key, value)

        enabled = row.totp_enabled or row.passkey_enabled or row.push_enabled
        result = await self._session.execute(select(User).where(User.id == identity_id))
        profile = result.scalar_one()
        profile.mfa_enabled = enabled
        profile.mfa_method = row.preferred_method if enabled else None

        await self._session.flush()
        logger.info("mfa_settings_updated", identity_id=str(identity_id), enabled=enabled)
        return row

    async def list_recovery_codes(self, identity_id: UUID) -> list[MfaRecoveryCode]:
        result = await self._session.execute(
            select(MfaRecoveryCode)
            .where(MfaRecoveryCode.user_id == identity_id)
            .order_by(MfaRecoveryCode.created_at, MfaRecoveryCode.id)
        )
        return list(result.scalars().all())
