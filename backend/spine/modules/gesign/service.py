"""Service layer for the digital-signature audit trail."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.logging import get_logger
from spine.db.models import Certificate, CertificateStatus, SigningLog

logger = get_logger(__name__)

# RFC 5280 CRLReason names accepted for revocation.
REVOCATION_REASONS = frozenset(
    {
        "unspecified",
        "keyCompromise",
        "cACompromise",
        "affiliationChanged",
        "superseded",
        "cessationOfOperation",
        "certificateHold",
        "privilegeWithdrawn",
    }
)


class GesignError(ValueError):
    """Raised for invalid certificate operations."""


class GesignService:
    """Read access to certificates and signing logs, plus revocation."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_certificates(
        self,
        *,
        owner_id: UUID | None = None,
        status: CertificateStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Certificate]:
        query = select(Certificate)
        if owner_id is not None:
            query = query.where(Certificate.user_id == owner_id)
        if status is not None:
            query = query.where(Certificate.status == status)
        result = await self._session.execute(
            query.order_by(Certificate.not_after.desc(), Certificate.id).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def get_certificate(self, certificate_id: UUID) -> Certificate | None:
        result = await self._session.execute(
            select(Certificate).where(Certificate.id == certificate_id)
        )
        return result.scalar_one_or_none()

    async def list_signing_logs(
        self,
        *,
        certificate_id: UUID | None = None,
        owner_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SigningLog]:
        query = select(SigningLog)
        if certificate_id is not None:
            query = query.where(SigningLog.certificate_id == certificate_id)
        if owner_id is not None:
            query = query.where(SigningLog.user_id == owner_id)
        result = await self._session.execute(
            query.order_by(SigningLog.created_at.desc(), SigningLog.id).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def get_signing_log(self, log_id: UUID) -> SigningLog | None:
        result = await self._session.execute(select(SigningLog).where(SigningLog.id == log_id))
        return result.scalar_one_or_none()

    async def revoke_certificate(self, certificate_id: UUID, reason: str) -> Certificate | None:
        if reason not in REVOCATION_REASONS:
            raise GesignError(f"unknown revocation reason: {reason}")
        row = await self.get_certificate(certificate_id)
        if row is None:
            return None
        if row.is_revoked:
            raise GesignError("certificate is already revoked")

        row.is_revoked = True
        row.revoked_at = datetime.now(UTC)
        row.revocation_reason = reason
        row.status = CertificateStatus.REVOKED
        await self._session.flush()
        logger.info(
            "certificate_revoked",
            certificate_id=str(certificate_id),
            serial_number=row.serial_number,
            reason=reason,
        )
        return row
