"""
National-id records and the verification workflow.

Operators of the record owner's organization work verification cases: they
may move the record through the workflow fields and append verification
logs, nothing else. Both writes land in the same flush so a rejected log
also rejects the status change.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.logging import get_logger
from spine.core.security.context import IdentityContext
from spine.db.models import (
    IdentityVerificationStatus,
    NationalIdMetadata,
    VerificationLog,
    VerificationOutcome,
    VerificationType,
)

logger = get_logger(__name__)


class VerificationError(ValueError):
    """Raised for invalid verification requests."""


class EidService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_national_ids(
        self,
        *,
        owner_id: UUID | None = None,
        status: IdentityVerificationStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[NationalIdMetadata]:
        query = select(NationalIdMetadata)
        if owner_id is not None:
            query = query.where(NationalIdMetadata.user_id == owner_id)
        if status is not None:
            query = query.where(NationalIdMetadata.verification_status == status)
        result = await self._session.execute(
            query.order_by(NationalIdMetadata.created_at.desc(), NationalIdMetadata.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_national_id(self, record_id: UUID) -> NationalIdMetadata | None:
        result = await self._session.execute(
            select(NationalIdMetadata).where(NationalIdMetadata.id == record_id)
        )
        return result.scalar_one_or_none()

    async def list_verification_logs(
        self,
        *,
        record_id: UUID | None = None,
        owner_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[VerificationLog]:
        query = select(VerificationLog)
        if record_id is not None:
            query = query.where(VerificationLog.national_id_record_id == record_id)
        if owner_id is not None:
            query = query.where(VerificationLog.user_id == owner_id)
        result = await self._session.execute(
            query.order_by(VerificationLog.created_at.desc(), VerificationLog.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def record_verification(
        self,
        context: IdentityContext,
        record_id: UUID,
        *,
        verification_type: VerificationType,
        outcome: VerificationOutcome,
        new_status: IdentityVerificationStatus | None = None,
        confidence_score: Decimal | None = None,
        failure_reason: str | None = None,
        provider: str | None = None,
        provider_response: Mapping[str, Any] | None = None,
        started_at: datetime | None = None,
    ) -> tuple[NationalIdMetadata, VerificationLog] | None:
        """Append a verification log and optionally advance the record's status.

        Returns None when the record is not visible to the caller.
        """
        if confidence_score is not None and not Decimal(0) <= confidence_score <= Decimal(1):
            raise VerificationError("confidence_score must be between 0 and 1")

        record = await self.get_national_id(record_id)
        if record is None:
            return None

        now = datetime.now(UTC)
        if new_status is not None and new_status != record.verification_status:
            record.verification_status = new_status
            record.verified_by = context.identity_id
            record.verified_at = now if new_status is IdentityVerificationStatus.VERIFIED else None

        started = started_at or now
        log = VerificationLog(
            user_id=record.user_id,
            national_id_record_id=record.id,
            verification_type=verification_type,
            status=outcome,
            confidence_score=confidence_score,
            failure_reason=failure_reason,
            provider=provider,
            provider_response=dict(provider_response) if provider_response else None,
            started_at=started,
            completed_at=now,
            duration_ms=max(int((now - started).total_seconds() * 1000), 0),
        )
        self._session.add(log)
        await self._session.flush()

        logger.info(
            "verification_recorded",
            record_id=str(record_id),
            verification_type=verification_type.value,
            outcome=outcome.value,
            status=record.verification_status.value,
        )
        return record, log
