"""National-id verification APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from spine.core.errors import AuthorizationDenied
from spine.core.security.principal import CurrentIdentity, IdentitySession
from spine.db.models import IdentityVerificationStatus, NationalIdMetadata, VerificationLog
from spine.modules.eid.schemas import (
    NationalIdListResponse,
    NationalIdResponse,
    VerificationLogListResponse,
    VerificationLogResponse,
    VerificationRecordRequest,
    VerificationRecordResponse,
)
from spine.modules.eid.service import EidService, VerificationError

router = APIRouter()


def _national_id_response(row: NationalIdMetadata) -> NationalIdResponse:
    return NationalIdResponse(
        id=row.id,
        owner_id=row.user_id,
        document_type=row.document_type,
        document_number=row.document_number,
        issuing_country=row.issuing_country,
        family_name=row.family_name,
        given_name=row.given_name,
        date_of_birth=row.date_of_birth,
        issue_date=row.issue_date,
        expiry_date=row.expiry_date,
        verification_status=row.verification_status,
        verified_at=row.verified_at,
        verified_by=row.verified_by,
        created_at=row.created_at,
    )


def _log_response(row: VerificationLog) -> VerificationLogResponse:
    return VerificationLogResponse(
        id=row.id,
        owner_id=row.user_id,
        national_id_record_id=row.national_id_record_id,
        verification_type=row.verification_type,
        status=row.status,
        confidence_score=row.confidence_score,
        failure_reason=row.failure_reason,
        provider=row.provider,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        created_at=row.created_at,
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")


@router.get("/national-ids", response_model=NationalIdListResponse)
async def list_national_ids(
    db: IdentitySession,
    identity: CurrentIdentity,
    owner_id: UUID | None = None,
    status_filter: IdentityVerificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> NationalIdListResponse:
    rows = await EidService(db).list_national_ids(
        owner_id=owner_id, status=status_filter, limit=limit, offset=offset
    )
    return NationalIdListResponse(
        items=[_national_id_response(row) for row in rows], count=len(rows)
    )


@router.get("/national-ids/{record_id}", response_model=NationalIdResponse)
async def get_national_id(
    record_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> NationalIdResponse:
    row = await EidService(db).get_national_id(record_id)
    if row is None:
        raise _not_found()
    return _national_id_response(row)


@router.post(
    "/national-ids/{record_id}/verifications",
    response_model=VerificationRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_verification(
    record_id: UUID,
    body: VerificationRecordRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> VerificationRecordResponse:
    try:
        recorded = await EidService(db).record_verification(
            identity,
            record_id,
            verification_type=body.verification_type,
            outcome=body.outcome,
            new_status=body.new_status,
            confidence_score=body.confidence_score,
            failure_reason=body.failure_reason,
            provider=body.provider,
            provider_response=body.provider_response,
        )
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except VerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    if recorded is None:
        raise _not_found()
    record, log = recorded
    await db.commit()
    await db.refresh(record)
    await db.refresh(log)
    return VerificationRecordResponse(record=_national_id_response(record), log=_log_response(log))


@router.get("/verification-logs", response_model=VerificationLogListResponse)
async def list_verification_logs(
    db: IdentitySession,
    identity: CurrentIdentity,
    record_id: UUID | None = None,
    owner_id: UUID | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> VerificationLogListResponse:
    rows = await EidService(db).list_verification_logs(
        record_id=record_id, owner_id=owner_id, limit=limit, offset=offset
    )
    return VerificationLogListResponse(items=[_log_response(row) for row in rows], count=len(rows))
