"""Digital-signature audit APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from spine.core.errors import AuthorizationDenied
from spine.core.security.principal import CurrentIdentity, IdentitySession, TopTierIdentity
from spine.db.models import Certificate, CertificateStatus, SigningLog
from spine.modules.gesign.schemas import (
    CertificateListResponse,
    CertificateResponse,
    RevocationRequest,
    SigningLogListResponse,
    SigningLogResponse,
)
from spine.modules.gesign.service import GesignError, GesignService

router = APIRouter()


def _certificate_response(row: Certificate) -> CertificateResponse:
    return CertificateResponse(
        id=row.id,
        owner_id=row.user_id,
        serial_number=row.serial_number,
        common_name=row.common_name,
        subject_dn=row.subject_dn,
        issuer_dn=row.issuer_dn,
        key_algorithm=row.key_algorithm,
        key_size=row.key_size,
        not_before=row.not_before,
        not_after=row.not_after,
        status=row.status,
        is_revoked=row.is_revoked,
        revoked_at=row.revoked_at,
        revocation_reason=row.revocation_reason,
        sign_count=row.sign_count,
        last_used_at=row.last_used_at,
    )


def _signing_log_response(row: SigningLog) -> SigningLogResponse:
    return SigningLogResponse(
        id=row.id,
        owner_id=row.user_id,
        certificate_id=row.certificate_id,
        document_hash=row.document_hash,
        document_name=row.document_name,
        document_type=row.document_type,
        signature_algorithm=row.signature_algorithm,
        signature_format=row.signature_format,
        is_valid=row.is_valid,
        verification_status=row.verification_status,
        created_at=row.created_at,
    )


@router.get("/certificates", response_model=CertificateListResponse)
async def list_certificates(
    db: IdentitySession,
    identity: CurrentIdentity,
    owner_id: UUID | None = None,
    status_filter: CertificateStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> CertificateListResponse:
    rows = await GesignService(db).list_certificates(
        owner_id=owner_id, status=status_filter, limit=limit, offset=offset
    )
    return CertificateListResponse(
        items=[_certificate_response(row) for row in rows], count=len(rows)
    )


@router.get("/certificates/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(
    certificate_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> CertificateResponse:
    row = await GesignService(db).get_certificate(certificate_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found")
    return _certificate_response(row)


@router.post("/certificates/{certificate_id}/revoke", response_model=CertificateResponse)
async def revoke_certificate(
    certificate_id: UUID,
    body: RevocationRequest,
    db: IdentitySession,
    identity: TopTierIdentity,
) -> CertificateResponse:
    try:
        row = await GesignService(db).revoke_certificate(certificate_id, body.reason)
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except GesignError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found")
    await db.commit()
    await db.refresh(row)
    return _certificate_response(row)


@router.get("/signing-logs", response_model=SigningLogListResponse)
async def list_signing_logs(
    db: IdentitySession,
    identity: CurrentIdentity,
    certificate_id: UUID | None = None,
    owner_id: UUID | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> SigningLogListResponse:
    rows = await GesignService(db).list_signing_logs(
        certificate_id=certificate_id, owner_id=owner_id, limit=limit, offset=offset
    )
    return SigningLogListResponse(
        items=[_signing_log_response(row) for row in rows], count=len(rows)
    )


@router.get("/signing-logs/{log_id}", response_model=SigningLogResponse)
async def get_signing_log(
    log_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> SigningLogResponse:
    row = await GesignService(db).get_signing_log(log_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Signing log not found")
    return _signing_log_response(row)
