"""MFA configuration APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from spine.core.errors import AuthorizationDenied
from spine.core.security.principal import CurrentIdentity, IdentitySession, TopTierIdentity
from spine.db.models import UserMfaSettings
from spine.modules.mfa.schemas import (
    MfaSettingsResponse,
    MfaSettingsUpdateRequest,
    RecoveryCodeStatus,
    RecoveryCodeStatusResponse,
)
from spine.modules.mfa.service import MfaError, MfaService

router = APIRouter()


def _to_response(row: UserMfaSettings) -> MfaSettingsResponse:
    return MfaSettingsResponse(
        identity_id=row.user_id,
        totp_enabled=row.totp_enabled,
        passkey_enabled=row.passkey_enabled,
        push_enabled=row.push_enabled,
        require_mfa=row.require_mfa,
        preferred_method=row.preferred_method,
        updated_at=row.updated_at,
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MFA settings not found")


@router.get("/settings", response_model=MfaSettingsResponse)
async def get_own_settings(db: IdentitySession, identity: CurrentIdentity) -> MfaSettingsResponse:
    row = await MfaService(db).get_own_settings(identity)
    if row is None:
        raise _not_found()
    return _to_response(row)


@router.put("/settings", response_model=MfaSettingsResponse)
async def update_own_settings(
    body: MfaSettingsUpdateRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> MfaSettingsResponse:
    try:
        row = await MfaService(db).upsert_own_settings(
            identity, body.model_dump(exclude_unset=True)
        )
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except MfaError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.get("/recovery-codes", response_model=RecoveryCodeStatusResponse)
async def get_recovery_code_status(
    db: IdentitySession,
    identity: CurrentIdentity,
) -> RecoveryCodeStatusResponse:
    rows = await MfaService(db).list_recovery_codes(identity.identity_id)
    items = [
        RecoveryCodeStatus(
            id=row.id, is_used=row.is_used, used_at=row.used_at, created_at=row.created_at
        )
        for row in rows
    ]
    return RecoveryCodeStatusResponse(
        items=items, remaining=sum(1 for item in items if not item.is_used)
    )


@router.get("/identities/{identity_id}/settings", response_model=MfaSettingsResponse)
async def get_identity_settings(
    identity_id: UUID,
    db: IdentitySession,
    identity: TopTierIdentity,
) -> MfaSettingsResponse:
    row = await MfaService(db).get_settings(identity_id)
    if row is None:
        raise _not_found()
    return _to_response(row)
