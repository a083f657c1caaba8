"""Identity profile APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from spine.core.errors import AuthorizationDenied, OwnerConstraintViolation
from spine.core.security.principal import CurrentIdentity, IdentitySession
from spine.core.security.roles import UserRole, parse_role
from spine.db.models import User
from spine.modules.identities.schemas import (
    IdentityCreateRequest,
    IdentityListResponse,
    IdentityResponse,
    OrganizationAssignmentRequest,
    ProfileUpdateRequest,
    RoleAssignmentRequest,
)
from spine.modules.identities.service import IdentityError, IdentityService

router = APIRouter()


def _to_response(row: User) -> IdentityResponse:
    return IdentityResponse(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        display_name=row.display_name,
        phone=row.phone,
        avatar_url=row.avatar_url,
        department=row.department,
        position=row.position,
        org_id=row.org_id,
        role=row.role.name,
        is_active=row.is_active,
        is_verified=row.is_verified,
        mfa_enabled=row.mfa_enabled,
        mfa_method=row.mfa_method,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _parse_role(value: str) -> UserRole:
    try:
        return parse_role(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Identity not found")


def _denied(exc: AuthorizationDenied) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


@router.get("/me", response_model=IdentityResponse)
async def get_me(db: IdentitySession, identity: CurrentIdentity) -> IdentityResponse:
    if identity.identity_id is None:
        raise _not_found()
    row = await IdentityService(db).get_identity(identity.identity_id)
    if row is None:
        raise _not_found()
    return _to_response(row)


@router.get("/identities", response_model=IdentityListResponse)
async def list_identities(
    db: IdentitySession,
    identity: CurrentIdentity,
    org_id: UUID | None = None,
    role: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> IdentityListResponse:
    rows = await IdentityService(db).list_identities(
        org_id=org_id,
        role=_parse_role(role) if role else None,
        limit=limit,
        offset=offset,
    )
    return IdentityListResponse(items=[_to_response(row) for row in rows], count=len(rows))


@router.post(
    "/identities",
    response_model=IdentityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_identity(
    body: IdentityCreateRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> IdentityResponse:
    service = IdentityService(db)
    try:
        row = await service.create_identity(
            principal_id=body.principal_id,
            email=body.email,
            full_name=body.full_name,
            org_id=body.org_id,
            role=_parse_role(body.role),
        )
    except AuthorizationDenied as exc:
        raise _denied(exc) from exc
    except IdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.get("/identities/{identity_id}", response_model=IdentityResponse)
async def get_identity(
    identity_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> IdentityResponse:
    row = await IdentityService(db).get_identity(identity_id)
    if row is None:
        raise _not_found()
    return _to_response(row)


@router.patch("/identities/{identity_id}", response_model=IdentityResponse)
async def update_identity_profile(
    identity_id: UUID,
    body: ProfileUpdateRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> IdentityResponse:
    try:
        row = await IdentityService(db).update_profile(
            identity_id, body.model_dump(exclude_unset=True)
        )
    except AuthorizationDenied as exc:
        raise _denied(exc) from exc
    if row is None:
        raise _not_found()
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.put("/identities/{identity_id}/role", response_model=IdentityResponse)
async def assign_identity_role(
    identity_id: UUID,
    body: RoleAssignmentRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> IdentityResponse:
    try:
        row = await IdentityService(db).assign_role(identity_id, _parse_role(body.role))
    except AuthorizationDenied as exc:
        raise _denied(exc) from exc
    if row is None:
        raise _not_found()
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.put("/identities/{identity_id}/organization", response_model=IdentityResponse)
async def assign_identity_organization(
    identity_id: UUID,
    body: OrganizationAssignmentRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> IdentityResponse:
    try:
        row = await IdentityService(db).assign_organization(identity_id, body.org_id)
    except AuthorizationDenied as exc:
        raise _denied(exc) from exc
    except IdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    if row is None:
        raise _not_found()
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.delete("/identities/{identity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_identity(
    identity_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> None:
    try:
        deleted = await IdentityService(db).delete_identity(identity_id)
    except AuthorizationDenied as exc:
        raise _denied(exc) from exc
    except OwnerConstraintViolation as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if not deleted:
        raise _not_found()
    await db.commit()
