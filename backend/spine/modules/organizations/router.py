"""Organization directory APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from spine.core.errors import AuthorizationDenied
from spine.core.security.principal import CurrentIdentity, IdentitySession
from spine.db.models import Organization, OrganizationStatus
from spine.modules.organizations.schemas import (
    OrganizationCreateRequest,
    OrganizationListResponse,
    OrganizationResponse,
    OrganizationUpdateRequest,
)
from spine.modules.organizations.service import OrganizationError, OrganizationService

router = APIRouter()


def _to_response(row: Organization) -> OrganizationResponse:
    return OrganizationResponse(
        id=row.id,
        name=row.name,
        registration_number=row.registration_number,
        domain=row.domain,
        status=row.status,
        metadata=row.attrs or {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")


@router.get("", response_model=OrganizationListResponse)
async def list_organizations(
    db: IdentitySession,
    identity: CurrentIdentity,
    status_filter: OrganizationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> OrganizationListResponse:
    rows = await OrganizationService(db).list_organizations(
        status=status_filter, limit=limit, offset=offset
    )
    return OrganizationListResponse(items=[_to_response(row) for row in rows], count=len(rows))


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    body: OrganizationCreateRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> OrganizationResponse:
    try:
        row = await OrganizationService(db).create_organization(
            name=body.name,
            domain=body.domain,
            registration_number=body.registration_number,
            attrs=body.metadata,
        )
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except OrganizationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.get("/{org_id}", response_model=OrganizationResponse)
async def get_organization(
    org_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> OrganizationResponse:
    row = await OrganizationService(db).get_organization(org_id)
    if row is None:
        raise _not_found()
    return _to_response(row)


@router.patch("/{org_id}", response_model=OrganizationResponse)
async def update_organization(
    org_id: UUID,
    body: OrganizationUpdateRequest,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> OrganizationResponse:
    changes = body.model_dump(exclude_unset=True)
    if "metadata" in changes:
        changes["attrs"] = changes.pop("metadata") or {}
    try:
        row = await OrganizationService(db).update_organization(org_id, changes)
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except OrganizationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    if row is None:
        raise _not_found()
    await db.commit()
    await db.refresh(row)
    return _to_response(row)


@router.delete("/{org_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    org_id: UUID,
    db: IdentitySession,
    identity: CurrentIdentity,
) -> None:
    try:
        deleted = await OrganizationService(db).delete_organization(org_id)
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if not deleted:
        raise _not_found()
    await db.commit()
