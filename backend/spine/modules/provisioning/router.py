"""Internal hook called by the authentication boundary on principal creation."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Header, HTTPException, status

from spine.core.config import get_settings
from spine.core.errors import ProvisioningError
from spine.db.session import DbSession
from spine.modules.provisioning.schemas import PrincipalCreatedRequest, ProvisioningResponse
from spine.modules.provisioning.service import IdentityProvisioner, PrincipalCreated

router = APIRouter()


def _check_hook_secret(provided: str | None) -> None:
    secret = get_settings().auth_hook_secret
    if not secret:
        # Hook disabled
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid hook secret")


@router.post("/principal-created", response_model=ProvisioningResponse)
async def principal_created(
    body: PrincipalCreatedRequest,
    db: DbSession,
    x_hook_secret: str | None = Header(default=None),
) -> ProvisioningResponse:
    _check_hook_secret(x_hook_secret)

    provisioner = IdentityProvisioner(db)
    try:
        result = await provisioner.handle_principal_created(
            PrincipalCreated(
                principal_id=body.principal_id,
                email=body.email,
                metadata=body.metadata,
            )
        )
    except ProvisioningError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Identity provisioning failed",
        ) from exc
    await db.commit()
    return ProvisioningResponse(outcome=result.outcome, identity_id=result.identity_id)
