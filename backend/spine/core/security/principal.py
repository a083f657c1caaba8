"""
Authenticated principal and request-scoped identity dependencies.

Authentication itself happens upstream: the gateway verifies the caller and
forwards the principal id in a trusted header. This module turns that
header into a principal, binds it to the request's database session and
exposes the resolved identity to route handlers.
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from spine.core.config import get_settings
from spine.core.errors import PrincipalUnresolved
from spine.core.logging import get_logger
from spine.core.security.context import IdentityContext
from spine.core.security.enforcement import bind_principal, require_identity
from spine.core.security.roles import UserRole, meets_threshold
from spine.db.session import DbSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Opaque id of the caller as issued by the authentication boundary."""

    id: UUID
    email: str | None = None


async def get_principal(request: Request) -> Principal:
    """Read the authenticated principal from the gateway header."""
    header = get_settings().principal_header
    raw = request.headers.get(header)
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        principal_id = UUID(raw.strip())
    except ValueError:
        logger.warning("invalid_principal_header", header=header)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        ) from None
    email = request.headers.get(get_settings().principal_email_header)
    return Principal(id=principal_id, email=email.strip() if email else None)


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]


async def get_identity_session(db: DbSession, principal: CurrentPrincipal) -> AsyncSession:
    """Database session bound to the calling principal."""
    bind_principal(db, principal.id)
    return db


IdentitySession = Annotated[AsyncSession, Depends(get_identity_session)]


async def get_current_identity(db: IdentitySession) -> IdentityContext:
    """Resolved identity of the caller; 403 while it is not provisioned."""
    try:
        return await require_identity(db)
    except PrincipalUnresolved:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Identity not provisioned",
        ) from None


CurrentIdentity = Annotated[IdentityContext, Depends(get_current_identity)]


async def require_top_tier(identity: CurrentIdentity) -> IdentityContext:
    """Require the top privilege tier."""
    if not meets_threshold(identity.role, UserRole.SUPER_ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return identity


TopTierIdentity = Annotated[IdentityContext, Depends(require_top_tier)]
