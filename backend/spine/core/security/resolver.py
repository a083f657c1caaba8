"""
Identity resolver.

Translates an authenticated principal into ``(identity_id, org_id, role)``.

This module is the only place where identity rows are read without going
through the policy rule set: the rules protecting ``users`` are themselves
expressed in terms of the resolver's answer, so evaluating them here would
recurse. Lookups are tagged with a private execution option that the
enforcement layer recognises; nothing outside this module sets it.

Results are memoized on the session for the current transaction only;
the enforcement layer discards the memo when the outermost transaction
ends, so role or organization changes are picked up by the next one.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from spine.core.security.context import IdentityContext
from spine.db.models import User

_PRIVILEGED_OPTION = "spine_resolver_lookup"
_MEMO_KEY = "spine.resolved_identity"

_PRIVILEGED: dict[str, Any] = {_PRIVILEGED_OPTION: True}


def _on_postgresql(session: Session) -> bool:
    return session.get_bind().dialect.name == "postgresql"


def is_resolver_lookup(execution_options: Mapping[str, Any]) -> bool:
    """True for statements issued by this module."""
    return bool(execution_options.get(_PRIVILEGED_OPTION, False))


def forget_identity(session: Session) -> None:
    """Drop the memoized identity for ``session``."""
    session.info.pop(_MEMO_KEY, None)


def resolve_identity(session: Session, principal_id: UUID | None) -> IdentityContext:
    """
    Resolve ``principal_id`` to an identity context.

    Returns an unresolved context when no identity is provisioned for the
    principal yet; that is an expected state, not an error.
    """
    memo: IdentityContext | None = session.info.get(_MEMO_KEY)
    if memo is not None and memo.principal_id == principal_id:
        return memo

    if principal_id is None:
        context = IdentityContext.unresolved(None)
    else:
        with session.no_autoflush:
            row = session.execute(
                select(User.id, User.org_id, User.role)
                .where(User.auth_user_id == principal_id)
                .limit(1),
                execution_options=_PRIVILEGED,
            ).one_or_none()
        if row is None:
            context = IdentityContext.unresolved(principal_id)
        else:
            context = IdentityContext(
                principal_id=principal_id,
                identity_id=row.id,
                org_id=row.org_id,
                role=row.role,
            )

    session.info[_MEMO_KEY] = context
    return context


def organization_of(session: Session, identity_id: UUID | None) -> UUID | None:
    """Organization of an identity, or ``None`` when unaffiliated or unknown."""
    if identity_id is None:
        return None

    # Owners created in the same flush are not in the database yet.
    for pending in session.new:
        if isinstance(pending, User) and pending.id == identity_id:
            return pending.org_id

    if _on_postgresql(session):
        # Row security hides other identities from the caller.
        statement = select(
            func.public.identity_org_id(identity_id, type_=User.__table__.c.org_id.type)
        )
    else:
        statement = select(User.org_id).where(User.id == identity_id)
    with session.no_autoflush:
        return session.execute(statement, execution_options=_PRIVILEGED).scalar_one_or_none()


def identity_exists(session: Session, identity_id: UUID) -> bool:
    """Whether an identity row exists, regardless of who is asking."""
    if _on_postgresql(session):
        statement = select(func.public.identity_exists(identity_id, type_=Boolean()))
        with session.no_autoflush:
            return bool(session.execute(statement, execution_options=_PRIVILEGED).scalar())
    with session.no_autoflush:
        found = session.execute(
            select(User.id).where(User.id == identity_id),
            execution_options=_PRIVILEGED,
        ).scalar_one_or_none()
    return found is not None


async def aresolve_identity(session: AsyncSession, principal_id: UUID | None) -> IdentityContext:
    return await session.run_sync(resolve_identity, principal_id)


async def aorganization_of(session: AsyncSession, identity_id: UUID | None) -> UUID | None:
    return await session.run_sync(organization_of, identity_id)


async def aidentity_exists(session: AsyncSession, identity_id: UUID) -> bool:
    return await session.run_sync(identity_exists, identity_id)
