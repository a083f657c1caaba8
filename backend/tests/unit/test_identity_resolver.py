"""Tests for principal-to-identity resolution."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import select

from spine.core.security.enforcement import acurrent_identity, service_bypass
from spine.core.security.resolver import (
    aidentity_exists,
    aorganization_of,
    aresolve_identity,
    is_resolver_lookup,
)
from spine.core.security.roles import UserRole
from spine.db.models import User


@pytest.mark.asyncio
async def test_resolves_identity_triple(db_session, directory) -> None:
    context = await aresolve_identity(db_session, directory.org_admin_principal)
    assert context.is_resolved
    assert context.identity_id == directory.org_admin
    assert context.org_id == directory.partner_org
    assert context.role is UserRole.ORG_ADMIN


@pytest.mark.asyncio
async def test_unknown_principal_is_unresolved(db_session, directory) -> None:
    principal_id = uuid4()
    context = await aresolve_identity(db_session, principal_id)
    assert not context.is_resolved
    assert context.principal_id == principal_id
    assert context.role is None


@pytest.mark.asyncio
async def test_resolver_lookups_bypass_row_filters(session_as, directory) -> None:
    # The citizen cannot read the outsider's profile but its organization is
    # still resolvable for owner checks.
    async with session_as(directory.citizen_principal) as session:
        assert await aorganization_of(session, directory.outsider) == directory.other_org
        assert await aorganization_of(session, directory.unaffiliated) is None
        assert await aidentity_exists(session, directory.outsider)
        assert not await aidentity_exists(session, uuid4())
        result = await session.execute(select(User).where(User.id == directory.outsider))
        assert result.scalar_one_or_none() is None


def test_resolver_option_is_private() -> None:
    assert not is_resolver_lookup({})
    assert not is_resolver_lookup({"spine_resolver_lookup": False})


@pytest.mark.asyncio
async def test_role_change_is_seen_by_next_transaction(
    session_as, session_factory, directory
) -> None:
    async with session_as(directory.citizen_principal) as session:
        assert (await acurrent_identity(session)).role is UserRole.CITIZEN

        async with session_factory() as other:
            async with service_bypass(other, reason="test_promotion"):
                row = (
                    await other.execute(select(User).where(User.id == directory.citizen))
                ).scalar_one()
                row.role = UserRole.OPERATOR
                await other.flush()
            await other.commit()

        # Same transaction: memoized answer.
        assert (await acurrent_identity(session)).role is UserRole.CITIZEN

        await session.commit()
        assert (await acurrent_identity(session)).role is UserRole.OPERATOR
