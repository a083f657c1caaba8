"""Tests for identity provisioning on principal creation."""

from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import select

from spine.core.config import Settings
from spine.core.errors import ProvisioningError
from spine.core.security.enforcement import service_bypass
from spine.core.security.roles import UserRole
from spine.db.models import User
from spine.modules.provisioning.service import (
    IdentityProvisioner,
    PrincipalCreated,
    ProvisioningOutcome,
    derive_full_name,
    extract_domain,
)


async def _load(session, identity_id) -> User:
    async with service_bypass(session, reason="test_assert"):
        result = await session.execute(select(User).where(User.id == identity_id))
        return result.scalar_one()


@pytest.mark.parametrize(
    ("email", "expected"),
    [
        ("dorj@Partner.MN", "partner.mn"),
        ("  a@b.c ", "b.c"),
        ("no-at-sign", ""),
        ("odd@two@signs.mn", "two"),
    ],
)
def test_extract_domain(email: str, expected: str) -> None:
    assert extract_domain(email) == expected


def test_derive_full_name_prefers_metadata() -> None:
    assert derive_full_name("x@y.mn", {"full_name": " Bat Dorj "}) == "Bat Dorj"
    assert derive_full_name("x@y.mn", {"full_name": "", "name": "Bat"}) == "Bat"
    assert derive_full_name("bat.dorj@y.mn", {"name": "   "}) == "bat.dorj"
    assert derive_full_name("bat.dorj@y.mn", {}) == "bat.dorj"


@pytest.mark.asyncio
async def test_home_domain_gets_top_tier_and_home_org(db_session, directory) -> None:
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=uuid4(), email="tuya@gerege.mn", metadata={"name": "Tuya"})
    )
    assert result.outcome is ProvisioningOutcome.CREATED

    row = await _load(db_session, result.identity_id)
    assert row.role is UserRole.SUPER_ADMIN
    assert row.org_id == directory.home_org
    assert row.full_name == "Tuya"


@pytest.mark.asyncio
async def test_registered_domain_gets_lowest_tier_in_that_org(db_session, directory) -> None:
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=uuid4(), email="Naran@PARTNER.mn")
    )
    row = await _load(db_session, result.identity_id)
    assert row.role is UserRole.CITIZEN
    assert row.org_id == directory.partner_org
    assert row.full_name == "Naran"


@pytest.mark.asyncio
async def test_unknown_domain_is_unaffiliated(db_session, directory) -> None:
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=uuid4(), email="someone@gmail.com")
    )
    row = await _load(db_session, result.identity_id)
    assert row.role is UserRole.CITIZEN
    assert row.org_id is None


@pytest.mark.asyncio
async def test_home_domain_without_home_org_still_gets_top_tier(db_session) -> None:
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=uuid4(), email="first@gerege.mn")
    )
    row = await _load(db_session, result.identity_id)
    assert row.role is UserRole.SUPER_ADMIN
    assert row.org_id is None


@pytest.mark.asyncio
async def test_provisioning_is_idempotent(db_session, directory) -> None:
    provisioner = IdentityProvisioner(db_session)
    event = PrincipalCreated(principal_id=uuid4(), email="twice@partner.mn")

    first = await provisioner.handle_principal_created(event)
    second = await provisioner.handle_principal_created(event)

    assert first.outcome is ProvisioningOutcome.CREATED
    assert second.outcome is ProvisioningOutcome.ALREADY_PROVISIONED
    assert second.identity_id == first.identity_id


@pytest.mark.asyncio
async def test_existing_principal_is_left_untouched(db_session, directory) -> None:
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=directory.citizen_principal, email="dorj@gerege.mn")
    )
    assert result.outcome is ProvisioningOutcome.ALREADY_PROVISIONED
    row = await _load(db_session, directory.citizen)
    assert row.role is UserRole.CITIZEN


@pytest.mark.asyncio
async def test_concurrent_provisioning_conflict_is_a_no_op(db_session, directory) -> None:
    provisioner = IdentityProvisioner(db_session)
    # Simulate losing the race: the first lookup misses, the insert collides.
    provisioner._existing_identity = AsyncMock(  # type: ignore[method-assign]
        side_effect=[None, directory.citizen, directory.citizen]
    )

    result = await provisioner.handle_principal_created(
        PrincipalCreated(principal_id=directory.citizen_principal, email="dorj2@partner.mn")
    )

    assert result.outcome is ProvisioningOutcome.ALREADY_PROVISIONED
    assert result.identity_id == directory.citizen


@pytest.mark.asyncio
async def test_genuine_failure_is_swallowed_by_default(db_session, directory) -> None:
    # Same email as an existing identity but a new principal.
    result = await IdentityProvisioner(db_session).handle_principal_created(
        PrincipalCreated(principal_id=uuid4(), email="dorj@partner.mn")
    )
    assert result.outcome is ProvisioningOutcome.FAILED
    assert result.identity_id is None


@pytest.mark.asyncio
async def test_genuine_failure_raises_when_configured(db_session, directory) -> None:
    provisioner = IdentityProvisioner(db_session, Settings(provisioning_failure_mode="raise"))
    with pytest.raises(ProvisioningError):
        await provisioner.handle_principal_created(
            PrincipalCreated(principal_id=uuid4(), email="dorj@partner.mn")
        )
