"""Tests for identity lifecycle operations under policy enforcement."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import delete, select

from spine.core.errors import AuthorizationDenied, OwnerConstraintViolation
from spine.core.security.enforcement import service_bypass
from spine.core.security.roles import UserRole
from spine.db.models import (
    Certificate,
    MfaRecoveryCode,
    NationalIdMetadata,
    SigningLog,
    UserMfaSettings,
)
from spine.modules.identities.service import IdentityError, IdentityService


@pytest.mark.asyncio
async def test_list_identities_is_filtered_to_visible_rows(session_as, directory) -> None:
    async with session_as(directory.org_admin_principal) as session:
        service = IdentityService(session)
        members = await service.list_identities()
        operators = await service.list_identities(role=UserRole.OPERATOR)
        strangers = await service.list_identities(org_id=directory.other_org)

        assert {row.id for row in members} == {
            directory.org_admin,
            directory.operator,
            directory.citizen,
        }
        assert [row.id for row in operators] == [directory.operator]
        assert strangers == []


@pytest.mark.asyncio
async def test_invisible_identity_is_not_found(session_as, directory) -> None:
    async with session_as(directory.citizen_principal) as session:
        service = IdentityService(session)
        assert await service.get_identity(directory.outsider) is None
        assert await service.update_profile(directory.outsider, {"full_name": "X"}) is None


@pytest.mark.asyncio
async def test_update_profile_rejects_non_profile_fields(session_as, directory) -> None:
    async with session_as(directory.citizen_principal) as session:
        with pytest.raises(IdentityError, match="role"):
            await IdentityService(session).update_profile(directory.citizen, {"role": "x"})


@pytest.mark.asyncio
async def test_update_own_profile(session_as, directory) -> None:
    async with session_as(directory.citizen_principal) as session:
        row = await IdentityService(session).update_profile(
            directory.citizen, {"display_name": "Dorj", "department": "Sales"}
        )
        assert row is not None
        assert row.display_name == "Dorj"


@pytest.mark.asyncio
async def test_org_admin_cannot_edit_other_org_member(session_as, directory) -> None:
    async with session_as(directory.org_admin_principal) as session:
        # Filtered out of the read, so it looks absent.
        service = IdentityService(session)
        assert await service.assign_role(directory.outsider, UserRole.OPERATOR) is None


@pytest.mark.asyncio
async def test_org_admin_cannot_grant_top_tier(session_as, directory) -> None:
    async with session_as(directory.org_admin_principal) as session:
        with pytest.raises(AuthorizationDenied):
            await IdentityService(session).assign_role(directory.citizen, UserRole.SUPER_ADMIN)


@pytest.mark.asyncio
async def test_top_tier_moves_identity_between_organizations(session_as, directory) -> None:
    async with session_as(directory.admin_principal) as session:
        service = IdentityService(session)
        row = await service.assign_organization(directory.unaffiliated, directory.partner_org)
        assert row is not None and row.org_id == directory.partner_org

        with pytest.raises(IdentityError, match="organization not found"):
            await service.assign_organization(directory.unaffiliated, uuid4())


@pytest.mark.asyncio
async def test_only_top_tier_creates_identities(session_as, directory) -> None:
    async with session_as(directory.org_admin_principal) as session:
        with pytest.raises(AuthorizationDenied):
            await IdentityService(session).create_identity(
                principal_id=uuid4(), email="new@partner.mn", org_id=directory.partner_org
            )

    async with session_as(directory.admin_principal) as session:
        row = await IdentityService(session).create_identity(
            principal_id=uuid4(), email=" new@partner.mn ", org_id=directory.partner_org
        )
        assert row.email == "new@partner.mn"
        assert row.role is UserRole.CITIZEN


@pytest.mark.asyncio
async def test_delete_is_restricted_by_audit_records(session_as, directory) -> None:
    async with session_as(directory.admin_principal) as session:
        service = IdentityService(session)
        with pytest.raises(OwnerConstraintViolation):
            await service.delete_identity(directory.citizen)
        # The savepoint rolled back; the session is still usable.
        assert await service.get_identity(directory.citizen) is not None


@pytest.mark.asyncio
async def test_top_tier_deletes_identity_without_audit_records(session_as, directory) -> None:
    async with session_as(directory.admin_principal) as session:
        service = IdentityService(session)
        assert await service.delete_identity(directory.unaffiliated) is True
        assert await service.get_identity(directory.unaffiliated) is None


@pytest.mark.asyncio
async def test_org_admin_cannot_delete_identities(session_as, directory) -> None:
    async with session_as(directory.org_admin_principal) as session:
        with pytest.raises(AuthorizationDenied):
            await IdentityService(session).delete_identity(directory.operator)



@pytest.mark.asyncio
async def test_delete_cascades_personal_artifacts(session_as, directory) -> None:
    async with session_as(directory.admin_principal) as session:
        async with service_bypass(session, reason="test_cleanup"):
            for model in (SigningLog, Certificate, NationalIdMetadata):
                await session.execute(delete(model).where(model.user_id == directory.citizen))

        assert await IdentityService(session).delete_identity(directory.citizen) is True

        async with service_bypass(session, reason="test_assert"):
            remaining = await session.execute(
                select(UserMfaSettings.id).where(UserMfaSettings.user_id == directory.citizen)
            )
            codes = await session.execute(
                select(MfaRecoveryCode.id).where(MfaRecoveryCode.user_id == directory.citizen)
            )
            assert remaining.scalars().all() == []
            assert codes.scalars().all() == []
