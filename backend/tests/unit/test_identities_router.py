"""Router-level tests for identity authorization flows."""

from __future__ import annotations

from uuid import uuid4

import pytest


@pytest.mark.asyncio
async def test_missing_principal_is_unauthenticated(test_client) -> None:
    response = await test_client.get("/api/v1/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


@pytest.mark.asyncio
async def test_malformed_principal_is_unauthenticated(test_client) -> None:
    response = await test_client.get(
        "/api/v1/me", headers={"X-Authenticated-Principal": "not-a-uuid"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unprovisioned_principal_is_forbidden(test_client, headers_for) -> None:
    response = await test_client.get("/api/v1/me", headers=headers_for(uuid4()))
    assert response.status_code == 403
    assert response.json()["detail"] == "Identity not provisioned"


@pytest.mark.asyncio
async def test_me_returns_own_profile(test_client, directory, headers_for) -> None:
    response = await test_client.get("/api/v1/me", headers=headers_for(directory.citizen_principal))
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(directory.citizen)
    assert body["role"] == "CITIZEN"
    assert body["org_id"] == str(directory.partner_org)


@pytest.mark.asyncio
async def test_filtered_identity_is_not_found(test_client, directory, headers_for) -> None:
    response = await test_client.get(
        f"/api/v1/identities/{directory.outsider}",
        headers=headers_for(directory.citizen_principal),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_identities_for_org_admin(test_client, directory, headers_for) -> None:
    response = await test_client.get(
        "/api/v1/identities", headers=headers_for(directory.org_admin_principal)
    )
    assert response.status_code == 200
    assert response.json()["count"] == 3

    filtered = await test_client.get(
        "/api/v1/identities",
        params={"role": "operator"},
        headers=headers_for(directory.org_admin_principal),
    )
    assert [item["id"] for item in filtered.json()["items"]] == [str(directory.operator)]


@pytest.mark.asyncio
async def test_unknown_role_filter_is_rejected(test_client, directory, headers_for) -> None:
    response = await test_client.get(
        "/api/v1/identities",
        params={"role": "root"},
        headers=headers_for(directory.admin_principal),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_patch_own_profile(test_client, directory, headers_for) -> None:
    response = await test_client.patch(
        f"/api/v1/identities/{directory.citizen}",
        headers=headers_for(directory.citizen_principal),
        json={"display_name": "Dorj", "phone": "+97699112233"},
    )
    assert response.status_code == 200
    assert response.json()["display_name"] == "Dorj"


@pytest.mark.asyncio
async def test_role_escalation_is_denied_without_detail(
    test_client, directory, headers_for
) -> None:
    response = await test_client.put(
        f"/api/v1/identities/{directory.citizen}/role",
        headers=headers_for(directory.org_admin_principal),
        json={"role": "SUPER_ADMIN"},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Operation not permitted"

    me = await test_client.get(
        f"/api/v1/identities/{directory.citizen}",
        headers=headers_for(directory.admin_principal),
    )
    assert me.json()["role"] == "CITIZEN"


@pytest.mark.asyncio
async def test_org_admin_assigns_role_within_ceiling(test_client, directory, headers_for) -> None:
    response = await test_client.put(
        f"/api/v1/identities/{directory.citizen}/role",
        headers=headers_for(directory.org_admin_principal),
        json={"role": "operator"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "OPERATOR"


@pytest.mark.asyncio
async def test_assign_organization(test_client, directory, headers_for) -> None:
    response = await test_client.put(
        f"/api/v1/identities/{directory.unaffiliated}/organization",
        headers=headers_for(directory.admin_principal),
        json={"org_id": str(directory.other_org)},
    )
    assert response.status_code == 200
    assert response.json()["org_id"] == str(directory.other_org)

    missing = await test_client.put(
        f"/api/v1/identities/{directory.unaffiliated}/organization",
        headers=headers_for(directory.admin_principal),
        json={"org_id": str(uuid4())},
    )
    assert missing.status_code == 422


@pytest.mark.asyncio
async def test_create_identity_requires_top_tier(test_client, directory, headers_for) -> None:
    payload = {"principal_id": str(uuid4()), "email": "made@partner.mn", "role": "OPERATOR"}
    denied = await test_client.post(
        "/api/v1/identities", headers=headers_for(directory.org_admin_principal), json=payload
    )
    assert denied.status_code == 403

    created = await test_client.post(
        "/api/v1/identities", headers=headers_for(directory.admin_principal), json=payload
    )
    assert created.status_code == 201
    assert created.json()["role"] == "OPERATOR"


@pytest.mark.asyncio
async def test_delete_identity_with_audit_records_conflicts(
    test_client, directory, headers_for
) -> None:
    response = await test_client.delete(
        f"/api/v1/identities/{directory.citizen}", headers=headers_for(directory.admin_principal)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_identity(test_client, directory, headers_for) -> None:
    response = await test_client.delete(
        f"/api/v1/identities/{directory.unaffiliated}",
        headers=headers_for(directory.admin_principal),
    )
    assert response.status_code == 204

    again = await test_client.delete(
        f"/api/v1/identities/{directory.unaffiliated}",
        headers=headers_for(directory.admin_principal),
    )
    assert again.status_code == 404
