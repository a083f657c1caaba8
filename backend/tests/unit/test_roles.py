"""Unit tests for the role hierarchy."""

from __future__ import annotations

import pytest

from spine.core.security.roles import (
    LOWEST_TIER,
    TOP_TIER,
    UserRole,
    meets_threshold,
    parse_role,
    rank,
)


def test_roles_are_totally_ordered() -> None:
    assert list(UserRole) == sorted(UserRole, key=rank)
    assert rank(UserRole.CITIZEN) < rank(UserRole.OPERATOR) < rank(UserRole.ORG_ADMIN)
    assert rank(UserRole.ORG_ADMIN) < rank(UserRole.SUPER_ADMIN)


def test_tier_bounds() -> None:
    assert LOWEST_TIER is UserRole.CITIZEN
    assert TOP_TIER is UserRole.SUPER_ADMIN


@pytest.mark.parametrize(
    ("role", "minimum", "expected"),
    [
        (UserRole.OPERATOR, UserRole.OPERATOR, True),
        (UserRole.ORG_ADMIN, UserRole.OPERATOR, True),
        (UserRole.CITIZEN, UserRole.OPERATOR, False),
        (UserRole.SUPER_ADMIN, UserRole.SUPER_ADMIN, True),
        (None, UserRole.CITIZEN, False),
    ],
)
def test_meets_threshold(role: UserRole | None, minimum: UserRole, expected: bool) -> None:
    assert meets_threshold(role, minimum) is expected


def test_parse_role_is_case_insensitive() -> None:
    assert parse_role(" org_admin ") is UserRole.ORG_ADMIN
    assert parse_role("SUPER_ADMIN") is UserRole.SUPER_ADMIN
    assert parse_role(UserRole.OPERATOR) is UserRole.OPERATOR


def test_parse_role_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="Unknown role"):
        parse_role("admin")
