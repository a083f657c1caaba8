"""
Role hierarchy.

Four totally ordered privilege tiers. Roles are integer-backed so tier
checks are numeric comparisons; they are persisted by member name
(``CITIZEN`` ... ``SUPER_ADMIN``), which is also the declaration order of
the PostgreSQL ``user_role`` enum so in-database ``>=`` agrees with
``rank``.
"""

from __future__ import annotations

from enum import IntEnum


class UserRole(IntEnum):
    """Privilege tiers, lowest first."""

    CITIZEN = 0
    OPERATOR = 1
    ORG_ADMIN = 2
    SUPER_ADMIN = 3


LOWEST_TIER = UserRole.CITIZEN
TOP_TIER = UserRole.SUPER_ADMIN


def rank(role: UserRole) -> int:
    """Stable integer rank of a role."""
    return int(UserRole(role))


def meets_threshold(role: UserRole | None, minimum: UserRole) -> bool:
    """Return True when ``role`` is at or above ``minimum``.

    ``None`` (no resolved identity) never meets any threshold.
    """
    if role is None:
        return False
    return rank(role) >= rank(minimum)


def parse_role(value: str | UserRole) -> UserRole:
    """Parse a role by member name, case-insensitively."""
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole[value.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown role: {value!r}") from None
