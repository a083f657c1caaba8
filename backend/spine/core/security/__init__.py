"""Security primitives: role tiers, resource types and identity context.

The enforcement layer (``spine.core.security.enforcement``) and the request
dependencies (``spine.core.security.principal``) depend on the ORM models
and are imported from their own modules.
"""

from spine.core.security.context import IdentityContext
from spine.core.security.resources import Action, ResourceClass, ResourceRef, ResourceType
from spine.core.security.roles import (
    LOWEST_TIER,
    TOP_TIER,
    UserRole,
    meets_threshold,
    parse_role,
    rank,
)

__all__ = [
    "IdentityContext",
    "Action",
    "ResourceClass",
    "ResourceRef",
    "ResourceType",
    "UserRole",
    "LOWEST_TIER",
    "TOP_TIER",
    "rank",
    "meets_threshold",
    "parse_role",
]
