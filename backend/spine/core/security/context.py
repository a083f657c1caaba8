"""Request-scoped identity context."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from spine.core.security.roles import TOP_TIER, UserRole


@dataclass(frozen=True)
class IdentityContext:
    """
    Resolved ``(identity_id, org_id, role)`` triple for the acting principal.

    An unresolved context (principal authenticated but not provisioned)
    carries only ``principal_id`` and is denied by every rule. A service
    context sits outside the user tiers and is granted by every rule.
    """

    principal_id: UUID | None
    identity_id: UUID | None = None
    org_id: UUID | None = None
    role: UserRole | None = None
    service_actor: str | None = None

    @classmethod
    def unresolved(cls, principal_id: UUID | None) -> IdentityContext:
        return cls(principal_id=principal_id)

    @classmethod
    def service(cls, actor: str) -> IdentityContext:
        return cls(principal_id=None, service_actor=actor)

    @property
    def is_service(self) -> bool:
        return self.service_actor is not None

    @property
    def is_resolved(self) -> bool:
        return self.identity_id is not None and self.role is not None

    @property
    def is_top_tier(self) -> bool:
        return self.is_resolved and self.role == TOP_TIER
