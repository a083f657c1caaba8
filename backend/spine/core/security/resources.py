"""Resource types, actions and the row snapshot policies are evaluated against."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from spine.core.security.roles import UserRole


class Action(str, Enum):
    """Row operations gated by policy."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceClass(str, Enum):
    """Groups of resources that share an access shape."""

    PROFILE = "profile"
    DIRECTORY = "directory"
    PERSONAL_SECURITY = "personal_security"
    AUDIT = "audit"


class ResourceType(str, Enum):
    """Every table protected by the rule set."""

    IDENTITY = "identity"
    ORGANIZATION = "organization"
    MFA_SETTINGS = "mfa_settings"
    TOTP_SECRET = "totp_secret"
    RECOVERY_CODE = "recovery_code"
    CERTIFICATE = "certificate"
    SIGNING_LOG = "signing_log"
    NATIONAL_ID = "national_id"
    VERIFICATION_LOG = "verification_log"

    @property
    def resource_class(self) -> ResourceClass:
        return _RESOURCE_CLASSES[self]


_RESOURCE_CLASSES: dict[ResourceType, ResourceClass] = {
    ResourceType.IDENTITY: ResourceClass.PROFILE,
    ResourceType.ORGANIZATION: ResourceClass.DIRECTORY,
    ResourceType.MFA_SETTINGS: ResourceClass.PERSONAL_SECURITY,
    ResourceType.TOTP_SECRET: ResourceClass.PERSONAL_SECURITY,
    ResourceType.RECOVERY_CODE: ResourceClass.PERSONAL_SECURITY,
    ResourceType.CERTIFICATE: ResourceClass.AUDIT,
    ResourceType.SIGNING_LOG: ResourceClass.AUDIT,
    ResourceType.NATIONAL_ID: ResourceClass.AUDIT,
    ResourceType.VERIFICATION_LOG: ResourceClass.AUDIT,
}


@dataclass(frozen=True)
class ResourceRef:
    """
    Snapshot of one row as seen by the policy layer.

    ``owner_id`` is the identity that owns the row (the row itself for
    identities, ``None`` for organizations). ``owner_org_id`` is that
    owner's organization. ``role`` is only set for identity rows.
    ``changed_fields`` lists the columns an UPDATE touches.
    """

    resource_type: ResourceType
    row_id: UUID | None = None
    owner_id: UUID | None = None
    owner_org_id: UUID | None = None
    role: UserRole | None = None
    changed_fields: frozenset[str] = field(default_factory=frozenset)
