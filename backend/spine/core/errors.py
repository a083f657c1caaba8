"""
Error kinds raised by the authorization engine.

Read-path denials never raise: unauthorized rows are filtered out of the
result. Everything here is recoverable at the request or transaction
boundary.
"""

from __future__ import annotations


class SpineError(Exception):
    """Base class for engine errors."""


class PrincipalUnresolved(SpineError):
    """An authenticated principal has no provisioned identity yet."""


class AuthorizationDenied(SpineError):
    """A write was rejected by policy.

    The message is deliberately generic; callers must not learn which
    condition failed or whether the target row exists.
    """

    def __init__(self, message: str = "Operation not permitted") -> None:
        super().__init__(message)


class OwnerConstraintViolation(SpineError):
    """An identity cannot be deleted while audit records still reference it."""


class MigrationStateConflict(SpineError):
    """The role migration found a schema state it does not know how to handle."""


class ProvisioningConflict(SpineError):
    """A principal was provisioned concurrently; resolved as a no-op."""


class ProvisioningError(SpineError):
    """A genuine provisioning failure surfaced because the failure mode is 'raise'."""
