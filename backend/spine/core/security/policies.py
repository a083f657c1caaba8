"""
Policy rule set.

Exactly one rule governs each ``(resource type, action)`` pair. A rule is
a fixed tuple of condition classes combined with OR, so every check costs
one predicate evaluation and there is no grant/deny stacking to reason
about.

Each condition can be rendered three ways from the same definition:

* ``holds`` evaluates it against a row snapshot (write gating, ``authorize``),
* ``criteria`` produces a SQLAlchemy expression (read filtering at the
  query boundary, ``row_filter``); with ``native`` set it resolves owner
  organizations through the ``SECURITY DEFINER`` helper instead of reading
  ``users``, which row security would hide from the caller,
* ``sql`` produces the PostgreSQL predicate used by the native
  row-security policies (``render_policy_ddl``).

An unresolved identity satisfies no condition; every rule fails closed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import and_, false, func, inspect, or_, select, true
from sqlalchemy.orm.util import AliasedClass
from sqlalchemy.sql import visitors
from sqlalchemy.sql.elements import BindParameter, ColumnElement
from sqlalchemy.sql.util import ClauseAdapter

from spine.core.security.context import IdentityContext
from spine.core.security.resources import Action, ResourceRef, ResourceType
from spine.core.security.roles import TOP_TIER, UserRole, meets_threshold, rank
from spine.db.models import (
    PROFILE_FIELDS,
    PROTECTED_MODELS,
    VERIFICATION_WORKFLOW_FIELDS,
    User,
)

MODEL_BY_RESOURCE: dict[ResourceType, Any] = {
    model.__resource_type__: model for model in PROTECTED_MODELS
}

# Core alias of the identity table for owner-organization subqueries. Being a
# plain table alias it is not an ORM entity, so identity row filters are not
# applied to it. Used on databases without the PostgreSQL helper functions.
_owners = User.__table__.alias("policy_owner")

_CUI_USER = "(SELECT cui.user_id FROM public.current_user_info() cui)"
_CUI_ORG = "(SELECT cui.org_id FROM public.current_user_info() cui)"
_CUI_ROLE = "(SELECT cui.role FROM public.current_user_info() cui)"


class Decision(str, Enum):
    """Outcome of a policy check."""

    ALLOW = "allow"
    DENY = "deny"

    @property
    def is_allowed(self) -> bool:
        return self is Decision.ALLOW


def _owner_column_name(model: Any) -> str | None:
    if model is User:
        return "id"
    if "user_id" in model.__table__.c:
        return "user_id"
    return None


def _fields_allowed(fields: frozenset[str] | None, target: ResourceRef) -> bool:
    return fields is None or target.changed_fields <= fields


def _owner_org_function(owner_column: Any) -> ColumnElement[Any]:
    return func.public.identity_org_id(owner_column, type_=User.__table__.c.org_id.type)


def _role_literal(role: UserRole) -> str:
    return f"'{role.name}'::public.user_role"


# =============================================================================
# Condition classes
# =============================================================================


class Condition:
    """One OR-branch of a policy rule."""

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        raise NotImplementedError

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        """SQL expression for ``model`` rows, or ``None`` if the branch cannot hold."""
        raise NotImplementedError

    def sql(self, model: Any) -> str | None:
        """PostgreSQL predicate, or ``None`` if handled outside row security."""
        raise NotImplementedError


@dataclass(frozen=True)
class ServiceBypass(Condition):
    """Internal actors (jobs, migrations, provisioning) are unconditionally allowed."""

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        return context.is_service

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        return true() if context.is_service else None

    def sql(self, model: Any) -> str | None:
        # The service database role carries BYPASSRLS.
        return None


@dataclass(frozen=True)
class SelfOwned(Condition):
    """The acting identity owns the row, or is the identity row itself."""

    fields: frozenset[str] | None = None

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        return (
            context.is_resolved
            and target.owner_id is not None
            and target.owner_id == context.identity_id
            and _fields_allowed(self.fields, target)
        )

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        column_name = _owner_column_name(model)
        if not context.is_resolved or column_name is None:
            return None
        return getattr(model, column_name) == context.identity_id

    def sql(self, model: Any) -> str | None:
        column_name = _owner_column_name(model)
        if column_name is None:
            return None
        return f"{column_name} = {_CUI_USER}"


@dataclass(frozen=True)
class OrgTier(Condition):
    """
    Same organization as the row owner and at least ``minimum`` tier.

    ``fields`` limits which columns an UPDATE may touch. ``role_ceiling``
    (identity rows only) forbids leaving a row with a role above the
    actor's own.
    """

    minimum: UserRole
    fields: frozenset[str] | None = None
    role_ceiling: bool = False

    def _actor_qualifies(self, context: IdentityContext) -> bool:
        return (
            context.is_resolved
            and context.org_id is not None
            and meets_threshold(context.role, self.minimum)
        )

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        if not self._actor_qualifies(context):
            return False
        if target.owner_org_id is None or target.owner_org_id != context.org_id:
            return False
        if not _fields_allowed(self.fields, target):
            return False
        if self.role_ceiling and target.role is not None and context.role is not None:
            return rank(target.role) <= rank(context.role)
        return True

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        if not self._actor_qualifies(context):
            return None
        if model is User:
            clause = User.org_id == context.org_id
            if self.role_ceiling and context.role is not None:
                allowed = [role for role in UserRole if rank(role) <= rank(context.role)]
                clause = and_(clause, User.role.in_(allowed))
            return clause
        if _owner_column_name(model) is None:
            return None
        if native:
            return _owner_org_function(model.user_id) == context.org_id
        return model.user_id.in_(select(_owners.c.id).where(_owners.c.org_id == context.org_id))

    def sql(self, model: Any) -> str | None:
        threshold = f"{_CUI_ROLE} >= {_role_literal(self.minimum)}"
        if model is User:
            parts = ["org_id IS NOT NULL", f"org_id = {_CUI_ORG}", threshold]
            if self.role_ceiling:
                parts.append(f"role <= {_CUI_ROLE}")
            return " AND ".join(parts)
        if _owner_column_name(model) is None:
            return None
        return f"{threshold} AND public.identity_org_id(user_id) = {_CUI_ORG}"


@dataclass(frozen=True)
class GlobalAdmin(Condition):
    """The acting identity holds the top tier."""

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        return context.is_top_tier

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        return true() if context.is_top_tier else None

    def sql(self, model: Any) -> str | None:
        return f"{_CUI_ROLE} = {_role_literal(TOP_TIER)}"


@dataclass(frozen=True)
class Authenticated(Condition):
    """Any resolved identity."""

    def holds(self, context: IdentityContext, target: ResourceRef) -> bool:
        return context.is_resolved

    def criteria(
        self, context: IdentityContext, model: Any, native: bool = False
    ) -> ColumnElement[bool] | None:
        return true() if context.is_resolved else None

    def sql(self, model: Any) -> str | None:
        return "EXISTS (SELECT 1 FROM public.current_user_info())"


# =============================================================================
# Rules
# =============================================================================

_SQL_COMMANDS: dict[Action, str] = {
    Action.READ: "SELECT",
    Action.CREATE: "INSERT",
    Action.UPDATE: "UPDATE",
    Action.DELETE: "DELETE",
}


@dataclass(frozen=True)
class PolicyRule:
    """The single OR-composed predicate for one resource type and action."""

    resource_type: ResourceType
    action: Action
    conditions: tuple[Condition, ...]

    @property
    def model(self) -> Any:
        return MODEL_BY_RESOURCE[self.resource_type]

    @property
    def name(self) -> str:
        return f"{self.model.__tablename__}_{_SQL_COMMANDS[self.action].lower()}"

    def evaluate(self, context: IdentityContext, target: ResourceRef) -> bool:
        return any(condition.holds(context, target) for condition in self.conditions)

    def criteria(self, context: IdentityContext, native: bool = False) -> ColumnElement[bool]:
        clauses: list[ColumnElement[bool]] = []
        for condition in self.conditions:
            clause = condition.criteria(context, self.model, native)
            if clause is None:
                continue
            clauses.append(clause)
        if not clauses:
            return false()
        return or_(*clauses)

    def using_sql(self) -> str:
        fragments = [
            fragment
            for fragment in (condition.sql(self.model) for condition in self.conditions)
            if fragment
        ]
        if not fragments:
            return "false"
        return " OR ".join(f"({fragment})" for fragment in fragments)

    def create_policy_sql(self, role: str = "authenticated") -> str:
        table = self.model.__tablename__
        command = _SQL_COMMANDS[self.action]
        predicate = self.using_sql()
        if self.action is Action.CREATE:
            clauses = f"WITH CHECK ({predicate})"
        elif self.action is Action.UPDATE:
            clauses = f"USING ({predicate}) WITH CHECK ({predicate})"
        else:
            clauses = f"USING ({predicate})"
        return f'CREATE POLICY "{self.name}" ON public.{table} FOR {command} TO {role} {clauses}'

    def drop_policy_sql(self) -> str:
        return f'DROP POLICY IF EXISTS "{self.name}" ON public.{self.model.__tablename__}'


_SERVICE = ServiceBypass()
_SELF = SelfOwned()
_ADMIN = GlobalAdmin()

_ADMIN_ONLY = (_SERVICE, _ADMIN)
_AUDIT_READ = (_SERVICE, _SELF, OrgTier(UserRole.OPERATOR), _ADMIN)

_PERSONAL_SECURITY = (
    ResourceType.MFA_SETTINGS,
    ResourceType.TOTP_SECRET,
    ResourceType.RECOVERY_CODE,
)


def _build_rules() -> dict[tuple[ResourceType, Action], PolicyRule]:
    table: dict[tuple[ResourceType, Action], tuple[Condition, ...]] = {
        # Identity profile
        (ResourceType.IDENTITY, Action.READ): (
            _SERVICE,
            _SELF,
            OrgTier(UserRole.ORG_ADMIN),
            _ADMIN,
        ),
        (ResourceType.IDENTITY, Action.UPDATE): (
            _SERVICE,
            SelfOwned(fields=PROFILE_FIELDS),
            OrgTier(UserRole.ORG_ADMIN, role_ceiling=True),
            _ADMIN,
        ),
        (ResourceType.IDENTITY, Action.CREATE): _ADMIN_ONLY,
        (ResourceType.IDENTITY, Action.DELETE): _ADMIN_ONLY,
        # Organization directory
        (ResourceType.ORGANIZATION, Action.READ): (_SERVICE, Authenticated()),
        (ResourceType.ORGANIZATION, Action.CREATE): _ADMIN_ONLY,
        (ResourceType.ORGANIZATION, Action.UPDATE): _ADMIN_ONLY,
        (ResourceType.ORGANIZATION, Action.DELETE): _ADMIN_ONLY,
        # Signing certificates and logs
        (ResourceType.CERTIFICATE, Action.READ): _AUDIT_READ,
        (ResourceType.CERTIFICATE, Action.CREATE): _ADMIN_ONLY,
        (ResourceType.CERTIFICATE, Action.UPDATE): _ADMIN_ONLY,
        (ResourceType.CERTIFICATE, Action.DELETE): _ADMIN_ONLY,
        (ResourceType.SIGNING_LOG, Action.READ): _AUDIT_READ,
        (ResourceType.SIGNING_LOG, Action.CREATE): _ADMIN_ONLY,
        (ResourceType.SIGNING_LOG, Action.UPDATE): _ADMIN_ONLY,
        (ResourceType.SIGNING_LOG, Action.DELETE): _ADMIN_ONLY,
        # Identity verification metadata and logs
        (ResourceType.NATIONAL_ID, Action.READ): _AUDIT_READ,
        (ResourceType.NATIONAL_ID, Action.UPDATE): (
            _SERVICE,
            OrgTier(UserRole.OPERATOR, fields=VERIFICATION_WORKFLOW_FIELDS),
            _ADMIN,
        ),
        (ResourceType.NATIONAL_ID, Action.CREATE): _ADMIN_ONLY,
        (ResourceType.NATIONAL_ID, Action.DELETE): _ADMIN_ONLY,
        (ResourceType.VERIFICATION_LOG, Action.READ): _AUDIT_READ,
        (ResourceType.VERIFICATION_LOG, Action.CREATE): (
            _SERVICE,
            OrgTier(UserRole.OPERATOR),
            _ADMIN,
        ),
        (ResourceType.VERIFICATION_LOG, Action.UPDATE): _ADMIN_ONLY,
        (ResourceType.VERIFICATION_LOG, Action.DELETE): _ADMIN_ONLY,
    }
    # Personal security artifacts: owner has full access, the top tier may
    # only read.
    for resource_type in _PERSONAL_SECURITY:
        table[(resource_type, Action.READ)] = (_SERVICE, _SELF, _ADMIN)
        for action in (Action.CREATE, Action.UPDATE, Action.DELETE):
            table[(resource_type, action)] = (_SERVICE, _SELF)

    return {
        key: PolicyRule(resource_type=key[0], action=key[1], conditions=conditions)
        for key, conditions in table.items()
    }


POLICY_RULES: dict[tuple[ResourceType, Action], PolicyRule] = _build_rules()


def rule_for(resource_type: ResourceType, action: Action) -> PolicyRule:
    """The rule governing ``(resource_type, action)``."""
    return POLICY_RULES[(resource_type, action)]


# =============================================================================
# Public entry points
# =============================================================================


def authorize(context: IdentityContext, resource: ResourceRef, action: Action) -> Decision:
    """Decide a single operation on a single row."""
    rule = rule_for(resource.resource_type, action)
    return Decision.ALLOW if rule.evaluate(context, resource) else Decision.DENY


def authorize_update(
    context: IdentityContext,
    before: ResourceRef,
    after: ResourceRef,
) -> Decision:
    """
    Decide an UPDATE: the rule must admit the row as it is (USING) and as
    it will be (WITH CHECK).
    """
    rule = rule_for(before.resource_type, Action.UPDATE)
    if rule.evaluate(context, before) and rule.evaluate(context, after):
        return Decision.ALLOW
    return Decision.DENY


def row_filter(
    context: IdentityContext,
    model: Any,
    action: Action = Action.READ,
    *,
    native: bool = False,
) -> ColumnElement[bool]:
    """
    WHERE-clause predicate admitting only the ``model`` rows ``context`` may act on.

    Pass ``native=True`` on PostgreSQL, where the helper functions installed
    by the migrations exist.
    """
    return rule_for(model.__resource_type__, action).criteria(context, native)


def criteria_for_entity(criteria: ColumnElement[bool], entity: Any) -> ColumnElement[bool]:
    """Rewrite ``criteria`` built against a mapped class for ``entity``, which may be an alias."""
    if not isinstance(entity, AliasedClass):
        return criteria
    adapter = ClauseAdapter(inspect(entity).selectable)

    def replace(element: Any) -> Any:
        # Bound parameters keep their identity and key, so a cached
        # criteria lambda still receives the current context values.
        if isinstance(element, BindParameter):
            return element
        return adapter.replace(element)

    return visitors.replacement_traverse(criteria, {}, replace)


def render_policy_ddl(role: str = "authenticated") -> list[str]:
    """DROP/CREATE statements mapping every rule onto native row security."""
    statements: list[str] = []
    for rule in POLICY_RULES.values():
        statements.append(rule.drop_policy_sql())
        statements.append(rule.create_policy_sql(role))
    return statements
