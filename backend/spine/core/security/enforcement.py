"""
Policy enforcement around the ORM access path.

``PolicySession`` is the session class used for every database session in
the application. Its event hooks make the rule set pervasive:

* every ORM SELECT receives the resolved read predicate of every protected
  model as loader criteria, so unauthorized rows never leave the database;
* every pending INSERT/UPDATE/DELETE is checked against its rule before
  the flush is emitted and rejected with ``AuthorizationDenied``;
* bulk ORM DML on protected models is rejected, since it cannot be
  checked row by row;
* on PostgreSQL the principal and the database role are mirrored into
  session state at the start of each transaction, so the native
  row-security policies rendered from the same rules apply as well.

The identity is request-scoped state carried in ``Session.info``; it is
bound explicitly with ``bind_principal`` and never shared between
sessions. ``service_bypass`` is the only way to suspend enforcement.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Connection, event, inspect, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import ORMExecuteState, Session, SessionTransaction, with_loader_criteria
from sqlalchemy.orm.state import InstanceState
from sqlalchemy.sql import ColumnElement, Select

from spine.core.config import get_settings
from spine.core.errors import AuthorizationDenied, PrincipalUnresolved
from spine.core.logging import get_logger
from spine.core.security.context import IdentityContext
from spine.core.security.policies import (
    authorize,
    authorize_update,
    criteria_for_entity,
    row_filter,
)
from spine.core.security.resolver import (
    forget_identity,
    is_resolver_lookup,
    organization_of,
    resolve_identity,
)
from spine.core.security.resources import Action, ResourceRef
from spine.db.models import PROTECTED_MODELS, Organization, User

logger = get_logger(__name__)

_PRINCIPAL_KEY = "spine.principal_id"
_BYPASS_KEY = "spine.service_bypass"

_ROLE_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class PolicySession(Session):
    """ORM session whose reads are filtered and writes gated by the rule set."""


def _sync_session(session: Session | AsyncSession) -> Session:
    if isinstance(session, AsyncSession):
        return session.sync_session
    return session


def _bypass_reasons(session: Session) -> list[str]:
    return session.info.setdefault(_BYPASS_KEY, [])


def _bypass_active(session: Session) -> bool:
    return bool(session.info.get(_BYPASS_KEY))


# =============================================================================
# Identity binding
# =============================================================================


def bind_principal(session: Session | AsyncSession, principal_id: UUID | None) -> None:
    """Bind the authenticated principal for the lifetime of ``session``."""
    sync = _sync_session(session)
    sync.info[_PRINCIPAL_KEY] = principal_id
    forget_identity(sync)


def bound_principal(session: Session | AsyncSession) -> UUID | None:
    return _sync_session(session).info.get(_PRINCIPAL_KEY)


def current_identity(session: Session) -> IdentityContext:
    """Identity context the policy layer currently applies to ``session``."""
    if _bypass_active(session):
        return IdentityContext.service(_bypass_reasons(session)[-1])
    return resolve_identity(session, session.info.get(_PRINCIPAL_KEY))


async def acurrent_identity(session: AsyncSession) -> IdentityContext:
    return await session.run_sync(current_identity)


async def require_identity(session: AsyncSession) -> IdentityContext:
    """Resolved identity for ``session``; raises ``PrincipalUnresolved`` otherwise."""
    context = await acurrent_identity(session)
    if not (context.is_resolved or context.is_service):
        raise PrincipalUnresolved("No identity is provisioned for this principal")
    return context


# =============================================================================
# Service bypass
# =============================================================================


@asynccontextmanager
async def service_bypass(session: AsyncSession, *, reason: str) -> AsyncIterator[AsyncSession]:
    """
    Suspend rule evaluation on ``session`` for the enclosed block.

    Reserved for internal jobs and the provisioning hook. Grants nest and
    are logged with their reason.
    """
    sync = session.sync_session
    reasons = _bypass_reasons(sync)
    reasons.append(reason)
    logger.info("service_bypass_granted", reason=reason, depth=len(reasons))
    try:
        await session.run_sync(_apply_database_role)
        yield session
    finally:
        reasons.pop()
        await session.run_sync(_apply_database_role)


# =============================================================================
# PostgreSQL session state
# =============================================================================


def _native_rls(connection: Connection) -> bool:
    return get_settings().native_rls_enabled and connection.dialect.name == "postgresql"


def _set_database_role(connection: Connection, session: Session) -> None:
    settings = get_settings()
    role = settings.db_service_role if _bypass_active(session) else settings.db_authenticated_role
    if not role:
        return
    role = role.strip()
    if _ROLE_NAME_RE.fullmatch(role):
        connection.execute(text(f'SET LOCAL ROLE "{role}"'))


def _apply_database_role(session: Session) -> None:
    transaction = session.get_transaction()
    if transaction is None or not transaction.is_active:
        return
    connection = session.connection()
    if _native_rls(connection):
        _set_database_role(connection, session)


@event.listens_for(PolicySession, "after_begin")
def _mirror_identity(session: Session, transaction: SessionTransaction, connection: Connection) -> None:
    if not _native_rls(connection):
        return
    principal_id = session.info.get(_PRINCIPAL_KEY)
    connection.execute(
        text("SELECT set_config('app.current_principal', :principal_id, true)"),
        {"principal_id": str(principal_id) if principal_id else ""},
    )
    _set_database_role(connection, session)


@event.listens_for(PolicySession, "after_transaction_end")
def _expire_identity(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        forget_identity(session)


# =============================================================================
# Read filtering
# =============================================================================


def _loader_criteria(model: Any, criteria: ColumnElement[bool]) -> Any:
    # Given a callable, SQLAlchemy resolves the criteria per entity, so
    # aliased() occurrences are filtered on their own columns.
    return with_loader_criteria(
        model,
        lambda entity: criteria_for_entity(criteria, entity),
        include_aliases=True,
    )


@event.listens_for(PolicySession, "do_orm_execute")
def _filter_statement(state: ORMExecuteState) -> None:
    if is_resolver_lookup(state.execution_options):
        return
    session = state.session
    if _bypass_active(session):
        return

    if state.is_select:
        if state.is_column_load or not isinstance(state.statement, Select):
            return
        context = current_identity(session)
        native = session.get_bind().dialect.name == "postgresql"
        state.statement = state.statement.options(
            *(
                _loader_criteria(model, row_filter(context, model, native=native))
                for model in PROTECTED_MODELS
            )
        )
        return

    if state.is_insert or state.is_update or state.is_delete:
        mapper = state.bind_mapper
        if mapper is not None and mapper.class_ in PROTECTED_MODELS:
            logger.warning(
                "bulk_write_denied",
                resource_type=mapper.class_.__resource_type__.value,
            )
            raise AuthorizationDenied()


# =============================================================================
# Write gating
# =============================================================================


def _is_protected(obj: Any) -> bool:
    return type(obj) in PROTECTED_MODELS


def _attribute_value(state: InstanceState[Any], key: str, committed: bool) -> Any:
    if not committed:
        return getattr(state.obj(), key)
    history = state.attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _changed_fields(state: InstanceState[Any]) -> frozenset[str]:
    changed = {
        attr.key for attr in state.mapper.column_attrs if state.attrs[attr.key].history.has_changes()
    }
    # Many-to-one assignments only copy the foreign key during the flush.
    for relationship in state.mapper.relationships:
        if relationship.uselist or not state.attrs[relationship.key].history.has_changes():
            continue
        changed.update(column.key for column in relationship.local_columns)
    return frozenset(changed)


def _user_org_id(state: InstanceState[Any], committed: bool) -> UUID | None:
    if not committed:
        history = state.attrs["organization"].history
        if history.added:
            organization = history.added[0]
            return organization.id if organization is not None else None
    return _attribute_value(state, "org_id", committed)


def _snapshot(
    session: Session,
    obj: Any,
    *,
    committed: bool = False,
    changed: frozenset[str] = frozenset(),
) -> ResourceRef:
    state = inspect(obj)
    resource_type = type(obj).__resource_type__
    if isinstance(obj, User):
        return ResourceRef(
            resource_type=resource_type,
            row_id=obj.id,
            owner_id=obj.id,
            owner_org_id=_user_org_id(state, committed),
            role=_attribute_value(state, "role", committed),
            changed_fields=changed,
        )
    if isinstance(obj, Organization):
        return ResourceRef(resource_type=resource_type, row_id=obj.id, changed_fields=changed)
    owner_id = _attribute_value(state, "user_id", committed)
    return ResourceRef(
        resource_type=resource_type,
        row_id=obj.id,
        owner_id=owner_id,
        owner_org_id=organization_of(session, owner_id),
        changed_fields=changed,
    )


def _deny(context: IdentityContext, resource: ResourceRef, action: Action) -> None:
    logger.warning(
        "write_denied",
        resource_type=resource.resource_type.value,
        action=action.value,
        resolved=context.is_resolved,
    )
    raise AuthorizationDenied()


@event.listens_for(PolicySession, "before_flush")
def _gate_writes(session: Session, flush_context: Any, instances: Any) -> None:
    if _bypass_active(session):
        return
    context = current_identity(session)

    for obj in list(session.new):
        if not _is_protected(obj):
            continue
        if obj.id is None:
            obj.id = uuid4()
        resource = _snapshot(session, obj)
        if not authorize(context, resource, Action.CREATE).is_allowed:
            _deny(context, resource, Action.CREATE)

    for obj in list(session.dirty):
        if not _is_protected(obj) or not session.is_modified(obj, include_collections=False):
            continue
        state = inspect(obj)
        changed = _changed_fields(state)
        if not changed:
            continue
        before = _snapshot(session, obj, committed=True, changed=changed)
        after = _snapshot(session, obj, changed=changed)
        if not authorize_update(context, before, after).is_allowed:
            _deny(context, before, Action.UPDATE)

    for obj in list(session.deleted):
        if not _is_protected(obj):
            continue
        resource = _snapshot(session, obj, committed=True)
        if not authorize(context, resource, Action.DELETE).is_allowed:
            _deny(context, resource, Action.DELETE)
