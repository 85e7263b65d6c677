"""Session-level tenant scoping for every ``TenantScopedMixin`` table.

Two listeners are attached to the ORM ``Session`` class:

- ``do_orm_execute`` adds ``tenant_id = <current tenant>`` to every ORM
  SELECT / UPDATE / DELETE that touches a tenant-owned entity, including
  joined and aliased ones. Bulk ``insert()`` statements get ``tenant_id``
  stamped or checked, and bulk ``update()`` may never SET it.
- ``before_flush`` stamps new rows with the current tenant, and rejects rows,
  updates or deletes that belong to another tenant.

Both raise ``TenantContextMissingError`` before any SQL is emitted when no
tenant context is active. Primary-key lookups via ``Session.get`` may be
served from the identity map without SQL, so scoped models are always
loaded with ``select()``.
"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql.elements import BindParameter, ClauseElement

from app.core.tenancy import CrossTenantWriteError, current_tenant_id
from app.models.base import TenantScopedMixin

logger = logging.getLogger(__name__)


def _scoped_classes() -> list[type]:
    """Every mapped table class that carries ``tenant_id``."""
    found = []
    pending = list(TenantScopedMixin.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        if hasattr(cls, "__table__"):
            found.append(cls)
    return found


def _touches_scoped_entity(state: ORMExecuteState) -> bool:
    return any(issubclass(m.class_, TenantScopedMixin) for m in state.all_mappers)


def _key_name(key) -> str | None:
    return key if isinstance(key, str) else getattr(key, "key", None)


def _literal(value):
    if isinstance(value, BindParameter):
        return value.value
    if isinstance(value, ClauseElement):
        raise CrossTenantWriteError("tenant_id must be a literal value on tenant-scoped writes")
    return value


def _check_row(row: dict, tenant_id: str, entity: str) -> bool:
    """Reject a row naming another tenant. Returns whether tenant_id was present."""
    for key, value in row.items():
        if _key_name(key) != "tenant_id":
            continue
        named = _literal(value)
        if named is not None and named != tenant_id:
            raise CrossTenantWriteError(
                f"Refusing to create {entity} for tenant {named!r} inside context {tenant_id!r}"
            )
        return named is not None
    return False


def _guard_bulk_insert(state: ORMExecuteState, tenant_id: str) -> None:
    stmt = state.statement
    entity = state.all_mappers[0].class_.__name__

    if stmt.select is not None:
        raise CrossTenantWriteError(f"INSERT ... FROM SELECT into {entity} is not supported")

    for rows in stmt._multi_values:
        for row in rows:
            if not isinstance(row, dict):
                row = dict(zip((c.key for c in stmt.table.c), row))
            if not _check_row(row, tenant_id, entity):
                raise CrossTenantWriteError(f"Multi-row VALUES into {entity} must name tenant_id")

    params = state.parameters
    if params:
        # Parameter sets are stamped in place; the session hands these same dicts on
        for row in [params] if isinstance(params, dict) else params:
            if not _check_row(row, tenant_id, entity):
                row["tenant_id"] = tenant_id
        if stmt._values:
            _check_row(dict(stmt._values), tenant_id, entity)
        return

    if stmt._multi_values:
        return
    if not _check_row(dict(stmt._values or {}), tenant_id, entity):
        state.statement = stmt.values(tenant_id=tenant_id)


def _guard_bulk_update(state: ORMExecuteState) -> None:
    stmt = state.statement
    entity = state.all_mappers[0].class_.__name__
    if state.is_executemany:
        # By-primary-key bulk UPDATE ignores loader criteria
        raise CrossTenantWriteError(f"Bulk UPDATE by primary key on {entity} is not supported")

    keys = [k for k, _ in stmt._ordered_values or ()]
    keys.extend(stmt._values or ())
    if isinstance(state.parameters, dict):
        keys.extend(state.parameters)
    if any(_key_name(k) == "tenant_id" for k in keys):
        raise CrossTenantWriteError(f"tenant_id of {entity} is immutable")


def _scope_statement(state: ORMExecuteState) -> None:
    if state.is_column_load or state.is_relationship_load:
        # Criteria from the parent statement already propagate here
        return
    if not (state.is_select or state.is_update or state.is_delete or state.is_insert):
        return
    if not _touches_scoped_entity(state):
        return

    tenant_id = current_tenant_id()
    if state.is_insert:
        _guard_bulk_insert(state, tenant_id)
        return
    if state.is_update:
        _guard_bulk_update(state)
    elif state.is_delete and state.is_executemany:
        raise CrossTenantWriteError("Bulk DELETE by primary key is not supported on tenant-scoped tables")

    state.statement = state.statement.options(
        *(
            with_loader_criteria(cls, cls.tenant_id == tenant_id, include_aliases=True)
            for cls in _scoped_classes()
        )
    )


def _guard_flush(session: Session, _flush_context, _instances) -> None:
    for obj in session.new:
        if not isinstance(obj, TenantScopedMixin):
            continue
        tenant_id = current_tenant_id()
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id:
            raise CrossTenantWriteError(
                f"Refusing to create {type(obj).__name__} for tenant "
                f"{obj.tenant_id!r} inside context {tenant_id!r}"
            )

    for obj in session.dirty:
        if not isinstance(obj, TenantScopedMixin):
            continue
        tenant_id = current_tenant_id()
        if inspect(obj).attrs.tenant_id.history.has_changes():
            raise CrossTenantWriteError(
                f"tenant_id of {type(obj).__name__} is immutable"
            )
        if obj.tenant_id != tenant_id:
            raise CrossTenantWriteError(
                f"Refusing to update {type(obj).__name__} of another tenant"
            )

    for obj in session.deleted:
        if isinstance(obj, TenantScopedMixin) and obj.tenant_id != current_tenant_id():
            raise CrossTenantWriteError(
                f"Refusing to delete {type(obj).__name__} of another tenant"
            )


def install_tenant_scoping() -> None:
    """Attach the listeners to ``Session`` (idempotent)."""
    if event.contains(Session, "do_orm_execute", _scope_statement):
        return
    event.listen(Session, "do_orm_execute", _scope_statement)
    event.listen(Session, "before_flush", _guard_flush)
    logger.debug("Tenant scoping listeners installed")


install_tenant_scoping()
