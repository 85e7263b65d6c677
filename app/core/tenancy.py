"""Tenant context — which tenant the current operation acts for.

The active tenant lives in a ``ContextVar``. asyncio copies the current
context into every task it spawns, so anything awaited or gathered under a
scope sees the same tenant, while concurrent requests each get their own.

Usage::

    with tenant_scope("acme"):
        users = await session.execute(select(User))

    await run_in_tenant_context("acme", provision, session)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, TypeVar

T = TypeVar("T")


class TenantContextError(RuntimeError):
    """Programming error: tenant-scoped code ran with a missing or wrong context."""


class TenantContextMissingError(TenantContextError):
    pass


class TenantContextConflictError(TenantContextError):
    pass


class CrossTenantWriteError(TenantContextError):
    pass


@dataclass(frozen=True, slots=True)
class TenantContext:
    """Immutable tenant identity for one logical operation."""

    tenant_id: str
    request_id: str | None = None


_current_tenant: ContextVar[TenantContext | None] = ContextVar("current_tenant", default=None)
_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def current_tenant() -> TenantContext | None:
    return _current_tenant.get()


def current_tenant_id() -> str:
    """Return the active tenant id or fail loudly."""
    ctx = _current_tenant.get()
    if ctx is None:
        raise TenantContextMissingError(
            "Tenant-scoped operation attempted without an established tenant context"
        )
    return ctx.tenant_id


def current_request_id() -> str | None:
    return _request_id.get()


def bind_request_id(request_id: str) -> Token:
    return _request_id.set(request_id)


def unbind_request_id(token: Token) -> None:
    _request_id.reset(token)


@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[TenantContext]:
    """Bind ``tenant_id`` for the duration of the block.

    Re-entering with the same tenant reuses the active context. Re-entering
    with a different tenant raises ``TenantContextConflictError``.
    """
    if not tenant_id:
        raise ValueError("tenant_id must not be empty")

    active = _current_tenant.get()
    if active is not None:
        if active.tenant_id != tenant_id:
            raise TenantContextConflictError(
                f"Tenant context already established for {active.tenant_id!r}; "
                f"refusing to switch to {tenant_id!r}"
            )
        yield active
        return

    ctx = TenantContext(tenant_id=tenant_id, request_id=_request_id.get())
    token = _current_tenant.set(ctx)
    try:
        yield ctx
    finally:
        _current_tenant.reset(token)


async def run_in_tenant_context(
    tenant_id: str,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)`` with ``tenant_id`` bound."""
    with tenant_scope(tenant_id):
        return await fn(*args, **kwargs)
