"""Tenant endpoints — registration, verification, SSO and administration."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from app.api.deps import Auth, Directory, Issuer, get_sso_handler
from app.core.errors import NotFoundError
from app.models.tenant import TenantDetail, TenantRead, TenantRegistered, TenantStatus
from app.services.sso import SSOFederationHandler
from app.services.tenant_directory import normalize_tenant_id

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ── Schemas ──────────────────────────────────────────────────

class CamelModel(BaseModel):
    """Accepts both ``tenantId`` and ``tenant_id`` style keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TenantRegisterRequest(CamelModel):
    tenant_id: str = Field(min_length=3, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    domain: str = Field(min_length=1, max_length=255)
    allowed_origins: list[str] = Field(default_factory=list)
    admin_email: EmailStr


class TenantVerifyRequest(CamelModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    verification_code: str = Field(min_length=1, max_length=128)


class TenantUpdateRequest(CamelModel):
    name: str | None = Field(default=None, max_length=255)
    allowed_origins: list[str] | None = None


class SSOSessionInfo(BaseModel):
    success: bool = True
    tenant_id: str
    user_id: str
    email: str
    display_name: str
    external_id: str | None
    external_system: str | None
    active_sessions: int


class SSOLogoutResponse(BaseModel):
    success: bool = True
    revoked_sessions: int


def _ensure_member(auth: Auth, tenant_id: str) -> str:
    """Other tenants are reported as missing, never as forbidden."""
    tenant_id = normalize_tenant_id(tenant_id)
    if auth.tenant_id != tenant_id:
        raise NotFoundError("Tenant not found")
    return tenant_id


# ── Registration ─────────────────────────────────────────────

@router.post("/register", response_model=TenantRegistered, status_code=201)
async def register_tenant(body: TenantRegisterRequest, directory: Directory) -> TenantRegistered:
    """Register a tenant. The shared secret is returned here and never again."""
    registered = await directory.register(
        tenant_id=body.tenant_id,
        name=body.name,
        domain=body.domain,
        allowed_origins=body.allowed_origins,
        admin_email=body.admin_email,
    )
    return TenantRegistered(
        tenant=TenantDetail.model_validate(registered.tenant),
        shared_secret=registered.shared_secret,
        verification_code=registered.verification_code,
    )


@router.post("/verify", response_model=TenantDetail)
async def verify_tenant(body: TenantVerifyRequest, directory: Directory) -> TenantDetail:
    tenant = await directory.verify(body.tenant_id, body.verification_code)
    return TenantDetail.model_validate(tenant)


# ── SSO ──────────────────────────────────────────────────────

@router.post("/sso/init")
async def sso_init(
    request: Request,
    handler: Annotated[SSOFederationHandler, Depends(get_sso_handler)],
) -> JSONResponse:
    """Exchange ``{token, signature}`` from the parent application for a session."""
    return await handler(request)


@router.get("/sso/session", response_model=SSOSessionInfo)
async def sso_session(auth: Auth, issuer: Issuer) -> SSOSessionInfo:
    user = auth.user
    sessions = await issuer.list_active_sessions(user.id)
    return SSOSessionInfo(
        tenant_id=auth.tenant_id,
        user_id=str(user.id),
        email=user.email,
        display_name=user.display_name,
        external_id=user.external_id,
        external_system=user.external_system,
        active_sessions=len(sessions),
    )


@router.delete("/sso/logout", response_model=SSOLogoutResponse)
async def sso_logout(auth: Auth, issuer: Issuer) -> SSOLogoutResponse:
    """Revoke every refresh token of the caller."""
    revoked = await issuer.revoke_all(auth.user_id)
    return SSOLogoutResponse(revoked_sessions=revoked)


# ── Administration ───────────────────────────────────────────

@router.get("", response_model=list[TenantRead])
async def list_tenants(_auth: Auth, directory: Directory) -> list[TenantRead]:
    tenants = await directory.list_active()
    return [TenantRead.model_validate(t) for t in tenants]


@router.get("/{tenant_id}", response_model=TenantRead)
async def get_tenant(tenant_id: str, directory: Directory) -> TenantRead:
    tenant = await directory.get_by_id(tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return TenantRead.model_validate(tenant)


@router.patch("/{tenant_id}", response_model=TenantDetail)
async def update_tenant(
    tenant_id: str, body: TenantUpdateRequest, auth: Auth, directory: Directory
) -> TenantDetail:
    tenant = await directory.update(
        _ensure_member(auth, tenant_id),
        name=body.name,
        allowed_origins=body.allowed_origins,
    )
    return TenantDetail.model_validate(tenant)


@router.post("/{tenant_id}/suspend", response_model=TenantDetail)
async def suspend_tenant(tenant_id: str, auth: Auth, directory: Directory) -> TenantDetail:
    tenant = await directory.set_status(_ensure_member(auth, tenant_id), TenantStatus.SUSPENDED)
    return TenantDetail.model_validate(tenant)


@router.post("/{tenant_id}/activate", response_model=TenantDetail)
async def activate_tenant(tenant_id: str, auth: Auth, directory: Directory) -> TenantDetail:
    tenant = await directory.set_status(_ensure_member(auth, tenant_id), TenantStatus.VERIFIED)
    return TenantDetail.model_validate(tenant)
