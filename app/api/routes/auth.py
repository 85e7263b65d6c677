"""Authentication endpoints — local accounts, login and session rotation."""

from dataclasses import asdict

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.api.deps import Auth, Directory, Issuer, Messaging, Session
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from app.core.security import hash_password, verify_password
from app.core.tenancy import tenant_scope
from app.models.refresh_token import SessionRead
from app.models.tenant import Tenant, TenantRead, TenantStatus
from app.models.user import User, UserCreate, UserRead
from app.services.session_issuer import TokenPair

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Schemas ──────────────────────────────────────────────────

class RegisterRequest(UserCreate):
    email: EmailStr


class LoginRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    identifier: str = Field(min_length=1, max_length=320, description="Email or username")
    password: str
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    access_token_expires_in: int
    refresh_token_expires_in: int
    user: UserRead


class MeResponse(BaseModel):
    user: UserRead
    tenant: TenantRead


def _token_response(pair: TokenPair, user: User) -> TokenResponse:
    return TokenResponse(**asdict(pair), user=UserRead.model_validate(user))


def _is_usable(tenant: Tenant | None) -> bool:
    return tenant is not None and tenant.is_active and tenant.status == TenantStatus.VERIFIED


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


# ── Routes ───────────────────────────────────────────────────

@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    session: Session,
    directory: Directory,
    messaging: Messaging,
) -> UserRead:
    """Create a local (password) account in a verified tenant."""
    tenant = await directory.get_by_id(body.tenant_id)
    if not _is_usable(tenant):
        raise NotFoundError("Tenant not found")

    with tenant_scope(tenant.id):
        user = User(
            email=body.email.lower(),
            username=body.username.strip(),
            display_name=body.display_name or body.username.strip(),
            password_hash=hash_password(body.password),
        )
        session.add(user)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError("Email or username already taken") from exc
        await session.refresh(user)
        await messaging.join_default_channels(user)

    return UserRead.model_validate(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    session: Session,
    directory: Directory,
    issuer: Issuer,
) -> TokenResponse:
    """Authenticate with email or username + password, receive a token pair."""
    tenant = await directory.get_by_id(body.tenant_id)
    if tenant is None:
        raise UnauthorizedError("Invalid credentials")

    identifier = body.identifier.strip()
    with tenant_scope(tenant.id):
        stmt = select(User).where(
            or_(User.email == identifier.lower(), User.username == identifier)
        )
        result = await session.execute(stmt)
        user = result.scalars().first()

        # Federated users have no password hash and always fail here
        if user is None or not verify_password(body.password, user.password_hash):
            raise UnauthorizedError("Invalid credentials")
        if not user.is_active:
            raise ForbiddenError("Account is disabled")
        if not _is_usable(tenant):
            raise ForbiddenError("Tenant is disabled")

        ip, user_agent = _client_meta(request)
        pair = await issuer.generate_token_pair(
            user,
            remember_me=body.remember_me,
            device_info=user_agent or "Unknown Device",
            ip_address=ip,
            user_agent=user_agent,
        )

    return _token_response(pair, user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, request: Request, issuer: Issuer) -> TokenResponse:
    """Rotate a refresh token. The presented token is consumed."""
    ip, user_agent = _client_meta(request)
    pair, user = await issuer.refresh(body.refresh_token, ip_address=ip, user_agent=user_agent)
    return _token_response(pair, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(body: RefreshRequest, issuer: Issuer) -> Response:
    await issuer.revoke(body.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=MeResponse)
async def get_me(auth: Auth, directory: Directory) -> MeResponse:
    """Return the current authenticated user and their tenant."""
    tenant = await directory.get_by_id(auth.tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return MeResponse(
        user=UserRead.model_validate(auth.user),
        tenant=TenantRead.model_validate(tenant),
    )


@router.get("/sessions", response_model=list[SessionRead])
async def list_sessions(auth: Auth, issuer: Issuer) -> list[SessionRead]:
    sessions = await issuer.list_active_sessions(auth.user_id)
    return [SessionRead.model_validate(s) for s in sessions]
