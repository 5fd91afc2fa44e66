"""Auth routes - register, login, logout, current identity, org switch.

POST /auth/register - Creates user + organization + owner membership, starts a session.
POST /auth/login    - Verifies password, starts a session in the preferred organization.
POST /auth/logout   - Revokes the cookie's session (if any) and clears the cookie.
GET  /auth/me       - Current user, memberships and active organization.
POST /auth/switch   - Moves the session to another organization the user belongs to.
GET  /auth/{provider}/init|callback - OAuth placeholders.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.engine import get_db
from app.exceptions import (
    AppError,
    Conflict,
    Forbidden,
    InternalError,
    InvalidCredentials,
    ValidationFailed,
)
from app.middleware.auth import AuthContext, require_auth
from app.providers.registry import get_provider
from app.services import sessions as session_service
from app.services.auth import (
    AuthenticatedUser,
    OrganizationMembership,
    authenticate_user,
    choose_active_organization,
    get_membership,
    list_memberships,
    register_user,
)
from app.utils.cookies import clear_session_cookie, set_session_cookie

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Pydantic schemas ──────────────────────────


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)
    organization_name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class SwitchOrganizationRequest(BaseModel):
    organization_id: uuid.UUID


class IdentityResponse(BaseModel):
    success: bool = True
    user: AuthenticatedUser
    active_organization_id: Optional[uuid.UUID]
    memberships: list[OrganizationMembership]


class SwitchResponse(BaseModel):
    success: bool = True
    active_organization_id: uuid.UUID
    memberships: list[OrganizationMembership]


# ── Helpers ───────────────────────────────────


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


async def _start_session(
    db: AsyncSession,
    request: Request,
    response: Response,
    user: AuthenticatedUser,
    active_organization_id: Optional[uuid.UUID],
):
    token, session = await session_service.create_session(
        db,
        user_id=user.id,
        active_organization_id=active_organization_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )
    set_session_cookie(response, request, token, session.expires_at)
    return session


# ── Routes ────────────────────────────────────


@router.post("/register", response_model=IdentityResponse)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Create an account with its own organization and sign it in."""
    try:
        user, membership = await register_user(
            db,
            email=body.email,
            password=body.password,
            name=body.name,
            organization_name=body.organization_name,
        )
        session = await _start_session(db, request, response, user, membership.organization_id)
    except Conflict:
        logger.warning("Registration conflict for %s", body.email)
        raise
    except AppError:
        raise
    except Exception:
        logger.exception("Registration failed for %s", body.email)
        raise InternalError("Registration failed")

    logger.info("User %s registered with organization %s", user.id, membership.organization_id)
    return IdentityResponse(
        user=user,
        active_organization_id=session.active_organization_id or membership.organization_id,
        memberships=[membership],
    )


@router.post("/login", response_model=IdentityResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Verify a password and start a session."""
    try:
        user, memberships = await authenticate_user(db, email=body.email, password=body.password)
    except InvalidCredentials:
        logger.warning("Invalid login attempt for %s", body.email)
        raise
    except AppError:
        raise
    except Exception:
        logger.exception("Login failed for %s", body.email)
        raise InternalError("Login failed")

    if not memberships:
        raise Forbidden("User has no organization memberships")

    active_org = choose_active_organization(user, memberships)
    session = await _start_session(db, request, response, user, active_org)

    logger.info("User %s logged in, active organization %s", user.id, active_org)
    return IdentityResponse(
        user=user,
        active_organization_id=session.active_organization_id or active_org,
        memberships=memberships,
    )


@router.post("/logout")
async def logout(request: Request, db: AsyncSession = Depends(get_db)):
    """Revoke the current session. Safe to call without one."""
    token = request.cookies.get(get_settings().session_cookie_name)
    if token:
        await session_service.revoke_by_token(db, token)

    auth = getattr(request.state, "auth", None)
    if auth is not None:
        logger.info("User %s logged out", auth.user.id)

    response = JSONResponse({"success": True})
    clear_session_cookie(response)
    return response


@router.get("/me", response_model=IdentityResponse)
async def me(auth: AuthContext = Depends(require_auth)):
    return IdentityResponse(
        user=auth.user,
        active_organization_id=auth.active_organization_id,
        memberships=auth.memberships,
    )


@router.post("/switch", response_model=SwitchResponse)
async def switch_organization(
    body: SwitchOrganizationRequest,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    """Make another of the caller's organizations the session's active one."""
    membership = await get_membership(db, auth.user.id, body.organization_id)
    if membership is None:
        raise Forbidden("Membership not found")

    await session_service.set_active_organization(db, auth.session.id, body.organization_id)

    return SwitchResponse(
        active_organization_id=body.organization_id,
        memberships=await list_memberships(db, auth.user.id),
    )


def _unconfigured_provider(provider: str, message: str) -> JSONResponse:
    oauth_provider = get_provider(provider)
    if oauth_provider is None:
        raise ValidationFailed("Provider not supported")
    return JSONResponse(
        {"success": False, "error": message.format(name=oauth_provider.name.capitalize())},
        status_code=501,
    )


@router.get("/{provider}/init")
async def oauth_init(provider: str):
    return _unconfigured_provider(provider, "{name} OAuth is not configured yet")


@router.get("/{provider}/callback")
async def oauth_callback(provider: str):
    return _unconfigured_provider(provider, "{name} OAuth callback not implemented")
