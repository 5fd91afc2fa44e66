"""Session authentication middleware.

Rules:
1. No session cookie → continue unauthenticated.
2. Cookie whose session is unknown, revoked or expired → continue unauthenticated.
3. Session whose user no longer exists → continue unauthenticated.
4. Otherwise attach an AuthContext (session, user, memberships) to
   request.state.auth and record last-seen before calling the handler.
5. Database failure while resolving the session → 500 error envelope.

Handlers that need an identity depend on require_auth, which turns a
missing context into a 401.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.config import get_settings
from app.db import engine as db_engine
from app.db.models import UserSession
from app.exceptions import InternalError, Unauthorized
from app.services import sessions as session_service
from app.services.auth import (
    AuthenticatedUser,
    OrganizationMembership,
    get_user_by_id,
    list_memberships,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Identity resolved from the session cookie."""

    session: UserSession
    user: AuthenticatedUser
    memberships: list[OrganizationMembership] = field(default_factory=list)

    @property
    def active_organization_id(self) -> Optional[uuid.UUID]:
        return self.session.active_organization_id or self.user.default_organization_id


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Resolve the session cookie into request.state.auth."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.auth = None

        token = request.cookies.get(get_settings().session_cookie_name)
        if token:
            try:
                context = await _resolve(token)
            except SQLAlchemyError:
                logger.exception("Session lookup failed")
                return InternalError().to_response()
            if context is not None:
                request.state.auth = context
                await _touch_best_effort(context.session.id)

        return await call_next(request)


async def _resolve(token: str) -> Optional[AuthContext]:
    async with db_engine.async_session_factory() as db:
        session = await session_service.get_session_by_token(db, token)
        if session is None:
            return None

        user = await get_user_by_id(db, session.user_id)
        if user is None:
            return None

        memberships = await list_memberships(db, user.id)
        return AuthContext(session=session, user=user, memberships=memberships)


async def _touch(session_id: uuid.UUID) -> None:
    async with db_engine.async_session_factory() as db:
        await session_service.touch(db, session_id)
        await db.commit()


async def _touch_best_effort(session_id: uuid.UUID) -> None:
    """Update last_seen_at within a short deadline. Never fails the request."""
    timeout = get_settings().session_touch_timeout_seconds
    try:
        await asyncio.wait_for(_touch(session_id), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Session touch timed out after %.2fs for %s", timeout, session_id)
    except SQLAlchemyError:
        logger.warning("Failed to update session last_seen_at for %s", session_id, exc_info=True)


def get_auth(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, "auth", None)


def require_auth(request: Request) -> AuthContext:
    """FastAPI dependency: the caller's AuthContext, or 401."""
    context = get_auth(request)
    if context is None:
        raise Unauthorized()
    return context
