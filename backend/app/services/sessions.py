"""Session lifecycle: issue, look up, revoke, touch, switch organization.

A session is Active until it is revoked (revoked_at set) or its expires_at
passes. Expiry is enforced at lookup time; nothing sweeps old rows.
Only the HMAC-SHA256 of a token is stored, keyed with ``session_secret``.
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.models import UserSession, utcnow

TOKEN_BYTES = 48


def generate_token() -> str:
    """Return a fresh 96-character hex token from the OS CSPRNG."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str, secret: Optional[str] = None) -> str:
    """Keyed digest used both to store and to look up a session."""
    key = (secret if secret is not None else get_settings().session_secret).encode("utf-8")
    return hmac.new(key, token.encode("utf-8"), hashlib.sha256).hexdigest()


async def create_session(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    active_organization_id: Optional[uuid.UUID] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    ttl_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[str, UserSession]:
    """Persist a new session and return ``(raw_token, session)``.

    The raw token is not stored anywhere; the caller must hand it to the
    client immediately.
    """
    now = now or utcnow()
    ttl = ttl_days if ttl_days is not None else get_settings().session_ttl_days
    token = generate_token()

    session = UserSession(
        id=uuid.uuid4(),
        user_id=user_id,
        active_organization_id=active_organization_id,
        token_hash=hash_token(token),
        user_agent=user_agent,
        ip_address=ip_address,
        created_at=now,
        expires_at=now + timedelta(days=ttl),
        revoked_at=None,
        last_seen_at=None,
    )
    db.add(session)
    await db.flush()
    return token, session


async def get_session_by_token(
    db: AsyncSession, token: str, *, now: Optional[datetime] = None
) -> Optional[UserSession]:
    """Return the active session for ``token``.

    Unknown, revoked and expired tokens all yield None.
    """
    now = now or utcnow()
    result = await db.execute(
        select(UserSession)
        .where(
            UserSession.token_hash == hash_token(token),
            UserSession.revoked_at.is_(None),
            UserSession.expires_at > now,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def revoke_by_token(db: AsyncSession, token: str) -> None:
    """Revoke the session for ``token``. No-op if unknown or already revoked."""
    await db.execute(
        update(UserSession)
        .where(
            UserSession.token_hash == hash_token(token),
            UserSession.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
    )


async def revoke_by_id(db: AsyncSession, session_id: uuid.UUID) -> None:
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session_id, UserSession.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    )


async def touch(db: AsyncSession, session_id: uuid.UUID) -> None:
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session_id)
        .values(last_seen_at=utcnow())
    )


async def set_active_organization(
    db: AsyncSession, session_id: uuid.UUID, organization_id: uuid.UUID
) -> None:
    """Point the session at another organization.

    Membership is not checked here; callers must verify it first.
    """
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session_id)
        .values(active_organization_id=organization_id, last_seen_at=utcnow())
    )
