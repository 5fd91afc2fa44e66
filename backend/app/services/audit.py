"""Append-only audit trail for account and membership changes.

Entries are added to the caller's session, so they commit or roll back
together with the change they describe.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AuditLog

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = frozenset(
    {
        "user.registered",
        "organization.created",
        "member.added",
        "member.removed",
    }
)


async def write_audit(
    db: AsyncSession,
    *,
    action: str,
    org_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLog:
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    entry = AuditLog(
        id=uuid.uuid4(),
        organization_id=org_id,
        user_id=user_id,
        action=action,
        metadata_=metadata,
    )
    db.add(entry)
    logger.debug("Audit %s org=%s user=%s", action, org_id, user_id)
    return entry
