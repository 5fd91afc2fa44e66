"""Organization membership rules.

Roles are a closed set compared by explicit match: owner and admin may
manage membership, member may not. Every organization keeps at least one
owner; remove_member refuses to delete the last one.
"""

import logging
import uuid
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Membership, MemberRole, Organization, User
from app.exceptions import Forbidden, LastOwnerError, NotFound
from app.services.audit import write_audit
from app.services.auth import OrganizationMembership, get_membership, normalize_email

logger = logging.getLogger(__name__)

MANAGER_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


class MemberSummary(BaseModel):
    """A member row joined with basic user identity."""

    user_id: uuid.UUID
    email: str
    name: str
    role: MemberRole


def can_manage(role: MemberRole) -> bool:
    if role == MemberRole.OWNER:
        return True
    if role == MemberRole.ADMIN:
        return True
    if role == MemberRole.MEMBER:
        return False
    raise ValueError(f"Unknown role: {role!r}")


async def ensure_can_manage(
    db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
) -> OrganizationMembership:
    """Return the caller's membership if they may manage the organization.

    Raises:
        Forbidden: if the user is not a member, or only a plain member.
    """
    membership = await get_membership(db, user_id, organization_id)
    if membership is None or not can_manage(membership.role):
        raise Forbidden("Not authorized to manage organization")
    return membership


async def create_organization_for_user(
    db: AsyncSession, user_id: uuid.UUID, name: str
) -> Organization:
    """Create an organization owned by ``user_id`` and make it their default."""
    async with db.begin_nested():
        organization = Organization(id=uuid.uuid4(), name=name)
        db.add(organization)
        await db.flush()

        db.add(
            Membership(
                organization_id=organization.id,
                user_id=user_id,
                role=MemberRole.OWNER,
            )
        )
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(default_organization_id=organization.id)
        )
        await db.flush()

        await write_audit(
            db, action="organization.created", org_id=organization.id, user_id=user_id
        )

    logger.info("Organization %s created for user %s", organization.id, user_id)
    return organization


def _insert_ignoring_duplicates(dialect_name: str):
    if dialect_name == "postgresql":
        return postgresql.insert(Membership)
    if dialect_name == "sqlite":
        return sqlite.insert(Membership)
    raise NotImplementedError(f"Unsupported dialect for membership upsert: {dialect_name}")


async def add_member_by_email(
    db: AsyncSession,
    *,
    organization_id: uuid.UUID,
    email: str,
    role: MemberRole,
    acting_user_id: Optional[uuid.UUID] = None,
) -> bool:
    """Add an already-registered user to the organization.

    Adding an existing member is a no-op. Returns True when a row was
    inserted.

    Raises:
        NotFound: if no user has this email.
    """
    result = await db.execute(
        select(User.id).where(User.email == normalize_email(email)).limit(1)
    )
    user_id = result.scalar_one_or_none()
    if user_id is None:
        raise NotFound("User not found")

    stmt = (
        _insert_ignoring_duplicates(db.get_bind().dialect.name)
        .values(organization_id=organization_id, user_id=user_id, role=role)
        .on_conflict_do_nothing(index_elements=["organization_id", "user_id"])
    )
    inserted = (await db.execute(stmt)).rowcount > 0

    if inserted:
        await write_audit(
            db,
            action="member.added",
            org_id=organization_id,
            user_id=acting_user_id,
            metadata={"member_user_id": str(user_id), "role": role.value},
        )
        logger.info("User %s added to organization %s as %s", user_id, organization_id, role.value)
    return inserted


async def remove_member(
    db: AsyncSession,
    *,
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    acting_user_id: Optional[uuid.UUID] = None,
) -> None:
    """Delete a membership unless it is the organization's only owner.

    Raises:
        LastOwnerError: if ``user_id`` is the sole owner. Nothing is deleted.
    """
    # Lock the organization row so concurrent removals serialise on PostgreSQL.
    await db.execute(
        select(Organization.id).where(Organization.id == organization_id).with_for_update()
    )

    result = await db.execute(
        select(Membership.user_id, Membership.role).where(
            Membership.organization_id == organization_id
        )
    )
    owners = {uid for uid, role in result.all() if role == MemberRole.OWNER}

    if user_id in owners and len(owners) <= 1:
        raise LastOwnerError()

    deleted = await db.execute(
        delete(Membership).where(
            Membership.organization_id == organization_id,
            Membership.user_id == user_id,
        )
    )
    if deleted.rowcount:
        await write_audit(
            db,
            action="member.removed",
            org_id=organization_id,
            user_id=acting_user_id,
            metadata={"member_user_id": str(user_id)},
        )
        logger.info("User %s removed from organization %s", user_id, organization_id)


async def list_organization_members(
    db: AsyncSession, organization_id: uuid.UUID
) -> list[MemberSummary]:
    """List members with their identity. Callers gate access beforehand."""
    result = await db.execute(
        select(User.id, User.email, User.name, Membership.role)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.created_at, User.email)
    )
    return [
        MemberSummary(user_id=uid, email=email, name=name, role=role)
        for uid, email, name, role in result.all()
    ]
