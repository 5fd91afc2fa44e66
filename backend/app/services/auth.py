"""Registration and login orchestration.

register_user creates Organization, User, Credential and an owner
Membership as one atomic unit. authenticate_user checks a password and
returns the user's memberships; it fails identically for an unknown email
and a wrong password.
"""

import logging
import uuid
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import (
    Credential,
    Membership,
    MemberRole,
    Organization,
    User,
)
from app.exceptions import Conflict, InvalidCredentials
from app.services.audit import write_audit
from app.services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class AuthenticatedUser(BaseModel):
    """Public view of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: str
    default_organization_id: Optional[uuid.UUID] = None


class OrganizationMembership(BaseModel):
    """A user's role in one organization."""

    organization_id: uuid.UUID
    organization_name: str
    role: MemberRole


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    organization_name: str,
) -> tuple[AuthenticatedUser, OrganizationMembership]:
    """Create a user with their own organization, as owner.

    Raises:
        Conflict: if the email is already registered.
    """
    email = normalize_email(email)

    existing = await db.execute(select(User.id).where(User.email == email).limit(1))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("User already exists")

    password_hash = await hash_password(password)

    try:
        async with db.begin_nested():
            organization = Organization(id=uuid.uuid4(), name=organization_name)
            db.add(organization)
            await db.flush()

            user = User(
                id=uuid.uuid4(),
                email=email,
                name=name,
                default_organization_id=organization.id,
            )
            db.add(user)
            await db.flush()

            db.add(Credential(user_id=user.id, password_hash=password_hash))
            db.add(
                Membership(
                    organization_id=organization.id,
                    user_id=user.id,
                    role=MemberRole.OWNER,
                )
            )
            await db.flush()

            await write_audit(
                db, action="user.registered", org_id=organization.id, user_id=user.id
            )
    except IntegrityError:
        # A concurrent registration won the unique email index.
        raise Conflict("User already exists") from None

    return (
        AuthenticatedUser.model_validate(user),
        OrganizationMembership(
            organization_id=organization.id,
            organization_name=organization.name,
            role=MemberRole.OWNER,
        ),
    )


async def authenticate_user(
    db: AsyncSession, *, email: str, password: str
) -> tuple[AuthenticatedUser, list[OrganizationMembership]]:
    """Verify credentials and return the user with all memberships.

    Raises:
        InvalidCredentials: for an unknown email or a wrong password alike.
    """
    result = await db.execute(
        select(User, Credential)
        .join(Credential, Credential.user_id == User.id)
        .where(User.email == normalize_email(email))
        .limit(1)
    )
    row = result.first()
    if row is None:
        raise InvalidCredentials()

    user, credential = row
    if not await verify_password(password, credential.password_hash):
        raise InvalidCredentials()

    memberships = await list_memberships(db, user.id)
    return AuthenticatedUser.model_validate(user), memberships


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> Optional[AuthenticatedUser]:
    user = await db.get(User, user_id)
    return AuthenticatedUser.model_validate(user) if user else None


async def get_membership(
    db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
) -> Optional[OrganizationMembership]:
    """Return the user's membership in the organization, or None."""
    result = await db.execute(
        select(Membership.organization_id, Organization.name, Membership.role)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(
            Membership.user_id == user_id,
            Membership.organization_id == organization_id,
        )
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    return OrganizationMembership(
        organization_id=row[0], organization_name=row[1], role=row[2]
    )


async def list_memberships(db: AsyncSession, user_id: uuid.UUID) -> list[OrganizationMembership]:
    result = await db.execute(
        select(Membership.organization_id, Organization.name, Membership.role)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(Membership.user_id == user_id)
        .order_by(Membership.created_at)
    )
    return [
        OrganizationMembership(organization_id=org_id, organization_name=name, role=role)
        for org_id, name, role in result.all()
    ]


def choose_active_organization(
    user: AuthenticatedUser, memberships: Sequence[OrganizationMembership]
) -> Optional[uuid.UUID]:
    """Pick the organization a fresh session starts in.

    Preference: the user's default (if still a member), then the first
    owned organization, then the first membership of any role.
    """
    member_of = {m.organization_id for m in memberships}
    if user.default_organization_id is not None and user.default_organization_id in member_of:
        return user.default_organization_id
    for membership in memberships:
        if membership.role == MemberRole.OWNER:
            return membership.organization_id
    return memberships[0].organization_id if memberships else None
