"""Organization routes - creation and membership management.

All endpoints require a session. Listing members requires membership;
adding or removing members requires the owner or admin role.
"""

import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.engine import get_db
from app.db.models import MemberRole
from app.exceptions import Forbidden
from app.middleware.auth import AuthContext, require_auth
from app.services import sessions as session_service
from app.services.auth import OrganizationMembership, get_membership, list_memberships
from app.services.organizations import (
    MemberSummary,
    add_member_by_email,
    create_organization_for_user,
    ensure_can_manage,
    list_organization_members,
    remove_member,
)

router = APIRouter()


# ── Pydantic schemas ──────────────────────────


class CreateOrganizationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class AddMemberRequest(BaseModel):
    email: EmailStr
    role: Literal["admin", "member"] = "member"


class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    plan: str
    created_at: datetime


class MembershipsResponse(BaseModel):
    success: bool = True
    memberships: list[OrganizationMembership]


class CreateOrganizationResponse(BaseModel):
    success: bool = True
    organization: OrgResponse
    memberships: list[OrganizationMembership]
    active_organization_id: uuid.UUID


class MembersResponse(BaseModel):
    success: bool = True
    members: list[MemberSummary]


# ── Routes ────────────────────────────────────


@router.get("", response_model=MembershipsResponse)
async def list_my_organizations(
    auth: AuthContext = Depends(require_auth), db: AsyncSession = Depends(get_db)
):
    return MembershipsResponse(memberships=await list_memberships(db, auth.user.id))


@router.post("", response_model=CreateOrganizationResponse)
async def create_organization(
    body: CreateOrganizationRequest,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    """Create an organization owned by the caller and switch the session to it."""
    org = await create_organization_for_user(db, auth.user.id, body.name)
    await session_service.set_active_organization(db, auth.session.id, org.id)

    return CreateOrganizationResponse(
        organization=OrgResponse(id=org.id, name=org.name, plan=org.plan, created_at=org.created_at),
        memberships=await list_memberships(db, auth.user.id),
        active_organization_id=org.id,
    )


@router.get("/{organization_id}/members", response_model=MembersResponse)
async def list_members(
    organization_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if await get_membership(db, auth.user.id, organization_id) is None:
        raise Forbidden("Not a member")
    return MembersResponse(members=await list_organization_members(db, organization_id))


@router.post("/{organization_id}/members", response_model=MembersResponse)
async def add_member(
    organization_id: uuid.UUID,
    body: AddMemberRequest,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    """Add an existing user by email. Requires owner or admin."""
    await ensure_can_manage(db, auth.user.id, organization_id)
    await add_member_by_email(
        db,
        organization_id=organization_id,
        email=body.email,
        role=MemberRole(body.role),
        acting_user_id=auth.user.id,
    )
    return MembersResponse(members=await list_organization_members(db, organization_id))


@router.delete("/{organization_id}/members/{member_user_id}", response_model=MembersResponse)
async def delete_member(
    organization_id: uuid.UUID,
    member_user_id: uuid.UUID,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    """Remove a member. Requires owner or admin. The last owner cannot be removed."""
    await ensure_can_manage(db, auth.user.id, organization_id)
    await remove_member(
        db,
        organization_id=organization_id,
        user_id=member_user_id,
        acting_user_id=auth.user.id,
    )
    return MembersResponse(members=await list_organization_members(db, organization_id))
