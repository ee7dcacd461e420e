"""Membership and invitation endpoints.

Invite and resend responses carry the raw invitation token.  It is
shown exactly once; the server keeps only its hash, so a lost token is
replaced by resending, never by looking it up.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from leadcrm.api.dependencies import PrincipalDep, get_membership_service
from leadcrm.models.organization import Membership
from leadcrm.services.membership_service import IssuedInvite, MembershipService

router = APIRouter(tags=["members"])

MembershipDep = Annotated[MembershipService, Depends(get_membership_service)]


# --- Pydantic schemas ---


class MemberOut(BaseModel):
    id: str
    org_id: str
    user_id: str | None
    email: str | None
    role: str
    status: str
    invited_at: str | None = None
    invited_expires_at: str | None = None


class InviteIn(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: str = "member"


class InviteOut(BaseModel):
    membership: MemberOut
    token: str


class UpdateRoleIn(BaseModel):
    role: str


class ClaimIn(BaseModel):
    token: str = Field(min_length=1)


class ClaimOut(BaseModel):
    org_id: str
    membership: MemberOut


def _member_out(m: Membership) -> MemberOut:
    return MemberOut(
        id=str(m.id),
        org_id=str(m.org_id),
        user_id=m.user_id,
        email=m.email,
        role=m.role,
        status=m.status,
        invited_at=m.invited_at.isoformat() if m.invited_at else None,
        invited_expires_at=(
            m.invited_expires_at.isoformat() if m.invited_expires_at else None
        ),
    )


def _invite_out(issued: IssuedInvite) -> InviteOut:
    return InviteOut(membership=_member_out(issued.membership), token=issued.token)


# --- Members ---


@router.get("/v1/orgs/{org_id}/members", response_model=list[MemberOut])
async def list_members(
    org_id: UUID, principal: PrincipalDep, service: MembershipDep
) -> list[MemberOut]:
    """Accepted members, then pending invitations."""
    return [_member_out(m) for m in await service.list_members(principal, org_id)]


@router.post(
    "/v1/orgs/{org_id}/members",
    response_model=InviteOut,
    status_code=status.HTTP_201_CREATED,
)
async def invite_member(
    org_id: UUID,
    body: InviteIn,
    principal: PrincipalDep,
    service: MembershipDep,
) -> InviteOut:
    """Invite an email address. Members only join by claiming the token."""
    issued = await service.invite(principal, org_id, body.email, body.role)
    return _invite_out(issued)


@router.patch("/v1/orgs/{org_id}/members/{membership_id}", response_model=MemberOut)
async def change_member_role(
    org_id: UUID,
    membership_id: UUID,
    body: UpdateRoleIn,
    principal: PrincipalDep,
    service: MembershipDep,
) -> MemberOut:
    updated = await service.change_role(principal, org_id, membership_id, body.role)
    return _member_out(updated)


@router.delete(
    "/v1/orgs/{org_id}/members/{membership_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_member(
    org_id: UUID,
    membership_id: UUID,
    principal: PrincipalDep,
    service: MembershipDep,
) -> None:
    await service.remove_member(principal, org_id, membership_id)


# --- Invitations ---


@router.post(
    "/v1/orgs/{org_id}/invites/{membership_id}/resend", response_model=InviteOut
)
async def resend_invite(
    org_id: UUID,
    membership_id: UUID,
    principal: PrincipalDep,
    service: MembershipDep,
) -> InviteOut:
    """Issue a fresh token and expiry. The previous token stops working."""
    issued = await service.resend(principal, org_id, membership_id)
    return _invite_out(issued)


@router.delete(
    "/v1/orgs/{org_id}/invites/{membership_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_invite(
    org_id: UUID,
    membership_id: UUID,
    principal: PrincipalDep,
    service: MembershipDep,
) -> None:
    await service.revoke(principal, org_id, membership_id)


@router.post("/v1/invites/claim", response_model=ClaimOut)
async def claim_invite(
    body: ClaimIn, principal: PrincipalDep, service: MembershipDep
) -> ClaimOut:
    membership = await service.claim(principal, body.token)
    return ClaimOut(org_id=str(membership.org_id), membership=_member_out(membership))
