"""Organization endpoints.

The caller's capabilities in an org are resolved per request by the
services, never from the token, so a role change takes effect as soon
as the permission cache entry is invalidated.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from leadcrm.api.dependencies import (
    PermissionsDep,
    PrincipalDep,
    get_membership_service,
)
from leadcrm.models.organization import Organization
from leadcrm.services.membership_service import MembershipService
from leadcrm.services.roles import Capabilities, assignable_roles

router = APIRouter(prefix="/v1/orgs", tags=["orgs"])

MembershipDep = Annotated[MembershipService, Depends(get_membership_service)]


# --- Pydantic schemas ---


class OrgCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class OrgRenameIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class OrgOut(BaseModel):
    id: str
    name: str
    owner_id: str
    created_at: str


class PermissionsOut(BaseModel):
    role: str | None
    is_org_creator: bool
    capabilities: dict[str, bool]
    assignable_roles: list[str]


class OrgDetailOut(OrgOut):
    permissions: PermissionsOut


def _org_out(org: Organization) -> OrgOut:
    return OrgOut(
        id=str(org.id),
        name=org.name,
        owner_id=org.owner_id,
        created_at=org.created_at.isoformat(),
    )


def _permissions_out(caps: Capabilities) -> PermissionsOut:
    flags = {
        k: v for k, v in caps.to_dict().items() if k.startswith("can_")
    }
    return PermissionsOut(
        role=caps.role,
        is_org_creator=caps.is_org_creator,
        capabilities=flags,
        assignable_roles=[
            r.value for r in assignable_roles(caps.role, caps.is_org_creator)
        ],
    )


# --- Endpoints ---


@router.post("", response_model=OrgOut, status_code=status.HTTP_201_CREATED)
async def create_org(
    body: OrgCreateIn,
    principal: PrincipalDep,
    service: MembershipDep,
) -> OrgOut:
    """Create a new organization. The creator becomes its owner."""
    org = await service.create_organization(principal, body.name)
    return _org_out(org)


@router.get("", response_model=list[OrgOut])
async def list_orgs(principal: PrincipalDep, service: MembershipDep) -> list[OrgOut]:
    return [_org_out(o) for o in await service.list_organizations(principal)]


@router.get("/{org_id}", response_model=OrgDetailOut)
async def get_org(
    org_id: UUID,
    principal: PrincipalDep,
    service: MembershipDep,
) -> OrgDetailOut:
    """Org details plus the caller's own permissions. Any member can view."""
    org, caps = await service.get_organization(principal, org_id)
    return OrgDetailOut(
        **_org_out(org).model_dump(), permissions=_permissions_out(caps)
    )


@router.patch("/{org_id}", response_model=OrgOut)
async def rename_org(
    org_id: UUID,
    body: OrgRenameIn,
    principal: PrincipalDep,
    service: MembershipDep,
) -> OrgOut:
    org = await service.rename_organization(principal, org_id, body.name)
    return _org_out(org)


@router.get("/{org_id}/permissions", response_model=PermissionsOut)
async def my_permissions(
    org_id: UUID,
    principal: PrincipalDep,
    permissions: PermissionsDep,
) -> PermissionsOut:
    """The caller's capabilities. Non-members get all-false, not a 403."""
    caps = await permissions.capabilities(principal, org_id)
    return _permissions_out(caps)
