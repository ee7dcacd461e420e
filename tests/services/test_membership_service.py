from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest
from prometheus_client import REGISTRY

from leadcrm.models.organization import Membership, MembershipStatus, Role, utcnow
from leadcrm.services.errors import (
    AuthorizationDenied,
    ConflictOnClaim,
    InvariantViolation,
    NotFound,
)
from leadcrm.services.membership_service import MembershipService, hash_invite_token
from tests.conftest import Services, principal, seed_member


def _sample(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels)
    return value if value is not None else 0.0


def _membership_of(svc: Services, org_id, user_id) -> Membership:
    m = asyncio.run(svc.store.memberships.get_accepted(org_id, user_id))
    assert m is not None
    return m


# ---- organizations ----


def test_create_organization_makes_creator_owner(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "  Acme  "))

    assert org.name == "Acme"
    assert org.owner_id == creator.user_id
    m = _membership_of(services, org.id, creator.user_id)
    assert m.role == "owner"
    assert m.is_accepted


def test_create_organization_rejects_blank_name(services: Services) -> None:
    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.create_organization(principal(), "   "))
    assert exc_info.value.reason == "invalid_input"


def test_rename_requires_manage_organization(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    admin = seed_member(services.store, org, Role.ADMIN)

    with pytest.raises(AuthorizationDenied):
        asyncio.run(services.members.rename_organization(admin, org.id, "Evil"))
    renamed = asyncio.run(services.members.rename_organization(creator, org.id, "Acme 2"))
    assert renamed.name == "Acme 2"


def test_list_organizations_only_includes_accepted(services: Services) -> None:
    alice = principal()
    org_a = asyncio.run(services.members.create_organization(alice, "A"))
    org_b = asyncio.run(services.members.create_organization(principal(), "B"))
    bob = principal()
    seed_member(services.store, org_b, Role.VIEWER)
    asyncio.run(services.members.invite(alice, org_a.id, bob.email, "member"))

    assert [o.id for o in asyncio.run(services.members.list_organizations(alice))] == [
        org_a.id
    ]
    assert asyncio.run(services.members.list_organizations(bob)) == []


# ---- invitations ----


def test_invite_stores_only_token_hash(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    before = _sample("invites_total", {"outcome": "issued"})

    issued = asyncio.run(
        services.members.invite(owner, org.id, "  New.Person@Example.COM ", "member")
    )

    m = issued.membership
    assert m.email == "new.person@example.com"
    assert m.status == "invited"
    assert m.user_id is None
    assert m.invited_token_hash == hash_invite_token(issued.token)
    assert issued.token not in (m.invited_token_hash or "")
    assert m.invited_expires_at - m.invited_at == timedelta(days=7)
    assert _sample("invites_total", {"outcome": "issued"}) - before == 1


@pytest.mark.parametrize(
    "setup,reason",
    [("accepted", "already_member"), ("pending", "pending_invitation")],
)
def test_invite_rejects_existing_email(
    services: Services, setup: str, reason: str
) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    if setup == "accepted":
        target = seed_member(services.store, org, Role.MEMBER).email
    else:
        target = "pending@example.com"
        asyncio.run(services.members.invite(owner, org.id, target, "viewer"))

    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.invite(owner, org.id, target.upper(), "viewer"))
    assert exc_info.value.reason == reason


@pytest.mark.parametrize("status", [MembershipStatus.LEFT, MembershipStatus.SUSPENDED])
def test_former_member_can_be_invited_again(
    services: Services, status: MembershipStatus
) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    former = principal()
    stale = replace(
        Membership.accepted(
            org_id=org.id, user_id=former.user_id, email=former.email, role=Role.ADMIN
        ),
        status=status.value,
    )
    asyncio.run(services.store.memberships.add(stale))

    issued = asyncio.run(
        services.members.invite(owner, org.id, former.email, "viewer")
    )

    assert issued.membership.is_pending
    rows = [
        m
        for m in asyncio.run(services.store.memberships.list_by_org(org.id))
        if m.email == former.email
    ]
    assert [m.id for m in rows] == [issued.membership.id]


def test_invite_rejects_bad_email_and_unknown_role(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    with pytest.raises(InvariantViolation):
        asyncio.run(services.members.invite(owner, org.id, "not-an-email", "member"))
    with pytest.raises(InvariantViolation):
        asyncio.run(services.members.invite(owner, org.id, "x@example.com", "boss"))


def test_member_cannot_invite(services: Services) -> None:
    org = asyncio.run(services.members.create_organization(principal(), "Acme"))
    member = seed_member(services.store, org, Role.MEMBER)
    with pytest.raises(AuthorizationDenied) as exc_info:
        asyncio.run(services.members.invite(member, org.id, "x@example.com", "viewer"))
    assert exc_info.value.reason == "missing_capability"


def test_claim_binds_membership_and_grants_capabilities(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    invitee = principal(email="Invitee@Example.com")
    issued = asyncio.run(
        services.members.invite(owner, org.id, "invitee@example.com", "member")
    )
    # Cached as a non-member before the claim.
    assert not asyncio.run(services.permissions.capabilities(invitee, org.id)).can_view_leads

    claimed = asyncio.run(services.members.claim(invitee, issued.token))

    assert claimed.status == "accepted"
    assert claimed.user_id == invitee.user_id
    caps = asyncio.run(services.permissions.capabilities(invitee, org.id))
    assert caps.can_create_leads is True


def test_concurrent_claims_have_exactly_one_winner(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    invitee = principal()
    issued = asyncio.run(services.members.invite(owner, org.id, invitee.email, "viewer"))

    async def race() -> list:
        return await asyncio.gather(
            *(services.members.claim(invitee, issued.token) for _ in range(10)),
            return_exceptions=True,
        )

    results = asyncio.run(race())
    winners = [r for r in results if isinstance(r, Membership)]
    losers = [r for r in results if isinstance(r, ConflictOnClaim)]
    assert len(winners) == 1
    assert len(losers) == 9
    assert {e.reason for e in losers} == {"already_claimed"}


def test_claim_rejects_wrong_email(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    issued = asyncio.run(
        services.members.invite(owner, org.id, "right@example.com", "viewer")
    )
    with pytest.raises(ConflictOnClaim) as exc_info:
        asyncio.run(services.members.claim(principal(email="wrong@example.com"), issued.token))
    assert exc_info.value.reason == "email_mismatch"


def test_claim_rejects_unknown_token(services: Services) -> None:
    with pytest.raises(ConflictOnClaim) as exc_info:
        asyncio.run(services.members.claim(principal(), "no-such-token"))
    assert exc_info.value.reason == "invalid_token"


def test_claim_rejects_expired_invitation(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    invitee = principal()
    issued = asyncio.run(services.members.invite(owner, org.id, invitee.email, "viewer"))

    later = MembershipService(
        services.store,
        services.permissions,
        clock=lambda: utcnow() + timedelta(days=8),
    )
    before = _sample("invites_total", {"outcome": "expired"})
    with pytest.raises(ConflictOnClaim) as exc_info:
        asyncio.run(later.claim(invitee, issued.token))
    assert exc_info.value.reason == "expired"
    assert _sample("invites_total", {"outcome": "expired"}) - before == 1


def test_resend_rotates_token(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    invitee = principal()
    first = asyncio.run(services.members.invite(owner, org.id, invitee.email, "viewer"))
    second = asyncio.run(services.members.resend(owner, org.id, first.membership.id))

    assert second.token != first.token
    assert second.membership.id == first.membership.id
    with pytest.raises(ConflictOnClaim):
        asyncio.run(services.members.claim(invitee, first.token))
    assert asyncio.run(services.members.claim(invitee, second.token)).is_accepted


def test_resend_and_revoke_refuse_accepted_memberships(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    member = seed_member(services.store, org, Role.MEMBER)
    m = _membership_of(services, org.id, member.user_id)

    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.resend(owner, org.id, m.id))
    assert exc_info.value.reason == "not_pending"
    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.revoke(owner, org.id, m.id))
    assert "Use remove member instead" in exc_info.value.message


def test_revoke_deletes_pending_invitation(services: Services) -> None:
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    issued = asyncio.run(services.members.invite(owner, org.id, "x@example.com", "viewer"))

    asyncio.run(services.members.revoke(owner, org.id, issued.membership.id))

    assert asyncio.run(services.store.memberships.get(issued.membership.id)) is None
    with pytest.raises(ConflictOnClaim) as exc_info:
        asyncio.run(services.members.claim(principal(email="x@example.com"), issued.token))
    assert exc_info.value.reason == "invalid_token"


# ---- role changes and removal ----


def test_demoting_one_of_two_owners_is_allowed(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    owner = seed_member(services.store, org, Role.OWNER)
    owner_m = _membership_of(services, org.id, owner.user_id)

    updated = asyncio.run(services.members.change_role(creator, org.id, owner_m.id, "admin"))
    assert updated.role == "admin"


def test_cannot_demote_or_remove_the_only_owner(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    # The creator stepped down to admin earlier; one owner remains.
    creator_m = _membership_of(services, org.id, creator.user_id)
    asyncio.run(services.store.memberships.update_role(creator_m.id, "admin"))
    owner = seed_member(services.store, org, Role.OWNER)
    owner_m = _membership_of(services, org.id, owner.user_id)

    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.change_role(creator, org.id, owner_m.id, "admin"))
    assert exc_info.value.reason == "last_owner"
    assert exc_info.value.message == "Cannot demote the only owner of this organization"

    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(services.members.remove_member(creator, org.id, owner_m.id))
    assert exc_info.value.message == "Cannot remove the only owner of this organization"


def test_nobody_acts_on_themselves(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    own = _membership_of(services, org.id, creator.user_id)
    with pytest.raises(AuthorizationDenied) as exc_info:
        asyncio.run(services.members.remove_member(creator, org.id, own.id))
    assert exc_info.value.reason == "self_action"


def test_admin_promotion_scenario(services: Services) -> None:
    """Admins cannot touch owners or mint owners; the creator can."""
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    owner = seed_member(services.store, org, Role.OWNER)
    admin = seed_member(services.store, org, Role.ADMIN)
    owner_m = _membership_of(services, org.id, owner.user_id)

    with pytest.raises(AuthorizationDenied) as exc_info:
        asyncio.run(services.members.change_role(admin, org.id, owner_m.id, "admin"))
    assert exc_info.value.reason == "target_protected"

    with pytest.raises(AuthorizationDenied) as exc_info:
        asyncio.run(services.members.invite(admin, org.id, "new@example.com", "owner"))
    assert exc_info.value.reason == "role_not_assignable"

    updated = asyncio.run(services.members.change_role(creator, org.id, owner_m.id, "admin"))
    assert updated.role == "admin"


def test_role_change_invalidates_cached_capabilities(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    viewer = seed_member(services.store, org, Role.VIEWER)
    assert not asyncio.run(services.permissions.capabilities(viewer, org.id)).can_edit_leads

    m = _membership_of(services, org.id, viewer.user_id)
    asyncio.run(services.members.change_role(creator, org.id, m.id, "member"))

    assert asyncio.run(services.permissions.capabilities(viewer, org.id)).can_edit_leads


def test_removed_member_loses_access_immediately(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    member = seed_member(services.store, org, Role.MEMBER)
    assert asyncio.run(services.permissions.capabilities(member, org.id)).can_view_leads

    m = _membership_of(services, org.id, member.user_id)
    asyncio.run(services.members.remove_member(creator, org.id, m.id))

    assert not asyncio.run(services.permissions.capabilities(member, org.id)).can_view_leads


def test_membership_from_other_org_is_rejected(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    other = asyncio.run(services.members.create_organization(principal(), "Other"))
    stranger = seed_member(services.store, other, Role.MEMBER)
    m = _membership_of(services, other.id, stranger.user_id)

    with pytest.raises(AuthorizationDenied) as exc_info:
        asyncio.run(services.members.change_role(creator, org.id, m.id, "viewer"))
    assert exc_info.value.reason == "cross_organization"
    with pytest.raises(NotFound):
        asyncio.run(services.members.remove_member(creator, org.id, uuid4()))


def test_change_role_refuses_pending_invitation(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    issued = asyncio.run(services.members.invite(creator, org.id, "p@example.com", "viewer"))
    with pytest.raises(InvariantViolation) as exc_info:
        asyncio.run(
            services.members.change_role(creator, org.id, issued.membership.id, "member")
        )
    assert exc_info.value.reason == "not_accepted"


def test_list_members_orders_accepted_then_pending(services: Services) -> None:
    creator = principal()
    org = asyncio.run(services.members.create_organization(creator, "Acme"))
    asyncio.run(services.members.invite(creator, org.id, "p@example.com", "admin"))
    seed_member(services.store, org, Role.VIEWER)
    seed_member(services.store, org, Role.ADMIN)

    members = asyncio.run(services.members.list_members(creator, org.id))
    assert [(m.status, m.role) for m in members] == [
        ("accepted", "owner"),
        ("accepted", "admin"),
        ("accepted", "viewer"),
        ("invited", "admin"),
    ]
