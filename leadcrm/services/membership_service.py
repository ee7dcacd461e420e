"""Organization membership lifecycle.

A Membership row moves through a small state machine:

    invite            claim
  ---------> invited -------> accepted ---> (deleted: remove_member)
                |
                +------------> (deleted: revoke)

Invitation tokens are 32 random bytes (URL-safe).  Only the SHA-256 hex
digest is stored, the same way the raw value of any bearer secret is
never written down: a leaked table row cannot be replayed as an invite
link.  The raw token is returned exactly once, from ``invite`` or
``resend``, and is never logged.

Claiming is a single conditional write in the repository (token hash,
email, status=invited, unclaimed, unexpired).  Two concurrent claims of
the same token race on that write and exactly one gets a row back.
When the write matches nothing, a follow-up read works out WHY, purely
to give the caller a useful message; it decides nothing.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from leadcrm.core.config import SETTINGS
from leadcrm.core.metrics import AUTHORIZATION_DENIALS, INVITES
from leadcrm.models.organization import (
    Membership,
    MembershipStatus,
    Organization,
    Role,
    utcnow,
)
from leadcrm.models.principal import Principal, normalize_email
from leadcrm.repos.store import Store
from leadcrm.services.errors import (
    AuthorizationDenied,
    ConflictOnClaim,
    InvariantViolation,
    NotFound,
)
from leadcrm.services.permissions import PermissionService
from leadcrm.services.roles import (
    Capabilities,
    act_on_denial,
    assignable_roles,
    parse_role,
    role_level,
)

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_ACT_ON_MESSAGES = {
    "self_action": "You cannot change or remove your own membership",
    "insufficient_role": "Only owners and admins can manage other members",
    "target_protected": "You cannot manage a member with the same or a higher role",
}

_CLAIM_MESSAGES = {
    "invalid_token": "This invitation is invalid or has been revoked",
    "already_claimed": "This invitation has already been claimed",
    "email_mismatch": "This invitation was sent to a different email address",
    "expired": "This invitation has expired. Ask an admin to resend it.",
}


def hash_invite_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class IssuedInvite:
    membership: Membership
    token: str  # raw; hand to the invitee, never persist


class MembershipService:
    def __init__(
        self,
        store: Store,
        permissions: PermissionService,
        *,
        invite_ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._permissions = permissions
        self._invite_ttl = invite_ttl or timedelta(days=SETTINGS.invite_ttl_days)
        self._clock = clock

    # --- organizations ---

    async def create_organization(self, actor: Principal, name: str) -> Organization:
        name = name.strip()
        if not name:
            raise InvariantViolation(
                "Organization name is required", reason="invalid_input"
            )
        org = Organization.new(name=name, owner_id=actor.user_id)
        await self._store.orgs.add(org)
        await self._store.memberships.add(
            Membership.accepted(
                org_id=org.id, user_id=actor.user_id, email=actor.email, role=Role.OWNER
            )
        )
        await self._permissions.invalidate(org.id, actor.user_id)
        logger.info(
            "organization created",
            extra={"org_id": str(org.id), "user_id": actor.user_id},
        )
        return org

    async def get_organization(
        self, actor: Principal, org_id: UUID
    ) -> tuple[Organization, Capabilities]:
        caps = await self._permissions.require(
            actor,
            org_id,
            "can_view_members",
            "You are not a member of this organization",
        )
        org = await self._store.orgs.get_by_id(org_id)
        if org is None:
            raise NotFound("Organization not found")
        return org, caps

    async def list_organizations(self, actor: Principal) -> list[Organization]:
        """Organizations where the actor holds an accepted membership."""
        orgs = []
        for m in await self._store.memberships.list_by_user(actor.user_id):
            org = await self._store.orgs.get_by_id(m.org_id)
            if org is not None:
                orgs.append(org)
        return sorted(orgs, key=lambda o: o.created_at)

    async def rename_organization(
        self, actor: Principal, org_id: UUID, name: str
    ) -> Organization:
        await self._permissions.require(
            actor,
            org_id,
            "can_manage_organization",
            "You don't have permission to manage this organization",
        )
        name = name.strip()
        if not name:
            raise InvariantViolation(
                "Organization name is required", reason="invalid_input"
            )
        org = await self._store.orgs.rename(org_id, name)
        if org is None:
            raise NotFound("Organization not found")
        logger.info("organization renamed", extra={"org_id": str(org_id)})
        return org

    # --- members ---

    async def list_members(self, actor: Principal, org_id: UUID) -> list[Membership]:
        """Accepted members first, then pending invitations; by role within each."""
        await self._permissions.require(
            actor,
            org_id,
            "can_view_members",
            "You don't have permission to view members",
        )
        members = await self._store.memberships.list_by_org(org_id)
        return sorted(
            members,
            key=lambda m: (
                0 if m.is_accepted else 1,
                role_level(m.role),
                m.created_at or self._clock(),
            ),
        )

    async def invite(
        self, actor: Principal, org_id: UUID, email: str, role: str
    ) -> IssuedInvite:
        caps = await self._permissions.require(
            actor,
            org_id,
            "can_invite_members",
            "You don't have permission to invite members",
        )
        parsed = self._parse_role(role)
        self._check_assignable(caps, parsed, org_id)

        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise InvariantViolation("Invalid email address", reason="invalid_input")

        existing = await self._store.memberships.find_by_email(org_id, email)
        if existing is not None and existing.is_pending:
            raise InvariantViolation(
                "User already has a pending invitation",
                reason="pending_invitation",
            )
        if existing is not None and existing.is_accepted:
            raise InvariantViolation(
                "User is already a member of this organization",
                reason="already_member",
            )
        if existing is not None:
            # A left or suspended row holds the (org, email) slot; the new
            # invitation replaces it.
            await self._store.memberships.delete(
                existing.id, only_status=existing.status
            )

        token = secrets.token_urlsafe(32)
        now = self._clock()
        membership = Membership.invitation(
            org_id=org_id,
            email=email,
            role=parsed,
            token_hash=hash_invite_token(token),
            expires_at=now + self._invite_ttl,
            now=now,
        )
        await self._store.memberships.add(membership)
        INVITES.labels(outcome="issued").inc()
        logger.info(
            "invitation issued",
            extra={
                "org_id": str(org_id),
                "membership_id": str(membership.id),
                "user_id": actor.user_id,
            },
        )
        return IssuedInvite(membership=membership, token=token)

    async def claim(self, principal: Principal, token: str) -> Membership:
        """Bind a pending invitation to ``principal``. Never retried."""
        token_hash = hash_invite_token(token)
        now = self._clock()
        claimed = await self._store.memberships.claim_invite(
            token_hash, principal.email, principal.user_id, now
        )
        if claimed is None:
            reason = await self._classify_claim_miss(token_hash, principal, now)
            INVITES.labels(outcome=reason).inc()
            logger.warning(
                "invitation claim rejected",
                extra={"user_id": principal.user_id, "reason": reason},
            )
            raise ConflictOnClaim(_CLAIM_MESSAGES[reason], reason=reason)

        await self._permissions.invalidate(claimed.org_id, principal.user_id)
        INVITES.labels(outcome="claimed").inc()
        logger.info(
            "invitation claimed",
            extra={
                "org_id": str(claimed.org_id),
                "membership_id": str(claimed.id),
                "user_id": principal.user_id,
            },
        )
        return claimed

    async def resend(
        self, actor: Principal, org_id: UUID, membership_id: UUID
    ) -> IssuedInvite:
        """Rotate the token and expiry of a pending invitation."""
        await self._permissions.require(
            actor,
            org_id,
            "can_invite_members",
            "You don't have permission to invite members",
        )
        target = await self._load_in_org(org_id, membership_id)
        not_pending = InvariantViolation(
            "Invitation not found or already accepted", reason="not_pending"
        )
        if not target.is_pending:
            raise not_pending

        token = secrets.token_urlsafe(32)
        now = self._clock()
        updated = await self._store.memberships.rotate_invite(
            membership_id, hash_invite_token(token), now, now + self._invite_ttl
        )
        if updated is None:
            # Claimed or revoked between the read and the write.
            raise not_pending
        INVITES.labels(outcome="resent").inc()
        logger.info(
            "invitation resent",
            extra={"org_id": str(org_id), "membership_id": str(membership_id)},
        )
        return IssuedInvite(membership=updated, token=token)

    async def revoke(self, actor: Principal, org_id: UUID, membership_id: UUID) -> None:
        await self._permissions.require(
            actor,
            org_id,
            "can_invite_members",
            "You don't have permission to invite members",
        )
        target = await self._load_in_org(org_id, membership_id)
        not_pending = InvariantViolation(
            "Cannot revoke an accepted membership. Use remove member instead.",
            reason="not_pending",
        )
        if not target.is_pending:
            raise not_pending
        deleted = await self._store.memberships.delete(
            membership_id, only_status=MembershipStatus.INVITED.value
        )
        if not deleted:
            raise not_pending
        INVITES.labels(outcome="revoked").inc()
        logger.info(
            "invitation revoked",
            extra={"org_id": str(org_id), "membership_id": str(membership_id)},
        )

    async def change_role(
        self, actor: Principal, org_id: UUID, membership_id: UUID, new_role: str
    ) -> Membership:
        caps = await self._permissions.require(
            actor,
            org_id,
            "can_manage_members",
            "You don't have permission to manage members",
        )
        target = await self._load_accepted_target(actor, caps, org_id, membership_id)
        parsed = self._parse_role(new_role)
        self._check_assignable(caps, parsed, org_id)

        if target.role == Role.OWNER and parsed != Role.OWNER:
            await self._ensure_another_owner(
                org_id, "Cannot demote the only owner of this organization"
            )

        updated = await self._store.memberships.update_role(membership_id, parsed.value)
        if updated is None:
            raise NotFound("Member not found")
        await self._permissions.invalidate(org_id, target.user_id)
        logger.info(
            "member role changed from %s to %s",
            target.role,
            parsed.value,
            extra={"org_id": str(org_id), "membership_id": str(membership_id)},
        )
        return updated

    async def remove_member(
        self, actor: Principal, org_id: UUID, membership_id: UUID
    ) -> None:
        caps = await self._permissions.require(
            actor,
            org_id,
            "can_manage_members",
            "You don't have permission to manage members",
        )
        target = await self._load_accepted_target(actor, caps, org_id, membership_id)
        if target.role == Role.OWNER:
            await self._ensure_another_owner(
                org_id, "Cannot remove the only owner of this organization"
            )
        if not await self._store.memberships.delete(membership_id):
            raise NotFound("Member not found")
        await self._permissions.invalidate(org_id, target.user_id)
        logger.info(
            "member removed",
            extra={"org_id": str(org_id), "membership_id": str(membership_id)},
        )

    # --- guards ---

    async def _load_in_org(self, org_id: UUID, membership_id: UUID) -> Membership:
        target = await self._store.memberships.get(membership_id)
        if target is None:
            raise NotFound("Member not found")
        if target.org_id != org_id:
            AUTHORIZATION_DENIALS.labels(reason="cross_organization").inc()
            raise AuthorizationDenied(
                "This membership belongs to a different organization",
                reason="cross_organization",
            )
        return target

    async def _load_accepted_target(
        self,
        actor: Principal,
        caps: Capabilities,
        org_id: UUID,
        membership_id: UUID,
    ) -> Membership:
        target = await self._load_in_org(org_id, membership_id)
        if not target.is_accepted:
            raise InvariantViolation(
                "This member has not accepted their invitation",
                reason="not_accepted",
            )
        denial = act_on_denial(
            caps.role,
            caps.is_org_creator,
            target.user_id == actor.user_id,
            target.role,
        )
        if denial is not None:
            AUTHORIZATION_DENIALS.labels(reason=denial).inc()
            logger.warning(
                "member action denied: %s",
                denial,
                extra={
                    "org_id": str(org_id),
                    "membership_id": str(membership_id),
                    "user_id": actor.user_id,
                },
            )
            raise AuthorizationDenied(_ACT_ON_MESSAGES[denial], reason=denial)
        return target

    async def _ensure_another_owner(self, org_id: UUID, message: str) -> None:
        if await self._store.memberships.count_accepted_owners(org_id) <= 1:
            raise InvariantViolation(message, reason="last_owner")

    def _check_assignable(self, caps: Capabilities, role: Role, org_id: UUID) -> None:
        if role not in assignable_roles(caps.role, caps.is_org_creator):
            AUTHORIZATION_DENIALS.labels(reason="role_not_assignable").inc()
            logger.warning(
                "role %s not assignable by %s",
                role.value,
                caps.role,
                extra={"org_id": str(org_id)},
            )
            raise AuthorizationDenied(
                f"You cannot assign the {role.value} role", reason="role_not_assignable"
            )

    @staticmethod
    def _parse_role(value: str) -> Role:
        parsed = parse_role(value)
        if parsed is None:
            raise InvariantViolation(f"Unknown role {value!r}", reason="invalid_input")
        return parsed

    async def _classify_claim_miss(
        self, token_hash: str, principal: Principal, now: datetime
    ) -> str:
        existing = await self._store.memberships.get_by_token_hash(token_hash)
        if existing is None:
            return "invalid_token"
        if not existing.is_pending or existing.user_id is not None:
            return "already_claimed"
        if existing.email != principal.email:
            return "email_mismatch"
        expires_at = existing.invited_expires_at
        if expires_at is not None and expires_at <= now:
            return "expired"
        # Matched every condition on re-read: another claim is in flight.
        return "already_claimed"
