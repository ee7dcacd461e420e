from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(UTC)


class Role(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class MembershipStatus(StrEnum):
    INVITED = "invited"
    ACCEPTED = "accepted"
    # Stored by older rows; never produced here and never counted as accepted.
    SUSPENDED = "suspended"
    LEFT = "left"


@dataclass(frozen=True, slots=True)
class Organization:
    id: UUID
    name: str
    owner_id: str  # the creator; never reassigned
    created_at: datetime

    @staticmethod
    def new(*, name: str, owner_id: str) -> Organization:
        return Organization(
            id=uuid4(), name=name, owner_id=owner_id, created_at=utcnow()
        )

    def is_creator(self, user_id: str) -> bool:
        return self.owner_id == user_id


@dataclass(frozen=True, slots=True)
class Membership:
    """One principal's (or one invited address's) seat in an organization.

    Either principal-bound (status=accepted, user_id set) or invite-pending
    (status=invited, user_id None, token hash + expiry set).
    ``role`` is kept as the stored string so an unknown value read from
    the database survives and ranks as least authority.
    """

    id: UUID
    org_id: UUID
    role: str
    status: str
    user_id: str | None
    email: str | None
    invited_token_hash: str | None = None
    invited_at: datetime | None = None
    invited_expires_at: datetime | None = None
    created_at: datetime | None = None

    @staticmethod
    def accepted(*, org_id: UUID, user_id: str, email: str, role: Role) -> Membership:
        return Membership(
            id=uuid4(),
            org_id=org_id,
            role=role.value,
            status=MembershipStatus.ACCEPTED.value,
            user_id=user_id,
            email=email,
            created_at=utcnow(),
        )

    @staticmethod
    def invitation(
        *,
        org_id: UUID,
        email: str,
        role: Role,
        token_hash: str,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> Membership:
        now = now or utcnow()
        return Membership(
            id=uuid4(),
            org_id=org_id,
            role=role.value,
            status=MembershipStatus.INVITED.value,
            user_id=None,
            email=email,
            invited_token_hash=token_hash,
            invited_at=now,
            invited_expires_at=expires_at,
            created_at=now,
        )

    @property
    def is_accepted(self) -> bool:
        return self.status == MembershipStatus.ACCEPTED

    @property
    def is_pending(self) -> bool:
        return self.status == MembershipStatus.INVITED
