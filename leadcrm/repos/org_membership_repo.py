from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from leadcrm.models.organization import Membership, MembershipStatus, Role
from leadcrm.services.errors import StoreError


class MembershipRepo(Protocol):
    async def get(self, membership_id: UUID) -> Membership | None: ...
    async def get_accepted(self, org_id: UUID, user_id: str) -> Membership | None: ...
    async def find_by_email(self, org_id: UUID, email: str) -> Membership | None: ...
    async def get_by_token_hash(self, token_hash: str) -> Membership | None: ...
    async def add(self, membership: Membership) -> None: ...
    async def list_by_org(self, org_id: UUID) -> list[Membership]: ...
    async def list_by_user(self, user_id: str) -> list[Membership]: ...
    async def count_accepted_owners(self, org_id: UUID) -> int: ...
    async def update_role(
        self, membership_id: UUID, new_role: str
    ) -> Membership | None: ...
    async def rotate_invite(
        self,
        membership_id: UUID,
        token_hash: str,
        invited_at: datetime,
        expires_at: datetime,
    ) -> Membership | None: ...
    async def claim_invite(
        self, token_hash: str, email: str, user_id: str, now: datetime
    ) -> Membership | None: ...
    async def delete(
        self, membership_id: UUID, *, only_status: str | None = None
    ) -> bool: ...


class InMemoryMembershipRepo:
    def __init__(self) -> None:
        self._store: dict[UUID, Membership] = {}
        # Guards the compare-and-swap in claim_invite when the repo is
        # shared across threads (TestClient runs handlers off the loop).
        self._lock = threading.Lock()

    async def get(self, membership_id: UUID) -> Membership | None:
        return self._store.get(membership_id)

    async def get_accepted(self, org_id: UUID, user_id: str) -> Membership | None:
        for m in self._store.values():
            if m.org_id == org_id and m.user_id == user_id and m.is_accepted:
                return m
        return None

    async def find_by_email(self, org_id: UUID, email: str) -> Membership | None:
        for m in self._store.values():
            if m.org_id == org_id and m.email == email:
                return m
        return None

    async def get_by_token_hash(self, token_hash: str) -> Membership | None:
        for m in self._store.values():
            if m.invited_token_hash == token_hash:
                return m
        return None

    async def add(self, membership: Membership) -> None:
        if membership.id in self._store:
            raise StoreError("membership already exists")
        self._store[membership.id] = membership

    async def list_by_org(self, org_id: UUID) -> list[Membership]:
        return [m for m in self._store.values() if m.org_id == org_id]

    async def list_by_user(self, user_id: str) -> list[Membership]:
        return [
            m for m in self._store.values() if m.user_id == user_id and m.is_accepted
        ]

    async def count_accepted_owners(self, org_id: UUID) -> int:
        return sum(
            1
            for m in self._store.values()
            if m.org_id == org_id and m.is_accepted and m.role == Role.OWNER
        )

    async def update_role(
        self, membership_id: UUID, new_role: str
    ) -> Membership | None:
        existing = self._store.get(membership_id)
        if existing is None:
            return None
        updated = replace(existing, role=new_role)
        self._store[membership_id] = updated
        return updated

    async def rotate_invite(
        self,
        membership_id: UUID,
        token_hash: str,
        invited_at: datetime,
        expires_at: datetime,
    ) -> Membership | None:
        with self._lock:
            existing = self._store.get(membership_id)
            if existing is None or not existing.is_pending:
                return None
            updated = replace(
                existing,
                invited_token_hash=token_hash,
                invited_at=invited_at,
                invited_expires_at=expires_at,
            )
            self._store[membership_id] = updated
            return updated

    async def claim_invite(
        self, token_hash: str, email: str, user_id: str, now: datetime
    ) -> Membership | None:
        """Atomically bind a pending invitation to ``user_id``.

        Returns the accepted membership, or None if no row matched every
        condition (unknown token, other email, already claimed, expired).
        """
        with self._lock:
            for m in self._store.values():
                if (
                    m.invited_token_hash == token_hash
                    and m.email == email
                    and m.status == MembershipStatus.INVITED
                    and m.user_id is None
                    and m.invited_expires_at is not None
                    and m.invited_expires_at > now
                ):
                    updated = replace(
                        m, user_id=user_id, status=MembershipStatus.ACCEPTED.value
                    )
                    self._store[m.id] = updated
                    return updated
            return None

    async def delete(
        self, membership_id: UUID, *, only_status: str | None = None
    ) -> bool:
        with self._lock:
            existing = self._store.get(membership_id)
            if existing is None:
                return False
            if only_status is not None and existing.status != only_status:
                return False
            del self._store[membership_id]
            return True
