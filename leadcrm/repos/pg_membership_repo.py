"""PostgreSQL implementation of MembershipRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.db.engine import store_errors
from leadcrm.db.tables import MembershipRow
from leadcrm.models.organization import Membership, MembershipStatus, Role


class PgMembershipRepo:
    """Satisfies the MembershipRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _one(self, stmt) -> Membership | None:
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_membership(row)

    async def _many(self, stmt) -> list[Membership]:
        with store_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_membership(r) for r in rows]

    async def get(self, membership_id: UUID) -> Membership | None:
        return await self._one(
            select(MembershipRow).where(MembershipRow.id == membership_id)
        )

    async def get_accepted(self, org_id: UUID, user_id: str) -> Membership | None:
        stmt = select(MembershipRow).where(
            MembershipRow.org_id == org_id,
            MembershipRow.user_id == user_id,
            MembershipRow.status == MembershipStatus.ACCEPTED.value,
        )
        return await self._one(stmt.limit(1))

    async def find_by_email(self, org_id: UUID, email: str) -> Membership | None:
        stmt = select(MembershipRow).where(
            MembershipRow.org_id == org_id, MembershipRow.invited_email == email
        )
        return await self._one(stmt.limit(1))

    async def get_by_token_hash(self, token_hash: str) -> Membership | None:
        return await self._one(
            select(MembershipRow).where(MembershipRow.invited_token_hash == token_hash)
        )

    async def add(self, membership: Membership) -> None:
        row = MembershipRow(
            id=membership.id,
            org_id=membership.org_id,
            user_id=membership.user_id,
            role=membership.role,
            status=membership.status,
            invited_email=membership.email,
            invited_token_hash=membership.invited_token_hash,
            invited_at=membership.invited_at,
            invited_expires_at=membership.invited_expires_at,
            created_at=membership.created_at,
        )
        self._session.add(row)
        with store_errors():
            await self._session.flush()

    async def list_by_org(self, org_id: UUID) -> list[Membership]:
        stmt = (
            select(MembershipRow)
            .where(MembershipRow.org_id == org_id)
            .order_by(MembershipRow.created_at)
        )
        return await self._many(stmt)

    async def list_by_user(self, user_id: str) -> list[Membership]:
        stmt = select(MembershipRow).where(
            MembershipRow.user_id == user_id,
            MembershipRow.status == MembershipStatus.ACCEPTED.value,
        )
        return await self._many(stmt)

    async def count_accepted_owners(self, org_id: UUID) -> int:
        # Aggregates cannot take FOR UPDATE, so lock the owner rows and
        # count them here; a concurrent demotion waits on the same rows.
        stmt = (
            select(MembershipRow.id)
            .where(
                MembershipRow.org_id == org_id,
                MembershipRow.role == Role.OWNER.value,
                MembershipRow.status == MembershipStatus.ACCEPTED.value,
            )
            .with_for_update()
        )
        with store_errors():
            ids = (await self._session.execute(stmt)).scalars().all()
        return len(ids)

    async def update_role(
        self, membership_id: UUID, new_role: str
    ) -> Membership | None:
        stmt = (
            update(MembershipRow)
            .where(MembershipRow.id == membership_id)
            .values(role=new_role)
            .returning(MembershipRow)
        )
        return await self._one(stmt)

    async def rotate_invite(
        self,
        membership_id: UUID,
        token_hash: str,
        invited_at: datetime,
        expires_at: datetime,
    ) -> Membership | None:
        stmt = (
            update(MembershipRow)
            .where(
                MembershipRow.id == membership_id,
                MembershipRow.status == MembershipStatus.INVITED.value,
            )
            .values(
                invited_token_hash=token_hash,
                invited_at=invited_at,
                invited_expires_at=expires_at,
            )
            .returning(MembershipRow)
        )
        return await self._one(stmt)

    async def claim_invite(
        self, token_hash: str, email: str, user_id: str, now: datetime
    ) -> Membership | None:
        """Conditional UPDATE; at most one concurrent caller gets a row back."""
        stmt = (
            update(MembershipRow)
            .where(
                MembershipRow.invited_token_hash == token_hash,
                MembershipRow.invited_email == email,
                MembershipRow.status == MembershipStatus.INVITED.value,
                MembershipRow.user_id.is_(None),
                MembershipRow.invited_expires_at > now,
            )
            .values(user_id=user_id, status=MembershipStatus.ACCEPTED.value)
            .returning(MembershipRow)
        )
        return await self._one(stmt)

    async def delete(
        self, membership_id: UUID, *, only_status: str | None = None
    ) -> bool:
        stmt = delete(MembershipRow).where(MembershipRow.id == membership_id)
        if only_status is not None:
            stmt = stmt.where(MembershipRow.status == only_status)
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount > 0


def _row_to_membership(row: MembershipRow) -> Membership:
    return Membership(
        id=row.id,
        org_id=row.org_id,
        role=row.role,
        status=row.status,
        user_id=row.user_id,
        email=row.invited_email,
        invited_token_hash=row.invited_token_hash,
        invited_at=row.invited_at,
        invited_expires_at=row.invited_expires_at,
        created_at=row.created_at,
    )
