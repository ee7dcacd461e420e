"""PostgreSQL implementation of OrgRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.db.engine import store_errors
from leadcrm.db.tables import OrganizationRow
from leadcrm.models.organization import Organization


class PgOrgRepo:
    """Satisfies the OrgRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.id == org_id)
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def add(self, org: Organization) -> None:
        row = OrganizationRow(
            id=org.id, name=org.name, owner_id=org.owner_id, created_at=org.created_at
        )
        self._session.add(row)
        with store_errors():
            await self._session.flush()

    async def rename(self, org_id: UUID, name: str) -> Organization | None:
        stmt = (
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .values(name=name)
            .returning(OrganizationRow)
        )
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id, name=row.name, owner_id=row.owner_id, created_at=row.created_at
    )
