"""PostgreSQL implementation of LeadRepo."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.db.engine import store_errors
from leadcrm.db.tables import FieldValueRow, LeadRow
from leadcrm.models.lead import FieldValue, Lead


class PgLeadRepo:
    """Satisfies the LeadRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, lead_id: UUID) -> Lead | None:
        stmt = select(LeadRow).where(LeadRow.id == lead_id)
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_lead(row)

    async def add(self, lead: Lead) -> None:
        row = LeadRow(
            id=lead.id,
            org_id=lead.org_id,
            template_id=lead.template_id,
            status=lead.status,
            created_by=lead.created_by,
            created_at=lead.created_at,
            updated_at=lead.updated_at,
        )
        self._session.add(row)
        with store_errors():
            await self._session.flush()

    async def list_by_org(
        self, org_id: UUID, *, status: str | None = None
    ) -> list[Lead]:
        stmt = select(LeadRow).where(LeadRow.org_id == org_id)
        if status is not None:
            stmt = stmt.where(LeadRow.status == status)
        stmt = stmt.order_by(LeadRow.created_at.desc())
        with store_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lead(r) for r in rows]

    async def list_ids_in_org(
        self, org_id: UUID, lead_ids: Iterable[UUID]
    ) -> set[UUID]:
        stmt = select(LeadRow.id).where(
            LeadRow.org_id == org_id, LeadRow.id.in_(list(lead_ids))
        )
        with store_errors():
            return set((await self._session.execute(stmt)).scalars().all())

    async def count_by_template(
        self, template_id: UUID, *, org_id: UUID | None = None
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(LeadRow)
            .where(LeadRow.template_id == template_id)
        )
        if org_id is not None:
            stmt = stmt.where(LeadRow.org_id == org_id)
        with store_errors():
            return (await self._session.execute(stmt)).scalar_one()

    async def touch(self, lead_id: UUID, at: datetime) -> None:
        stmt = update(LeadRow).where(LeadRow.id == lead_id).values(updated_at=at)
        with store_errors():
            await self._session.execute(stmt)

    async def set_status(
        self, lead_ids: Iterable[UUID], status: str, at: datetime
    ) -> int:
        stmt = (
            update(LeadRow)
            .where(LeadRow.id.in_(list(lead_ids)))
            .values(status=status, updated_at=at)
            .execution_options(synchronize_session="fetch")
        )
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount

    async def delete(self, lead_ids: Iterable[UUID]) -> int:
        stmt = delete(LeadRow).where(LeadRow.id.in_(list(lead_ids)))
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount

    async def list_values(self, lead_ids: Iterable[UUID]) -> list[FieldValue]:
        stmt = select(FieldValueRow).where(FieldValueRow.lead_id.in_(list(lead_ids)))
        with store_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_value(r) for r in rows]

    async def get_value(self, lead_id: UUID, field_id: UUID) -> FieldValue | None:
        stmt = select(FieldValueRow).where(
            FieldValueRow.lead_id == lead_id, FieldValueRow.field_id == field_id
        )
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_value(row)

    async def add_values(self, values: list[FieldValue]) -> None:
        """Insert all values or none; a failure rolls back only the savepoint."""
        rows = [
            FieldValueRow(
                id=v.id, lead_id=v.lead_id, field_id=v.field_id, value=v.value
            )
            for v in values
        ]
        with store_errors():
            async with self._session.begin_nested():
                self._session.add_all(rows)
                await self._session.flush()

    async def upsert_value(
        self, lead_id: UUID, field_id: UUID, value: str
    ) -> FieldValue:
        fresh = FieldValue.new(lead_id=lead_id, field_id=field_id, value=value)
        stmt = insert(FieldValueRow).values(
            id=fresh.id, lead_id=lead_id, field_id=field_id, value=value
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[FieldValueRow.lead_id, FieldValueRow.field_id],
            set_={"value": stmt.excluded.value},
        ).returning(FieldValueRow.id)
        with store_errors():
            value_id = (await self._session.execute(stmt)).scalar_one()
        return FieldValue(id=value_id, lead_id=lead_id, field_id=field_id, value=value)

    async def delete_values_for_fields(self, field_ids: Iterable[UUID]) -> int:
        stmt = delete(FieldValueRow).where(FieldValueRow.field_id.in_(list(field_ids)))
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount

    async def delete_values_for_leads(self, lead_ids: Iterable[UUID]) -> int:
        stmt = delete(FieldValueRow).where(FieldValueRow.lead_id.in_(list(lead_ids)))
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount


def _row_to_lead(row: LeadRow) -> Lead:
    return Lead(
        id=row.id,
        org_id=row.org_id,
        template_id=row.template_id,
        status=row.status,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_value(row: FieldValueRow) -> FieldValue:
    return FieldValue(
        id=row.id, lead_id=row.lead_id, field_id=row.field_id, value=row.value
    )
