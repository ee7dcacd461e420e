"""PostgreSQL implementation of TemplateRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcrm.db.engine import store_errors
from leadcrm.db.tables import FieldRow, TemplateRow
from leadcrm.models.template import UNIVERSAL_ORG_ID, Field, Template


class PgTemplateRepo:
    """Satisfies the TemplateRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, template_id: UUID) -> Template | None:
        stmt = select(TemplateRow).where(TemplateRow.id == template_id)
        with store_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_template(row)

    async def add(self, template: Template) -> None:
        row = TemplateRow(
            id=template.id,
            org_id=template.org_id,
            name=template.name,
            description=template.description,
            is_default=template.is_default,
            created_by=template.created_by,
            created_at=template.created_at,
        )
        self._session.add(row)
        with store_errors():
            await self._session.flush()

    async def add_fields(self, fields: list[Field]) -> None:
        """Insert all fields or none; a failure rolls back only the savepoint."""
        rows = [
            FieldRow(
                id=f.id,
                template_id=f.template_id,
                field_key=f.key,
                field_label=f.label,
                field_type=f.field_type,
                is_required=f.is_required,
                sort_order=f.sort_order,
            )
            for f in fields
        ]
        with store_errors():
            async with self._session.begin_nested():
                self._session.add_all(rows)
                await self._session.flush()

    async def list_fields(self, template_id: UUID) -> list[Field]:
        stmt = (
            select(FieldRow)
            .where(FieldRow.template_id == template_id)
            .order_by(FieldRow.sort_order)
        )
        with store_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_field(r) for r in rows]

    async def list_visible(self, org_id: UUID) -> list[Template]:
        stmt = (
            select(TemplateRow)
            .where(
                or_(
                    TemplateRow.org_id == org_id,
                    TemplateRow.org_id == UNIVERSAL_ORG_ID,
                )
            )
            .order_by(TemplateRow.created_at)
        )
        with store_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_template(r) for r in rows]

    async def clear_default(
        self, org_id: UUID, *, keep: UUID | None = None
    ) -> None:
        stmt = update(TemplateRow).where(
            TemplateRow.org_id == org_id, TemplateRow.is_default.is_(True)
        )
        if keep is not None:
            stmt = stmt.where(TemplateRow.id != keep)
        stmt = stmt.values(is_default=False).execution_options(
            synchronize_session="fetch"
        )
        with store_errors():
            await self._session.execute(stmt)

    async def delete_fields(self, template_id: UUID) -> int:
        stmt = delete(FieldRow).where(FieldRow.template_id == template_id)
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount

    async def delete(self, template_id: UUID) -> bool:
        stmt = delete(TemplateRow).where(TemplateRow.id == template_id)
        with store_errors():
            result = await self._session.execute(stmt)
        return result.rowcount > 0


def _row_to_template(row: TemplateRow) -> Template:
    return Template(
        id=row.id,
        org_id=row.org_id,
        name=row.name,
        description=row.description,
        is_default=row.is_default,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _row_to_field(row: FieldRow) -> Field:
    return Field(
        id=row.id,
        template_id=row.template_id,
        key=row.field_key,
        label=row.field_label,
        field_type=row.field_type,
        is_required=row.is_required,
        sort_order=row.sort_order,
    )
