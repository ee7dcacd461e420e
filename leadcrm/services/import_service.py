"""Project an already-parsed spreadsheet onto a new template and leads.

The caller maps each column to a standard field key or to ``custom``
(with an optional label), or excludes it.  One template is created from
the mappings, then rows become draft leads one at a time.  Each row is
committed on its own: when row 40 fails, rows 1-39 stay imported and
the failure is reported, never hidden.

Row numbers in messages count the header line as row 1, so the first
data row is "Row 2", matching what the user sees in their spreadsheet.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from leadcrm.core.config import SETTINGS
from leadcrm.core.metrics import IMPORT_ROWS
from leadcrm.models.lead import DEFAULT_LEAD_STATUS
from leadcrm.models.principal import Principal
from leadcrm.models.template import FieldSpec
from leadcrm.repos.store import Store
from leadcrm.services.errors import FieldValuesNotSaved, StoreError
from leadcrm.services.lead_service import LeadService
from leadcrm.services.permissions import PermissionService
from leadcrm.services.schema_service import SchemaService, field_key_from_label

logger = logging.getLogger(__name__)

CUSTOM_TARGET = "custom"
IMPORT_DESCRIPTION = "Imported template from spreadsheet"


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    column_index: int
    column_name: str
    target: str  # a standard field key, or "custom"
    field_type: str = "text"
    custom_label: str | None = None
    excluded: bool = False


@dataclass(frozen=True, slots=True)
class ImportResult:
    template_id: UUID
    leads_created: int
    rows_skipped: int
    errors: list[str] = field(default_factory=list)  # capped
    error_count: int = 0


@dataclass(frozen=True, slots=True)
class _Column:
    index: int
    key: str
    spec: FieldSpec


def plan_columns(mappings: Sequence[ColumnMapping]) -> list[_Column]:
    """Derive one unique field key and label per included column.

    Colliding keys get ``_1``, ``_2``, ... appended in mapping order.
    """
    columns: list[_Column] = []
    taken: set[str] = set()
    for m in mappings:
        if m.excluded:
            continue
        fallback = f"Column {m.column_index + 1}"
        if m.target == CUSTOM_TARGET:
            label = (m.custom_label or "").strip() or m.column_name.strip() or fallback
        else:
            label = m.column_name.strip() or fallback
        base = field_key_from_label(label if m.target == CUSTOM_TARGET else m.target)
        if not base:
            base = f"column_{m.column_index + 1}"

        key, counter = base, 1
        while key in taken:
            key = f"{base}_{counter}"
            counter += 1
        taken.add(key)
        columns.append(
            _Column(
                index=m.column_index,
                key=key,
                spec=FieldSpec(label=label, field_type=m.field_type, key=key),
            )
        )
    return columns


def _mapped_values(columns: Sequence[_Column], row: Sequence[str]) -> dict[str, str]:
    return {c.key: (row[c.index] if c.index < len(row) else "") or "" for c in columns}


def _is_blank(values: dict[str, str]) -> bool:
    # Only mapped cells count; a row whose data sits in excluded columns is empty.
    return all(not v.strip() for v in values.values())


class ImportService:
    def __init__(
        self,
        store: Store,
        permissions: PermissionService,
        schema: SchemaService,
        leads: LeadService,
        *,
        error_cap: int | None = None,
    ) -> None:
        self._store = store
        self._permissions = permissions
        self._schema = schema
        self._leads = leads
        self._error_cap = (
            SETTINGS.import_error_cap if error_cap is None else error_cap
        )

    async def run(
        self,
        actor: Principal,
        org_id: UUID,
        template_name: str,
        mappings: Sequence[ColumnMapping],
        rows: Sequence[Sequence[str]],
    ) -> ImportResult:
        await self._permissions.require(
            actor,
            org_id,
            "can_import_leads",
            "You don't have permission to import leads",
        )
        columns = plan_columns(mappings)
        detail = await self._schema.create_template(
            actor,
            org_id,
            template_name,
            [c.spec for c in columns],
            description=IMPORT_DESCRIPTION,
        )
        template_id = detail.template.id
        await self._store.commit()

        created = skipped = failed = 0
        errors: list[str] = []
        for offset, row in enumerate(rows):
            row_number = offset + 2
            values = _mapped_values(columns, row)
            if _is_blank(values):
                skipped += 1
                IMPORT_ROWS.labels(outcome="skipped").inc()
                continue

            try:
                await self._leads.create_lead(
                    actor,
                    org_id,
                    template_id,
                    values,
                    status=DEFAULT_LEAD_STATUS,
                    strict=True,
                )
            except FieldValuesNotSaved as exc:
                message = f"Row {row_number}: Failed to save field values - {exc}"
            except StoreError as exc:
                message = f"Row {row_number}: Failed to create lead - {exc}"
            else:
                await self._store.commit()
                created += 1
                IMPORT_ROWS.labels(outcome="created").inc()
                continue

            await self._store.rollback()
            failed += 1
            if len(errors) < self._error_cap:
                errors.append(message)
            IMPORT_ROWS.labels(outcome="failed").inc()
            logger.warning(
                "import row %d failed: %s",
                row_number,
                message,
                extra={"org_id": str(org_id), "template_id": str(template_id)},
            )

        logger.info(
            "import finished: %d created, %d skipped, %d failed",
            created,
            skipped,
            failed,
            extra={"org_id": str(org_id), "template_id": str(template_id)},
        )
        return ImportResult(
            template_id=template_id,
            leads_created=created,
            rows_skipped=skipped,
            errors=errors,
            error_count=failed,
        )
