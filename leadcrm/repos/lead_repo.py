from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from leadcrm.models.lead import FieldValue, Lead
from leadcrm.services.errors import StoreError


class LeadRepo(Protocol):
    async def get(self, lead_id: UUID) -> Lead | None: ...
    async def add(self, lead: Lead) -> None: ...
    async def list_by_org(
        self, org_id: UUID, *, status: str | None = None
    ) -> list[Lead]: ...
    async def list_ids_in_org(
        self, org_id: UUID, lead_ids: Iterable[UUID]
    ) -> set[UUID]: ...
    async def count_by_template(
        self, template_id: UUID, *, org_id: UUID | None = None
    ) -> int: ...
    async def touch(self, lead_id: UUID, at: datetime) -> None: ...
    async def set_status(
        self, lead_ids: Iterable[UUID], status: str, at: datetime
    ) -> int: ...
    async def delete(self, lead_ids: Iterable[UUID]) -> int: ...
    async def list_values(self, lead_ids: Iterable[UUID]) -> list[FieldValue]: ...
    async def get_value(self, lead_id: UUID, field_id: UUID) -> FieldValue | None: ...
    async def add_values(self, values: list[FieldValue]) -> None: ...
    async def upsert_value(
        self, lead_id: UUID, field_id: UUID, value: str
    ) -> FieldValue: ...
    async def delete_values_for_fields(self, field_ids: Iterable[UUID]) -> int: ...
    async def delete_values_for_leads(self, lead_ids: Iterable[UUID]) -> int: ...


class InMemoryLeadRepo:
    def __init__(self) -> None:
        self._leads: dict[UUID, Lead] = {}
        self._values: dict[tuple[UUID, UUID], FieldValue] = {}

    async def get(self, lead_id: UUID) -> Lead | None:
        return self._leads.get(lead_id)

    async def add(self, lead: Lead) -> None:
        if lead.id in self._leads:
            raise StoreError("lead already exists")
        self._leads[lead.id] = lead

    async def list_by_org(
        self, org_id: UUID, *, status: str | None = None
    ) -> list[Lead]:
        leads = [
            lead
            for lead in self._leads.values()
            if lead.org_id == org_id and (status is None or lead.status == status)
        ]
        return sorted(leads, key=lambda lead: lead.created_at, reverse=True)

    async def list_ids_in_org(
        self, org_id: UUID, lead_ids: Iterable[UUID]
    ) -> set[UUID]:
        return {
            lead_id
            for lead_id in lead_ids
            if lead_id in self._leads and self._leads[lead_id].org_id == org_id
        }

    async def count_by_template(
        self, template_id: UUID, *, org_id: UUID | None = None
    ) -> int:
        return sum(
            1
            for lead in self._leads.values()
            if lead.template_id == template_id
            and (org_id is None or lead.org_id == org_id)
        )

    async def touch(self, lead_id: UUID, at: datetime) -> None:
        lead = self._leads.get(lead_id)
        if lead is not None:
            self._leads[lead_id] = replace(lead, updated_at=at)

    async def set_status(
        self, lead_ids: Iterable[UUID], status: str, at: datetime
    ) -> int:
        changed = 0
        for lead_id in lead_ids:
            lead = self._leads.get(lead_id)
            if lead is None:
                continue
            self._leads[lead_id] = replace(lead, status=status, updated_at=at)
            changed += 1
        return changed

    async def delete(self, lead_ids: Iterable[UUID]) -> int:
        return sum(1 for lead_id in lead_ids if self._leads.pop(lead_id, None))

    async def list_values(self, lead_ids: Iterable[UUID]) -> list[FieldValue]:
        wanted = set(lead_ids)
        return [v for v in self._values.values() if v.lead_id in wanted]

    async def get_value(self, lead_id: UUID, field_id: UUID) -> FieldValue | None:
        return self._values.get((lead_id, field_id))

    async def add_values(self, values: list[FieldValue]) -> None:
        """Insert all values or none; (lead, field) pairs must be new."""
        seen: set[tuple[UUID, UUID]] = set()
        for v in values:
            key = (v.lead_id, v.field_id)
            if v.lead_id not in self._leads:
                raise StoreError(f"lead {v.lead_id} does not exist")
            if key in self._values or key in seen:
                raise StoreError(f"value already exists for field {v.field_id}")
            seen.add(key)
        for v in values:
            self._values[(v.lead_id, v.field_id)] = v

    async def upsert_value(
        self, lead_id: UUID, field_id: UUID, value: str
    ) -> FieldValue:
        existing = self._values.get((lead_id, field_id))
        if existing is not None:
            updated = replace(existing, value=value)
        else:
            updated = FieldValue.new(lead_id=lead_id, field_id=field_id, value=value)
        self._values[(lead_id, field_id)] = updated
        return updated

    async def delete_values_for_fields(self, field_ids: Iterable[UUID]) -> int:
        wanted = set(field_ids)
        doomed = [k for k, v in self._values.items() if v.field_id in wanted]
        for k in doomed:
            del self._values[k]
        return len(doomed)

    async def delete_values_for_leads(self, lead_ids: Iterable[UUID]) -> int:
        wanted = set(lead_ids)
        doomed = [k for k, v in self._values.items() if v.lead_id in wanted]
        for k in doomed:
            del self._values[k]
        return len(doomed)
