"""Leads and their field values.

Single-lead creation is lenient: when the field values fail to write,
the lead is kept and the failure comes back in ``LeadWriteResult.errors``
(and the log).  Imports pass ``strict=True`` instead, which deletes the
lead and re-raises, so a bulk import never leaves empty ghost leads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from leadcrm.models.lead import DEFAULT_LEAD_STATUS, FieldValue, LabeledValue, Lead
from leadcrm.models.organization import utcnow
from leadcrm.models.principal import Principal
from leadcrm.models.template import Field
from leadcrm.repos.store import Store
from leadcrm.services.display import avatar_initial, display_name
from leadcrm.services.errors import (
    FieldValuesNotSaved,
    InvariantViolation,
    NotFound,
    StoreError,
)
from leadcrm.services.permissions import PermissionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LeadWriteResult:
    lead: Lead
    values_written: int
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class LeadDetail:
    lead: Lead
    display_name: str
    fields: list[Field]
    values: dict[UUID, FieldValue]  # by field id
    missing_fields: list[Field]


@dataclass(frozen=True, slots=True)
class LeadSummary:
    lead: Lead
    display_name: str
    avatar_initial: str
    values: list[LabeledValue]


class LeadService:
    def __init__(
        self,
        store: Store,
        permissions: PermissionService,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._permissions = permissions
        self._clock = clock

    async def create_lead(
        self,
        actor: Principal,
        org_id: UUID,
        template_id: UUID,
        values: Mapping[str, str],
        *,
        status: str = DEFAULT_LEAD_STATUS,
        strict: bool = False,
    ) -> LeadWriteResult:
        """Create a lead and one value per template field with a non-blank input.

        Keys that match no field are ignored.
        """
        await self._permissions.require(
            actor,
            org_id,
            "can_create_leads",
            "You don't have permission to create leads",
        )
        status = _clean_status(status)
        template = await self._store.templates.get(template_id)
        if template is None or not template.visible_to(org_id):
            raise NotFound("Template not found")
        fields = await self._store.templates.list_fields(template_id)

        lead = Lead.new(
            org_id=org_id,
            template_id=template_id,
            created_by=actor.user_id,
            status=status,
        )
        await self._store.leads.add(lead)

        rows = []
        for f in fields:
            raw = values.get(f.key)
            if raw is None or not raw.strip():
                continue
            rows.append(
                FieldValue.new(lead_id=lead.id, field_id=f.id, value=raw.strip())
            )

        if rows:
            try:
                await self._store.leads.add_values(rows)
            except StoreError as exc:
                if strict:
                    await self._store.leads.delete([lead.id])
                    raise FieldValuesNotSaved(str(exc)) from exc
                logger.error(
                    "lead created but its field values failed: %s",
                    exc,
                    extra={"org_id": str(org_id), "lead_id": str(lead.id)},
                )
                return LeadWriteResult(
                    lead=lead,
                    values_written=0,
                    errors=[f"Failed to save field values: {exc}"],
                )

        logger.info(
            "lead created with %d value(s)",
            len(rows),
            extra={"org_id": str(org_id), "lead_id": str(lead.id)},
        )
        return LeadWriteResult(lead=lead, values_written=len(rows))

    async def get_lead(
        self, actor: Principal, org_id: UUID, lead_id: UUID
    ) -> LeadDetail:
        await self._permissions.require(
            actor, org_id, "can_view_leads", "You don't have permission to view leads"
        )
        lead = await self._lead_in_org(org_id, lead_id)
        fields = await self._store.templates.list_fields(lead.template_id)
        values = await self._store.leads.list_values([lead.id])
        by_field = {v.field_id: v for v in values}
        return LeadDetail(
            lead=lead,
            display_name=display_name(lead.id, _labeled(fields, by_field)),
            fields=fields,
            values=by_field,
            missing_fields=[f for f in fields if f.id not in by_field],
        )

    async def list_leads(
        self,
        actor: Principal,
        org_id: UUID,
        *,
        search: str | None = None,
        status: str | None = None,
    ) -> list[LeadSummary]:
        """Newest first. ``search`` matches display names and values."""
        await self._permissions.require(
            actor, org_id, "can_view_leads", "You don't have permission to view leads"
        )
        leads = await self._store.leads.list_by_org(org_id, status=status)
        values_by_lead: dict[UUID, dict[UUID, FieldValue]] = {}
        for v in await self._store.leads.list_values([lead.id for lead in leads]):
            values_by_lead.setdefault(v.lead_id, {})[v.field_id] = v

        fields_by_template: dict[UUID, list[Field]] = {}
        needle = (search or "").strip().lower()
        summaries = []
        for lead in leads:
            if lead.template_id not in fields_by_template:
                fields_by_template[lead.template_id] = (
                    await self._store.templates.list_fields(lead.template_id)
                )
            labeled = _labeled(
                fields_by_template[lead.template_id], values_by_lead.get(lead.id, {})
            )
            name = display_name(lead.id, labeled)
            if needle and not (
                needle in name.lower()
                or any(needle in v.value.lower() for v in labeled)
            ):
                continue
            summaries.append(
                LeadSummary(
                    lead=lead,
                    display_name=name,
                    avatar_initial=avatar_initial(name),
                    values=labeled,
                )
            )
        return summaries

    async def upsert_field_value(
        self,
        actor: Principal,
        org_id: UUID,
        lead_id: UUID,
        field_id: UUID,
        value: str,
    ) -> FieldValue:
        await self._permissions.require(
            actor, org_id, "can_edit_leads", "You don't have permission to edit leads"
        )
        lead = await self._lead_in_org(org_id, lead_id)
        await self._field_of(lead, field_id)
        saved = await self._store.leads.upsert_value(lead_id, field_id, value)
        await self._store.leads.touch(lead_id, self._clock())
        logger.info(
            "lead value saved",
            extra={"org_id": str(org_id), "lead_id": str(lead_id)},
        )
        return saved

    async def reconcile_missing_fields(
        self,
        actor: Principal,
        org_id: UUID,
        lead_id: UUID,
        supplied: Mapping[UUID, str],
    ) -> int:
        """Fill fields that have no value yet; never overwrites.

        Blank inputs and fields that already hold a value are skipped, so
        repeating a call inserts nothing. Returns the number inserted.
        """
        await self._permissions.require(
            actor, org_id, "can_edit_leads", "You don't have permission to edit leads"
        )
        lead = await self._lead_in_org(org_id, lead_id)
        template_fields = await self._store.templates.list_fields(lead.template_id)
        fields = {f.id for f in template_fields}
        present = {v.field_id for v in await self._store.leads.list_values([lead_id])}

        rows = []
        for field_id, raw in supplied.items():
            if field_id not in fields:
                raise NotFound("Field not found")
            text = raw.strip()
            if not text or field_id in present:
                continue
            rows.append(FieldValue.new(lead_id=lead_id, field_id=field_id, value=text))
            present.add(field_id)

        if rows:
            await self._store.leads.add_values(rows)
            await self._store.leads.touch(lead_id, self._clock())
            logger.info(
                "filled %d missing field(s)",
                len(rows),
                extra={"org_id": str(org_id), "lead_id": str(lead_id)},
            )
        return len(rows)

    async def update_status(
        self, actor: Principal, org_id: UUID, lead_ids: Iterable[UUID], status: str
    ) -> int:
        await self._permissions.require(
            actor, org_id, "can_edit_leads", "You don't have permission to edit leads"
        )
        status = _clean_status(status)
        ids = await self._owned_ids(org_id, lead_ids)
        changed = await self._store.leads.set_status(ids, status, self._clock())
        logger.info(
            "status of %d lead(s) set to %s",
            changed,
            status,
            extra={"org_id": str(org_id)},
        )
        return changed

    async def delete_leads(
        self, actor: Principal, org_id: UUID, lead_ids: Iterable[UUID]
    ) -> int:
        """Delete leads and their values. All ids must belong to the org."""
        await self._permissions.require(
            actor,
            org_id,
            "can_delete_leads",
            "You don't have permission to delete leads",
        )
        ids = await self._owned_ids(org_id, lead_ids)
        await self._store.leads.delete_values_for_leads(ids)
        deleted = await self._store.leads.delete(ids)
        logger.info("deleted %d lead(s)", deleted, extra={"org_id": str(org_id)})
        return deleted

    async def _lead_in_org(self, org_id: UUID, lead_id: UUID) -> Lead:
        lead = await self._store.leads.get(lead_id)
        if lead is None or lead.org_id != org_id:
            raise NotFound("Lead not found")
        return lead

    async def _field_of(self, lead: Lead, field_id: UUID) -> Field:
        for f in await self._store.templates.list_fields(lead.template_id):
            if f.id == field_id:
                return f
        raise NotFound("Field not found")

    async def _owned_ids(self, org_id: UUID, lead_ids: Iterable[UUID]) -> list[UUID]:
        ids = list(dict.fromkeys(lead_ids))
        if not ids:
            raise InvariantViolation("No leads selected", reason="invalid_input")
        owned = await self._store.leads.list_ids_in_org(org_id, ids)
        if len(owned) != len(ids):
            raise NotFound(
                "Some leads do not exist or do not belong to this organization"
            )
        return ids


def _clean_status(status: str) -> str:
    status = status.strip()
    if not status:
        raise InvariantViolation("Lead status is required", reason="invalid_input")
    return status


def _labeled(
    fields: list[Field], by_field: Mapping[UUID, FieldValue]
) -> list[LabeledValue]:
    """Values paired with their labels, in field order."""
    return [
        LabeledValue(label=f.label, value=by_field[f.id].value)
        for f in fields
        if f.id in by_field
    ]
