"""Lead endpoints.

Creating a single lead is lenient: if the lead row is written but its
values are not, the response is still 201 and ``errors`` says what was
lost.  Clients must check it.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from leadcrm.api.dependencies import PrincipalDep, get_lead_service
from leadcrm.models.lead import DEFAULT_LEAD_STATUS, Lead
from leadcrm.services.lead_service import LeadService

router = APIRouter(prefix="/v1/orgs/{org_id}/leads", tags=["leads"])

LeadDep = Annotated[LeadService, Depends(get_lead_service)]


# --- Pydantic schemas ---


class LeadCreateIn(BaseModel):
    template_id: UUID
    status: str = DEFAULT_LEAD_STATUS
    # field key -> raw value
    values: dict[str, str] = Field(default_factory=dict)


class LeadOut(BaseModel):
    id: str
    org_id: str
    template_id: str
    status: str
    created_by: str
    created_at: str
    updated_at: str


class LeadCreateOut(BaseModel):
    lead: LeadOut
    values_written: int
    errors: list[str]


class LabeledValueOut(BaseModel):
    label: str
    value: str


class LeadSummaryOut(LeadOut):
    display_name: str
    avatar_initial: str
    values: list[LabeledValueOut]


class LeadFieldOut(BaseModel):
    field_id: str
    key: str
    label: str
    field_type: str
    value: str | None


class LeadDetailOut(LeadOut):
    display_name: str
    fields: list[LeadFieldOut]
    missing_field_ids: list[str]


class ValueIn(BaseModel):
    value: str


class ValueOut(BaseModel):
    lead_id: str
    field_id: str
    value: str


class MissingFieldsIn(BaseModel):
    # field id -> raw value
    values: dict[UUID, str]


class MissingFieldsOut(BaseModel):
    inserted: int


class BulkStatusIn(BaseModel):
    lead_ids: list[UUID]
    status: str


class BulkDeleteIn(BaseModel):
    lead_ids: list[UUID]


class BulkOut(BaseModel):
    affected: int


def _lead_out(lead: Lead) -> dict:
    return {
        "id": str(lead.id),
        "org_id": str(lead.org_id),
        "template_id": str(lead.template_id),
        "status": lead.status,
        "created_by": lead.created_by,
        "created_at": lead.created_at.isoformat(),
        "updated_at": lead.updated_at.isoformat(),
    }


# --- Endpoints ---


@router.get("", response_model=list[LeadSummaryOut])
async def list_leads(
    org_id: UUID,
    principal: PrincipalDep,
    service: LeadDep,
    search: Annotated[str | None, Query(max_length=200)] = None,
    lead_status: Annotated[str | None, Query(alias="status")] = None,
) -> list[LeadSummaryOut]:
    """Newest first, optionally filtered by status and a search string."""
    summaries = await service.list_leads(
        principal, org_id, search=search, status=lead_status
    )
    return [
        LeadSummaryOut(
            **_lead_out(s.lead),
            display_name=s.display_name,
            avatar_initial=s.avatar_initial,
            values=[LabeledValueOut(label=v.label, value=v.value) for v in s.values],
        )
        for s in summaries
    ]


@router.post("", response_model=LeadCreateOut, status_code=status.HTTP_201_CREATED)
async def create_lead(
    org_id: UUID,
    body: LeadCreateIn,
    principal: PrincipalDep,
    service: LeadDep,
) -> LeadCreateOut:
    result = await service.create_lead(
        principal, org_id, body.template_id, body.values, status=body.status
    )
    return LeadCreateOut(
        lead=LeadOut(**_lead_out(result.lead)),
        values_written=result.values_written,
        errors=result.errors,
    )


@router.post("/bulk-status", response_model=BulkOut)
async def bulk_status(
    org_id: UUID,
    body: BulkStatusIn,
    principal: PrincipalDep,
    service: LeadDep,
) -> BulkOut:
    """All-or-nothing: one foreign id rejects the whole batch."""
    changed = await service.update_status(principal, org_id, body.lead_ids, body.status)
    return BulkOut(affected=changed)


@router.post("/bulk-delete", response_model=BulkOut)
async def bulk_delete(
    org_id: UUID,
    body: BulkDeleteIn,
    principal: PrincipalDep,
    service: LeadDep,
) -> BulkOut:
    deleted = await service.delete_leads(principal, org_id, body.lead_ids)
    return BulkOut(affected=deleted)


@router.get("/{lead_id}", response_model=LeadDetailOut)
async def get_lead(
    org_id: UUID,
    lead_id: UUID,
    principal: PrincipalDep,
    service: LeadDep,
) -> LeadDetailOut:
    detail = await service.get_lead(principal, org_id, lead_id)
    return LeadDetailOut(
        **_lead_out(detail.lead),
        display_name=detail.display_name,
        fields=[
            LeadFieldOut(
                field_id=str(f.id),
                key=f.key,
                label=f.label,
                field_type=f.field_type,
                value=detail.values[f.id].value if f.id in detail.values else None,
            )
            for f in detail.fields
        ],
        missing_field_ids=[str(f.id) for f in detail.missing_fields],
    )


@router.put("/{lead_id}/values/{field_id}", response_model=ValueOut)
async def put_value(
    org_id: UUID,
    lead_id: UUID,
    field_id: UUID,
    body: ValueIn,
    principal: PrincipalDep,
    service: LeadDep,
) -> ValueOut:
    saved = await service.upsert_field_value(
        principal, org_id, lead_id, field_id, body.value
    )
    return ValueOut(
        lead_id=str(saved.lead_id), field_id=str(saved.field_id), value=saved.value
    )


@router.post("/{lead_id}/missing-fields", response_model=MissingFieldsOut)
async def fill_missing_fields(
    org_id: UUID,
    lead_id: UUID,
    body: MissingFieldsIn,
    principal: PrincipalDep,
    service: LeadDep,
) -> MissingFieldsOut:
    """Fill only fields without a value. Safe to repeat."""
    inserted = await service.reconcile_missing_fields(
        principal, org_id, lead_id, body.values
    )
    return MissingFieldsOut(inserted=inserted)
