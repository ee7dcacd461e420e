from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from leadcrm.api.dependencies import PrincipalDep, get_schema_service
from leadcrm.models.template import Field as TemplateField
from leadcrm.models.template import FieldSpec, Template
from leadcrm.services.schema_service import SchemaService, TemplateDetail

router = APIRouter(prefix="/v1/orgs/{org_id}/templates", tags=["templates"])

SchemaDep = Annotated[SchemaService, Depends(get_schema_service)]


# --- Pydantic schemas ---


class FieldIn(BaseModel):
    label: str = Field(min_length=1, max_length=200)
    field_type: str = "text"
    key: str | None = None
    is_required: bool = False


class TemplateCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_default: bool = False
    fields: list[FieldIn] = Field(min_length=1)


class FieldOut(BaseModel):
    id: str
    key: str
    label: str
    field_type: str
    is_required: bool
    sort_order: int


class TemplateOut(BaseModel):
    id: str
    org_id: str
    name: str
    description: str | None
    is_default: bool
    is_universal: bool
    created_at: str


class TemplateSummaryOut(TemplateOut):
    field_count: int
    lead_count: int


class TemplateDetailOut(TemplateOut):
    fields: list[FieldOut]
    lead_count: int


def _template_out(t: Template) -> dict:
    return {
        "id": str(t.id),
        "org_id": str(t.org_id),
        "name": t.name,
        "description": t.description,
        "is_default": t.is_default,
        "is_universal": t.is_universal,
        "created_at": t.created_at.isoformat(),
    }


def _field_out(f: TemplateField) -> FieldOut:
    return FieldOut(
        id=str(f.id),
        key=f.key,
        label=f.label,
        field_type=f.field_type,
        is_required=f.is_required,
        sort_order=f.sort_order,
    )


def _detail_out(detail: TemplateDetail) -> TemplateDetailOut:
    return TemplateDetailOut(
        **_template_out(detail.template),
        fields=[_field_out(f) for f in detail.fields],
        lead_count=detail.lead_count,
    )


# --- Endpoints ---


@router.get("", response_model=list[TemplateSummaryOut])
async def list_templates(
    org_id: UUID, principal: PrincipalDep, service: SchemaDep
) -> list[TemplateSummaryOut]:
    """The org's templates and the universal ones, default first."""
    return [
        TemplateSummaryOut(
            **_template_out(s.template),
            field_count=s.field_count,
            lead_count=s.lead_count,
        )
        for s in await service.list_templates(principal, org_id)
    ]


@router.post("", response_model=TemplateDetailOut, status_code=status.HTTP_201_CREATED)
async def create_template(
    org_id: UUID,
    body: TemplateCreateIn,
    principal: PrincipalDep,
    service: SchemaDep,
) -> TemplateDetailOut:
    detail = await service.create_template(
        principal,
        org_id,
        body.name,
        [
            FieldSpec(
                label=f.label,
                field_type=f.field_type,
                key=f.key,
                is_required=f.is_required,
            )
            for f in body.fields
        ],
        description=body.description,
        is_default=body.is_default,
    )
    return _detail_out(detail)


@router.get("/{template_id}", response_model=TemplateDetailOut)
async def get_template(
    org_id: UUID,
    template_id: UUID,
    principal: PrincipalDep,
    service: SchemaDep,
) -> TemplateDetailOut:
    return _detail_out(await service.get_template(principal, org_id, template_id))


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    org_id: UUID,
    template_id: UUID,
    principal: PrincipalDep,
    service: SchemaDep,
) -> None:
    """Refused while any lead still uses the template."""
    await service.delete_template(principal, template_id, org_id)
