"""Spreadsheet import endpoint.

Parsing the file is the client's job; this endpoint receives the header
mapping and the rows as strings.  The response is 201 even when some
rows failed: the template and every good row are already committed.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from leadcrm.api.dependencies import PrincipalDep, get_import_service
from leadcrm.services.import_service import ColumnMapping, ImportService

router = APIRouter(prefix="/v1/orgs/{org_id}/imports", tags=["imports"])

ImportDep = Annotated[ImportService, Depends(get_import_service)]


class ColumnMappingIn(BaseModel):
    column_index: int = Field(ge=0)
    column_name: str = ""
    target: str
    field_type: str = "text"
    custom_label: str | None = None
    excluded: bool = False


class ImportIn(BaseModel):
    template_name: str = Field(min_length=1, max_length=200)
    mappings: list[ColumnMappingIn] = Field(min_length=1)
    rows: list[list[str]]


class ImportOut(BaseModel):
    template_id: str
    leads_created: int
    rows_skipped: int
    error_count: int
    errors: list[str]


@router.post("", response_model=ImportOut, status_code=status.HTTP_201_CREATED)
async def run_import(
    org_id: UUID,
    body: ImportIn,
    principal: PrincipalDep,
    service: ImportDep,
) -> ImportOut:
    result = await service.run(
        principal,
        org_id,
        body.template_name,
        [ColumnMapping(**m.model_dump()) for m in body.mappings],
        body.rows,
    )
    return ImportOut(
        template_id=str(result.template_id),
        leads_created=result.leads_created,
        rows_skipped=result.rows_skipped,
        error_count=result.error_count,
        errors=result.errors,
    )
