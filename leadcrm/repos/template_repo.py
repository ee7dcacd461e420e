from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from leadcrm.models.template import UNIVERSAL_ORG_ID, Field, Template
from leadcrm.services.errors import StoreError


class TemplateRepo(Protocol):
    async def get(self, template_id: UUID) -> Template | None: ...
    async def add(self, template: Template) -> None: ...
    async def add_fields(self, fields: list[Field]) -> None: ...
    async def list_fields(self, template_id: UUID) -> list[Field]: ...
    async def list_visible(self, org_id: UUID) -> list[Template]: ...
    async def clear_default(
        self, org_id: UUID, *, keep: UUID | None = None
    ) -> None: ...
    async def delete_fields(self, template_id: UUID) -> int: ...
    async def delete(self, template_id: UUID) -> bool: ...


class InMemoryTemplateRepo:
    def __init__(self) -> None:
        self._templates: dict[UUID, Template] = {}
        self._fields: dict[UUID, Field] = {}

    async def get(self, template_id: UUID) -> Template | None:
        return self._templates.get(template_id)

    async def add(self, template: Template) -> None:
        if template.id in self._templates:
            raise StoreError("template already exists")
        self._templates[template.id] = template

    async def add_fields(self, fields: list[Field]) -> None:
        """Insert all fields or none of them."""
        taken = {(f.template_id, f.key) for f in self._fields.values()}
        for f in fields:
            if f.template_id not in self._templates:
                raise StoreError(f"template {f.template_id} does not exist")
            if (f.template_id, f.key) in taken:
                raise StoreError(f"duplicate field key {f.key!r}")
            taken.add((f.template_id, f.key))
        for f in fields:
            self._fields[f.id] = f

    async def list_fields(self, template_id: UUID) -> list[Field]:
        fields = [f for f in self._fields.values() if f.template_id == template_id]
        return sorted(fields, key=lambda f: f.sort_order)

    async def list_visible(self, org_id: UUID) -> list[Template]:
        return [
            t
            for t in self._templates.values()
            if t.org_id in (org_id, UNIVERSAL_ORG_ID)
        ]

    async def clear_default(
        self, org_id: UUID, *, keep: UUID | None = None
    ) -> None:
        for t in list(self._templates.values()):
            if t.org_id == org_id and t.is_default and t.id != keep:
                self._templates[t.id] = replace(t, is_default=False)

    async def delete_fields(self, template_id: UUID) -> int:
        doomed = [f.id for f in self._fields.values() if f.template_id == template_id]
        for field_id in doomed:
            del self._fields[field_id]
        return len(doomed)

    async def delete(self, template_id: UUID) -> bool:
        return self._templates.pop(template_id, None) is not None
