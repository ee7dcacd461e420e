"""Lead templates and their fields.

A Template is an ordered set of Fields; every Lead is created against
one Template and stores one Value per Field.  Templates owned by the
universal pseudo-organization are readable by every org and deletable
by none.

Field keys are machine names derived from labels ("First Name" ->
"first_name").  Two labels can collapse to the same key, so uniqueness
is checked after derivation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import NoReturn
from uuid import UUID, uuid4

from leadcrm.core.metrics import AUTHORIZATION_DENIALS
from leadcrm.models.principal import Principal
from leadcrm.models.template import FIELD_TYPES, Field, FieldSpec, Template
from leadcrm.repos.store import Store
from leadcrm.services.errors import (
    AuthorizationDenied,
    InvariantViolation,
    NotFound,
    StoreError,
)
from leadcrm.services.permissions import PermissionService

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_NON_KEY_CHARS = re.compile(r"[^a-z0-9_]")


def field_key_from_label(label: str) -> str:
    key = _WHITESPACE.sub("_", label.strip().lower())
    return _NON_KEY_CHARS.sub("", key).strip("_")


@dataclass(frozen=True, slots=True)
class TemplateDetail:
    template: Template
    fields: list[Field]
    lead_count: int = 0


@dataclass(frozen=True, slots=True)
class TemplateSummary:
    template: Template
    field_count: int
    lead_count: int


class SchemaService:
    def __init__(self, store: Store, permissions: PermissionService) -> None:
        self._store = store
        self._permissions = permissions

    async def create_template(
        self,
        actor: Principal,
        org_id: UUID,
        name: str,
        fields: list[FieldSpec],
        *,
        description: str | None = None,
        is_default: bool = False,
    ) -> TemplateDetail:
        """Create a template and its fields as one unit.

        If the fields cannot be written the template row is deleted
        again before the error propagates, so no field-less template
        survives.
        """
        await self._permissions.require(
            actor,
            org_id,
            "can_create_templates",
            "You don't have permission to create templates",
        )
        name = name.strip()
        if not name:
            raise InvariantViolation(
                "Template name is required", reason="invalid_input"
            )
        if not fields:
            raise InvariantViolation(
                "A template needs at least one field", reason="invalid_input"
            )

        template = Template.new(
            org_id=org_id,
            name=name,
            description=(description or "").strip() or None,
            is_default=is_default,
            created_by=actor.user_id,
        )
        rows = self._build_fields(template.id, fields)

        await self._store.templates.add(template)
        try:
            await self._store.templates.add_fields(rows)
        except StoreError:
            logger.error(
                "field insert failed; deleting template",
                extra={"org_id": str(org_id), "template_id": str(template.id)},
            )
            await self._store.templates.delete(template.id)
            raise

        if is_default:
            await self._store.templates.clear_default(org_id, keep=template.id)
        logger.info(
            "template created with %d field(s)",
            len(rows),
            extra={"org_id": str(org_id), "template_id": str(template.id)},
        )
        return TemplateDetail(template=template, fields=rows)

    async def list_templates(
        self, actor: Principal, org_id: UUID
    ) -> list[TemplateSummary]:
        """The org's templates plus universal ones, default first."""
        await self._permissions.require(
            actor,
            org_id,
            "can_view_templates",
            "You don't have permission to view templates",
        )
        summaries = []
        for t in await self._store.templates.list_visible(org_id):
            fields = await self._store.templates.list_fields(t.id)
            leads = await self._store.leads.count_by_template(t.id, org_id=org_id)
            summaries.append(
                TemplateSummary(template=t, field_count=len(fields), lead_count=leads)
            )
        summaries.sort(
            key=lambda s: (
                not s.template.is_default,
                s.template.is_universal,
                s.template.created_at,
            )
        )
        return summaries

    async def get_template(
        self, actor: Principal, org_id: UUID, template_id: UUID
    ) -> TemplateDetail:
        await self._permissions.require(
            actor,
            org_id,
            "can_view_templates",
            "You don't have permission to view templates",
        )
        template = await self.visible_template(org_id, template_id)
        return TemplateDetail(
            template=template,
            fields=await self._store.templates.list_fields(template_id),
            lead_count=await self._store.leads.count_by_template(
                template_id, org_id=org_id
            ),
        )

    async def visible_template(self, org_id: UUID, template_id: UUID) -> Template:
        """Load a template the org may use; no capability check."""
        template = await self._store.templates.get(template_id)
        if template is None or not template.visible_to(org_id):
            raise NotFound("Template not found")
        return template

    async def delete_template(
        self, actor: Principal, template_id: UUID, org_id: UUID
    ) -> None:
        await self._permissions.require(
            actor,
            org_id,
            "can_delete_templates",
            "You don't have permission to delete templates",
        )
        template = await self._store.templates.get(template_id)
        if template is None:
            raise NotFound("Template not found")
        if template.is_universal:
            self._deny("Cannot delete universal templates", "universal_template")
        if template.org_id != org_id:
            self._deny(
                "Cannot delete templates from other organizations",
                "cross_organization",
            )
        if template.is_default:
            raise InvariantViolation(
                "Cannot delete default template", reason="default_template"
            )
        in_use = await self._store.leads.count_by_template(template_id)
        if in_use > 0:
            noun = "lead" if in_use == 1 else "leads"
            raise InvariantViolation(
                f'Cannot delete template "{template.name}" because it is being '
                f"used by {in_use} {noun}",
                reason="template_in_use",
            )

        fields = await self._store.templates.list_fields(template_id)
        await self._store.leads.delete_values_for_fields([f.id for f in fields])
        await self._store.templates.delete_fields(template_id)
        await self._store.templates.delete(template_id)
        logger.info(
            "template deleted",
            extra={"org_id": str(org_id), "template_id": str(template_id)},
        )

    @staticmethod
    def _deny(message: str, reason: str) -> NoReturn:
        AUTHORIZATION_DENIALS.labels(reason=reason).inc()
        raise AuthorizationDenied(message, reason=reason)

    @staticmethod
    def _build_fields(template_id: UUID, specs: list[FieldSpec]) -> list[Field]:
        fields: list[Field] = []
        seen: set[str] = set()
        for position, spec in enumerate(specs):
            label = spec.label.strip()
            if not label:
                raise InvariantViolation(
                    "Every field needs a label", reason="invalid_input"
                )
            key = field_key_from_label(spec.key or label)
            if not key:
                raise InvariantViolation(
                    f'Field "{label}" does not produce a usable key',
                    reason="invalid_input",
                )
            if key in seen:
                raise InvariantViolation(
                    f'Duplicate field key "{key}"', reason="duplicate_field_key"
                )
            if spec.field_type not in FIELD_TYPES:
                raise InvariantViolation(
                    f'Unknown field type "{spec.field_type}"', reason="invalid_input"
                )
            seen.add(key)
            fields.append(
                Field(
                    id=uuid4(),
                    template_id=template_id,
                    key=key,
                    label=label,
                    field_type=spec.field_type,
                    is_required=spec.is_required,
                    sort_order=position,
                )
            )
        return fields
