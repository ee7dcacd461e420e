from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from leadcrm.models.organization import utcnow

# Templates owned by this pseudo-organization are visible to every org.
UNIVERSAL_ORG_ID = UUID("00000000-0000-0000-0000-000000000000")

FIELD_TYPES = frozenset(
    {
        "text",
        "number",
        "date",
        "email",
        "phone",
        "select",
        "multiselect",
        "url",
        "textarea",
    }
)


@dataclass(frozen=True, slots=True)
class Field:
    id: UUID
    template_id: UUID
    key: str
    label: str
    field_type: str = "text"
    is_required: bool = False
    sort_order: int = 0


@dataclass(frozen=True, slots=True)
class Template:
    id: UUID
    org_id: UUID
    name: str
    description: str | None = None
    is_default: bool = False
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new(
        *,
        org_id: UUID,
        name: str,
        description: str | None = None,
        is_default: bool = False,
        created_by: str | None = None,
    ) -> Template:
        return Template(
            id=uuid4(),
            org_id=org_id,
            name=name,
            description=description,
            is_default=is_default,
            created_by=created_by,
        )

    @property
    def is_universal(self) -> bool:
        return self.org_id == UNIVERSAL_ORG_ID

    def visible_to(self, org_id: UUID) -> bool:
        return self.is_universal or self.org_id == org_id


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """A field as requested by a caller, before it has an id."""

    label: str
    field_type: str = "text"
    key: str | None = None
    is_required: bool = False
