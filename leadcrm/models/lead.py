from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from leadcrm.models.organization import utcnow

DEFAULT_LEAD_STATUS = "draft"


@dataclass(frozen=True, slots=True)
class Lead:
    id: UUID
    org_id: UUID
    template_id: UUID
    status: str  # workflow state, stored verbatim
    created_by: str
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def new(
        *, org_id: UUID, template_id: UUID, created_by: str, status: str
    ) -> Lead:
        now = utcnow()
        return Lead(
            id=uuid4(),
            org_id=org_id,
            template_id=template_id,
            status=status,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True, slots=True)
class FieldValue:
    id: UUID
    lead_id: UUID
    field_id: UUID
    value: str

    @staticmethod
    def new(*, lead_id: UUID, field_id: UUID, value: str) -> FieldValue:
        return FieldValue(id=uuid4(), lead_id=lead_id, field_id=field_id, value=value)


@dataclass(frozen=True, slots=True)
class LabeledValue:
    """A Value joined with its Field's label; the input to display naming."""

    label: str
    value: str
