from __future__ import annotations

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from leadcrm.models.organization import Role
from leadcrm.repos.lead_repo import InMemoryLeadRepo
from leadcrm.services.errors import AuthorizationDenied, StoreError
from leadcrm.services.import_service import (
    IMPORT_DESCRIPTION,
    ColumnMapping,
    ImportService,
    plan_columns,
)
from tests.conftest import Services, principal, seed_member


def _sample(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels)
    return value if value is not None else 0.0


MAPPINGS = [
    ColumnMapping(0, "Company", "company"),
    ColumnMapping(1, "E-mail", "email", field_type="email"),
    ColumnMapping(2, "Internal ID", "custom", excluded=True),
    ColumnMapping(3, "Notes", "custom", custom_label="Met at"),
]


def _org(services: Services):
    owner = principal()
    org = asyncio.run(services.members.create_organization(owner, "Acme"))
    return org, owner


def test_plan_columns_suffixes_collisions() -> None:
    columns = plan_columns(
        [
            ColumnMapping(0, "Email", "email"),
            ColumnMapping(1, "Work Email", "email"),
            ColumnMapping(2, "Other", "email"),
            ColumnMapping(3, "Skip", "email", excluded=True),
        ]
    )
    assert [c.key for c in columns] == ["email", "email_1", "email_2"]
    assert [c.spec.label for c in columns] == ["Email", "Work Email", "Other"]
    assert [c.index for c in columns] == [0, 1, 2]


def test_plan_columns_custom_labels_and_fallbacks() -> None:
    columns = plan_columns(
        [
            ColumnMapping(0, "Notes", "custom", custom_label="Met At"),
            ColumnMapping(1, "Budget", "custom"),
            ColumnMapping(2, "", "custom"),
            ColumnMapping(3, "%%%", "custom"),
        ]
    )
    assert [(c.key, c.spec.label) for c in columns] == [
        ("met_at", "Met At"),
        ("budget", "Budget"),
        ("column_3", "Column 3"),
        ("column_4", "%%%"),
    ]


def test_import_creates_template_and_leads(services: Services) -> None:
    org, owner = _org(services)
    before = _sample("import_rows_total", {"outcome": "created"})

    result = asyncio.run(
        services.imports.run(
            owner,
            org.id,
            "Expo list",
            MAPPINGS,
            [
                ["Acme", "a@acme.com", "X1", "booth 4"],
                ["", "  ", "", ""],
                ["Globex", "", "X2"],
            ],
        )
    )

    assert (result.leads_created, result.rows_skipped, result.error_count) == (2, 1, 0)
    detail = asyncio.run(services.schema.get_template(owner, org.id, result.template_id))
    assert detail.template.description == IMPORT_DESCRIPTION
    assert [f.key for f in detail.fields] == ["company", "email", "met_at"]
    assert detail.lead_count == 2

    leads = asyncio.run(services.leads.list_leads(owner, org.id))
    assert sorted(s.display_name for s in leads) == ["Acme", "Globex"]
    assert {s.lead.status for s in leads} == {"draft"}
    assert _sample("import_rows_total", {"outcome": "created"}) - before == 2


def test_row_with_only_excluded_cells_is_skipped(services: Services) -> None:
    org, owner = _org(services)
    rows = [["", "", "ID-9", ""], ["", "", "", "", "stray"], ["Acme", "", "ID-1", ""]]

    result = asyncio.run(services.imports.run(owner, org.id, "Expo", MAPPINGS, rows))

    assert (result.leads_created, result.rows_skipped) == (1, 2)
    leads = asyncio.run(services.leads.list_leads(owner, org.id))
    assert [s.display_name for s in leads] == ["Acme"]


class FlakyValuesRepo(InMemoryLeadRepo):
    """Rejects values whose text starts with "bad"."""

    async def add_values(self, values):
        if any(v.value.startswith("bad") for v in values):
            raise StoreError("constraint violated")
        await super().add_values(values)


def test_failed_rows_are_reported_and_rolled_back(services: Services) -> None:
    org, owner = _org(services)
    services.store.leads = FlakyValuesRepo()
    rows = [["Acme", "a@acme.com"], ["bad-co", "b@x.com"], ["Initech", ""]]

    result = asyncio.run(
        services.imports.run(owner, org.id, "List", MAPPINGS[:2], rows)
    )

    assert result.leads_created == 2
    assert result.errors == [
        "Row 3: Failed to save field values - constraint violated"
    ]
    # No ghost lead for the failed row.
    leads = asyncio.run(services.store.leads.list_by_org(org.id))
    assert len(leads) == 2


def test_error_list_is_capped_but_counted(services: Services) -> None:
    org, owner = _org(services)
    services.store.leads = FlakyValuesRepo()
    imports = ImportService(
        services.store,
        services.permissions,
        services.schema,
        services.leads,
        error_cap=3,
    )
    rows = [[f"bad-{i}", ""] for i in range(5)] + [["Good", ""]]

    result = asyncio.run(imports.run(owner, org.id, "List", MAPPINGS[:2], rows))

    assert result.leads_created == 1
    assert result.error_count == 5
    assert len(result.errors) == 3
    assert [e.split(":")[0] for e in result.errors] == ["Row 2", "Row 3", "Row 4"]


def test_every_failure_is_logged_past_the_cap(
    services: Services, caplog: pytest.LogCaptureFixture
) -> None:
    org, owner = _org(services)
    services.store.leads = FlakyValuesRepo()
    imports = ImportService(
        services.store,
        services.permissions,
        services.schema,
        services.leads,
        error_cap=1,
    )
    rows = [[f"bad-{i}", ""] for i in range(4)]

    with caplog.at_level(logging.WARNING, logger="leadcrm.services.import_service"):
        result = asyncio.run(imports.run(owner, org.id, "List", MAPPINGS[:2], rows))

    assert result.errors == ["Row 2: Failed to save field values - constraint violated"]
    assert result.error_count == 4
    failed = [r for r in caplog.records if "import row" in r.getMessage()]
    assert [r.getMessage().split(" failed")[0] for r in failed] == [
        "import row 2",
        "import row 3",
        "import row 4",
        "import row 5",
    ]


def test_zero_error_cap_keeps_no_messages(services: Services) -> None:
    org, owner = _org(services)
    services.store.leads = FlakyValuesRepo()
    imports = ImportService(
        services.store,
        services.permissions,
        services.schema,
        services.leads,
        error_cap=0,
    )
    rows = [["bad-a", ""], ["bad-b", ""]]

    result = asyncio.run(imports.run(owner, org.id, "List", MAPPINGS[:2], rows))

    assert result.errors == []
    assert result.error_count == 2


def test_member_cannot_import(services: Services) -> None:
    org, _owner = _org(services)
    member = seed_member(services.store, org, Role.MEMBER)
    with pytest.raises(AuthorizationDenied):
        asyncio.run(services.imports.run(member, org.id, "List", MAPPINGS, []))
    assert asyncio.run(services.store.templates.list_visible(org.id)) == []
