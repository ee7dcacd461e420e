from __future__ import annotations

from uuid import UUID

import pytest

from leadcrm.models.lead import LabeledValue
from leadcrm.services.display import avatar_initial, display_name

LEAD_ID = UUID("1234abcd-0000-4000-8000-000000000000")


def _v(label: str, value: str) -> LabeledValue:
    return LabeledValue(label=label, value=value)


def test_no_values_falls_back_to_lead_number() -> None:
    assert display_name(LEAD_ID, []) == "Lead #1234abcd"


def test_company_beats_email() -> None:
    values = [_v("Email", "a@acme.com"), _v("Company", "Acme")]
    assert display_name(LEAD_ID, values) == "Acme"


@pytest.mark.parametrize(
    "values,expected",
    [
        ([_v("Contact Name", "Ann Lee"), _v("Company", "Acme")], "Ann Lee"),
        ([_v("Job Title", "CTO"), _v("Email", "x@y.io")], "CTO"),
        # A blank preferred value is skipped, not returned.
        ([_v("Name", "   "), _v("Company", "Acme")], "Acme"),
        ([_v("Full_Name", "Zed")], "Zed"),
    ],
)
def test_label_preference(values: list[LabeledValue], expected: str) -> None:
    assert display_name(LEAD_ID, values) == expected


@pytest.mark.parametrize(
    "values,expected",
    [
        ([_v("Notes", "Met at expo"), _v("Phone", "555")], "Met at expo"),
        ([_v("Phone", "5551234"), _v("City", "Oslo")], "Oslo"),
        ([_v("Amount", "-12.50"), _v("City", "Oslo")], "Oslo"),
        ([_v("Revenue", "1,234,567"), _v("City", "Oslo")], "Oslo"),
        ([_v("Budget", "1.234.567,89"), _v("City", "Oslo")], "Oslo"),
        ([_v("Staff", "12 000"), _v("City", "Oslo")], "Oslo"),
        # Grouping must be consistent; this reads as text.
        ([_v("Code", "1,23,4"), _v("City", "Oslo")], "1,23,4"),
        ([_v("File", "docs/brief.pdf"), _v("City", "Oslo")], "Oslo"),
        ([_v("Bio", "x" * 51), _v("City", "Oslo")], "Oslo"),
        ([_v("Site", "https://oslo.no"), _v("City", "Oslo")], "Oslo"),
    ],
)
def test_first_plain_value(values: list[LabeledValue], expected: str) -> None:
    assert display_name(LEAD_ID, values) == expected


def test_url_reduces_to_hostname_label() -> None:
    assert display_name(LEAD_ID, [_v("Website", "https://www.acme.io/page")]) == "acme"


def test_unparseable_url_is_truncated() -> None:
    raw = "http://[" + "x" * 40
    assert display_name(LEAD_ID, [_v("Link", raw)]) == raw[:30] + "..."


def test_short_unparseable_url_is_not_padded() -> None:
    assert display_name(LEAD_ID, [_v("Link", "http://[")]) == "http://["


def test_only_numbers_fall_back_to_lead_number() -> None:
    assert display_name(LEAD_ID, [_v("Phone", "5551234")]) == "Lead #1234abcd"


def test_display_name_is_deterministic() -> None:
    values = [_v("Phone", "1"), _v("Website", "https://acme.io")]
    assert display_name(LEAD_ID, values) == display_name(LEAD_ID, list(values))


@pytest.mark.parametrize(
    "name,initial",
    [("acme", "A"), ("Lead #1234abcd", "L"), ("élan", "É"), ("", "?")],
)
def test_avatar_initial(name: str, initial: str) -> None:
    assert avatar_initial(name) == initial
