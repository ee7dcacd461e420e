"""Human label for a lead that has no dedicated name column.

Precedence, first hit wins:

  1. no values at all               -> "Lead #" + first 8 chars of the id
  2. a value whose field label contains (case-insensitively) one of
     name, full_name, first_name, company, title, email, tried in that
     order; blank values are skipped
  3. the first value that is not URL-like, not longer than 50 chars,
     not path-like (has both "/" and "."), and not purely numeric
  4. the first URL-like value, reduced to its hostname's first label
     ("https://www.acme.io/x" -> "acme"); if it will not parse, the
     value cut to 30 chars plus "..."
  5. "Lead #" + 8 chars

Listings, search and avatars all depend on this order.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from urllib.parse import urlsplit
from uuid import UUID

from leadcrm.models.lead import LabeledValue

LABEL_PREFERENCE = ("name", "full_name", "first_name", "company", "title", "email")

MAX_NAME_LENGTH = 50
TRUNCATE_AT = 30

# Plain or thousands-grouped ("1,234,567", "1.234,50", "12 000"), optional decimals.
_NUMERIC = re.compile(
    r"[+-]?(?:\d{1,3}(?:([,. '])\d{3})(?:\1\d{3})*|\d+)(?:[.,]\d+)?"
)


def fallback_name(lead_id: UUID | str) -> str:
    return f"Lead #{str(lead_id)[:8]}"


def is_url_like(value: str) -> bool:
    return value.startswith("http") or "://" in value


def _is_plain(value: str) -> bool:
    if is_url_like(value) or len(value) > MAX_NAME_LENGTH:
        return False
    if "/" in value and "." in value:
        return False
    return _NUMERIC.fullmatch(value) is None


def _name_from_url(value: str) -> str:
    try:
        host = urlsplit(value).hostname
    except ValueError:
        host = None
    if host:
        if host.startswith("www."):
            host = host[len("www.") :]
        label = host.split(".")[0]
        if label:
            return label
    if len(value) > TRUNCATE_AT:
        return value[:TRUNCATE_AT] + "..."
    return value


def display_name(lead_id: UUID | str, values: Sequence[LabeledValue]) -> str:
    if not values:
        return fallback_name(lead_id)

    for needle in LABEL_PREFERENCE:
        for v in values:
            text = v.value.strip()
            if text and needle in v.label.lower():
                return text

    filled = [v.value.strip() for v in values if v.value.strip()]
    for text in filled:
        if _is_plain(text):
            return text

    for text in filled:
        if is_url_like(text):
            return _name_from_url(text)

    return fallback_name(lead_id)


def avatar_initial(name: str) -> str:
    return name[:1].upper() or "?"
