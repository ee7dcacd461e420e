"""Error taxonomy shared by every service.

Each rejection carries a user-facing ``message`` (shown verbatim by the
caller) and a machine-readable ``reason`` so clients can branch without
parsing prose.  Partial failures are never raised; they come back as
data on the result objects.
"""

from __future__ import annotations


class CrmError(Exception):
    reason: str = "error"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class AuthorizationDenied(CrmError):
    """A capability or hierarchy guard rejected the caller."""

    reason = "forbidden"


class InvariantViolation(CrmError):
    """The operation would break a data invariant (last owner, key clash, ...)."""

    reason = "invariant"


class NotFound(CrmError):
    reason = "not_found"


class ConflictOnClaim(CrmError):
    """An invitation token could not be claimed by this principal."""

    reason = "claim_conflict"


# --- store-level ---------------------------------------------------------


class StoreError(Exception):
    """A write against the store failed."""


class StoreUnavailable(StoreError):
    """Transient store failure. Only idempotent reads may be retried."""


class FieldValuesNotSaved(StoreError):
    """The lead row was written but its field values were not."""
