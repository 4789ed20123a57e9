"""Error taxonomy for billing operations.

Every business-rule violation is raised before the first write of an
operation. ``status`` is the response code a request handler reports.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for expected, caller-visible failures."""

    status = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}


class ValidationError(BillingError):
    """Malformed or missing input."""

    status = 400

    def __init__(self, message: str, field: str | None = None, **details):
        super().__init__(message, field=field, **details)
        self.field = field


class NotFoundError(BillingError):
    """A referenced client, invoice, entry or rate does not exist."""

    status = 404


class LockedEntryError(BillingError):
    """Write attempted against a locked or billed time entry."""

    status = 403

    def __init__(self, entry_id: str, action: str = "update"):
        super().__init__(
            f"Cannot {action} a locked time entry. "
            "This entry is associated with an invoice.",
            entry_id=entry_id,
        )
        self.entry_id = entry_id


class SentInvoiceError(BillingError):
    """Write attempted against a finalised (sent) invoice."""

    status = 403

    def __init__(self, invoice_id: str, action: str = "update"):
        super().__init__(f"Cannot {action} a sent invoice", invoice_id=invoice_id)
        self.invoice_id = invoice_id


class ConsistencyError(BillingError):
    """Stored data violates an invariant (cycles, totals drift, lost updates)."""

    status = 500
