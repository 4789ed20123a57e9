"""Write paths for invoices once they exist.

Sent invoices are frozen. Draft invoices can have their header and addons
edited, entries detached, or be deleted outright; every path that touches
billed entries or ticket add-ons runs in one transaction and leaves the
invoice totals in step with its contents.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date

from errors import ConsistencyError, NotFoundError, SentInvoiceError, ValidationError
from invoicing import InvoiceGenerator, validate_addon
from ledger import TimeEntryLedger
from models import Invoice, InvoiceAddon
from storage import Storage

logger = logging.getLogger(__name__)

INVOICE_PATCH_FIELDS = frozenset({"invoice_number", "date", "addons", "sent"})


def is_new_addon_id(addon_id: str | None) -> bool:
    """Ids that don't exist yet: missing, or client-side ``temp`` placeholders."""
    return not addon_id or addon_id.startswith("temp")


class InvoiceGuard:
    def __init__(self, storage: Storage, ledger: TimeEntryLedger, generator: InvoiceGenerator):
        self.storage = storage
        self.ledger = ledger
        self.generator = generator

    def _draft(self, invoice_id: str, conn: sqlite3.Connection, action: str) -> Invoice:
        invoice = self.storage.get_invoice(invoice_id, conn)
        if invoice is None:
            raise NotFoundError("Invoice not found", invoice_id=invoice_id)
        if invoice.sent:
            raise SentInvoiceError(invoice_id, action)
        return invoice

    def update_invoice_addons(
        self, invoice_id: str, addons: list[InvoiceAddon], conn: sqlite3.Connection | None = None
    ) -> Invoice:
        """Make the invoice's addons match ``addons``.

        New ids are inserted, known ids updated in place and stored addons
        missing from the list are deleted, releasing their ticket add-ons.
        """
        if conn is None:
            with self.storage.transaction() as own:
                return self.update_invoice_addons(invoice_id, addons, own)

        invoice = self._draft(invoice_id, conn, "update")
        for addon in addons:
            validate_addon(addon)

        existing = {a.id: a for a in invoice.addons}
        keep_ids = set()
        for addon in addons:
            if is_new_addon_id(addon.id):
                addon.id = None
            elif addon.id not in existing:
                raise NotFoundError(
                    f"Add-on {addon.id} is not part of this invoice", addon_id=addon.id
                )
            else:
                keep_ids.add(addon.id)
                # the link to a ticket add-on is fixed at creation
                addon.ticket_addon_id = existing[addon.id].ticket_addon_id
            if addon.id is None and addon.ticket_addon_id:
                raise ValidationError(
                    "Ticket add-ons can only be billed when the invoice is generated",
                    field="addons",
                )

        removed = [a for a_id, a in existing.items() if a_id not in keep_ids]
        self.storage.delete_invoice_addons([a.id for a in removed], conn)
        self.storage.set_ticket_addons_billed(
            [a.ticket_addon_id for a in removed if a.ticket_addon_id], False, conn
        )
        for position, addon in enumerate(addons):
            addon.invoice_id = invoice_id
            if not self.storage.save_invoice_addon(addon, position, conn):
                raise ConsistencyError(
                    f"Add-on {addon.id} belongs to another invoice", addon_id=addon.id
                )

        logger.info(
            "Updated add-ons of invoice %s: %d kept, %d added, %d removed",
            invoice_id,
            len(keep_ids),
            len(addons) - len(keep_ids),
            len(removed),
        )
        return self.generator.recalculate_totals(invoice_id, conn)

    def update_invoice(self, invoice_id: str, patch: dict) -> Invoice:
        """Edit a draft invoice's number, date and addons, or send it."""
        unknown = set(patch) - INVOICE_PATCH_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown field(s): {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        if "date" in patch and not isinstance(patch["date"], date):
            raise ValidationError("Date is invalid", field="date")

        with self.storage.transaction() as conn:
            invoice = self._draft(invoice_id, conn, "update")
            if "invoice_number" in patch:
                invoice.invoice_number = patch["invoice_number"] or None
            if "date" in patch:
                invoice.date = patch["date"]
            self.storage.update_invoice(invoice, conn)

            if "addons" in patch:
                invoice = self.update_invoice_addons(invoice_id, list(patch["addons"]), conn)
            if patch.get("sent"):
                invoice.sent = True
                self.storage.update_invoice(invoice, conn)
                logger.info("Invoice %s marked as sent", invoice_id)
            invoice = self.storage.get_invoice(invoice_id, conn)
        return invoice

    def send_invoice(self, invoice_id: str) -> Invoice:
        """Finalise a draft. There is no way back."""
        with self.storage.transaction() as conn:
            invoice = self._draft(invoice_id, conn, "send")
            invoice.sent = True
            self.storage.update_invoice(invoice, conn)
        logger.info("Invoice %s marked as sent", invoice_id)
        return invoice

    def detach_entry(self, entry_id: str) -> Invoice:
        """Take an entry off its draft invoice and return it to unbilled time."""
        with self.storage.transaction() as conn:
            entry = self.ledger.get(entry_id, conn)
            if not entry.invoice_id:
                raise ValidationError(
                    "Time entry is not attached to an invoice", field="entryId", entry_id=entry_id
                )
            self._draft(entry.invoice_id, conn, "remove entries from")
            self.ledger.release(conn, entry_ids=[entry_id])
            invoice = self.generator.recalculate_totals(entry.invoice_id, conn)
        logger.info("Detached time entry %s from invoice %s", entry_id, invoice.id)
        return invoice

    def delete_invoice(self, invoice_id: str) -> None:
        """Delete a draft, returning its entries and ticket add-ons to unbilled."""
        with self.storage.transaction() as conn:
            invoice = self._draft(invoice_id, conn, "delete")
            released = self.ledger.release(conn, invoice_id=invoice_id)
            self.storage.set_ticket_addons_billed(
                [a.ticket_addon_id for a in invoice.addons if a.ticket_addon_id], False, conn
            )
            self.storage.delete_invoice(invoice_id, conn)
        logger.info("Deleted invoice %s, released %d entries", invoice_id, released)
