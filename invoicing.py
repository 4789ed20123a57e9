"""Invoice generation and totals.

Pricing of a time entry goes through the client hierarchy: the entry's billing
rate is adjusted by the nearest override found walking up from the entry's own
client. Line amounts are kept at full precision and totals are their sums;
with ``Config.round_to_cents`` each line is rounded to cents first.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from errors import ConsistencyError, NotFoundError, SentInvoiceError, ValidationError
from hierarchy import get_client_hierarchy, resolve_rate
from ledger import TimeEntryLedger
from models import BillingRate, Client, Invoice, InvoiceAddon, TimeEntry
from storage import Storage
from utils import quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _money(value: Decimal, round_to_cents: bool) -> Decimal:
    return quantize_money(value) if round_to_cents else value


@dataclass
class EntryCharge:
    """What one time entry contributes to an invoice."""

    entry: TimeEntry
    rate: Decimal
    amount: Decimal
    cost: Decimal

    @property
    def profit(self) -> Decimal:
        return self.amount - self.cost


def price_entry(
    entry: TimeEntry,
    clients: Sequence[Client],
    rates: dict[str, BillingRate],
    allow_rateless: bool = True,
    use_snapshot: bool = False,
    round_to_cents: bool = False,
) -> EntryCharge:
    """Price a single entry.

    With ``use_snapshot`` an entry that already carries ``billed_rate`` keeps
    that rate instead of being re-resolved against today's overrides.
    """
    billing_rate = None
    if entry.billing_rate_id:
        billing_rate = rates.get(entry.billing_rate_id)
        if billing_rate is None:
            raise ConsistencyError(
                f"Billing rate {entry.billing_rate_id} of time entry {entry.id} no longer exists",
                entry_id=entry.id,
            )

    if use_snapshot and entry.billed_rate is not None:
        rate = entry.billed_rate
    elif billing_rate is not None:
        rate = resolve_rate(clients, entry.client_id, billing_rate)
    else:
        if not allow_rateless:
            raise ValidationError(
                f"Time entry {entry.id} has no billing rate", field="entries", entry_id=entry.id
            )
        logger.warning("Time entry %s has no billing rate; invoicing it at 0", entry.id)
        rate = ZERO

    cost_rate = billing_rate.cost if billing_rate is not None else ZERO
    minutes = Decimal(entry.minutes or 0)
    return EntryCharge(
        entry=entry,
        rate=rate,
        amount=_money(rate * minutes / 60, round_to_cents),
        cost=_money(cost_rate * minutes / 60, round_to_cents),
    )


def apply_totals(
    invoice: Invoice,
    charges: Iterable[EntryCharge],
    addons: Iterable[InvoiceAddon],
    round_to_cents: bool = False,
) -> None:
    """Set the invoice's total fields from its priced entries and addons."""
    charges = list(charges)
    addons = list(addons)
    invoice.total_minutes = sum(c.entry.minutes or 0 for c in charges)
    invoice.total_amount = sum((c.amount for c in charges), ZERO) + sum(
        (_money(a.total_amount, round_to_cents) for a in addons), ZERO
    )
    invoice.total_cost = sum((c.cost for c in charges), ZERO) + sum(
        (_money(a.total_cost, round_to_cents) for a in addons), ZERO
    )
    invoice.total_profit = invoice.total_amount - invoice.total_cost


def _entry_id(item) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        entry_id = item.get("id")
    else:
        entry_id = getattr(item, "id", None)
    if not entry_id:
        raise ValidationError("Every time entry needs an id", field="entries")
    return entry_id


def validate_addon(addon: InvoiceAddon) -> None:
    for name in ("amount", "cost", "quantity"):
        if not Decimal(getattr(addon, name)).is_finite():
            raise ValidationError(f"Add-on {name} must be a finite number", field="addons")
    if not (addon.description or "").strip():
        raise ValidationError("Add-on description is required", field="addons")
    if addon.quantity <= 0:
        raise ValidationError("Add-on quantity must be positive", field="addons")
    if addon.cost < 0:
        raise ValidationError("Add-on cost cannot be negative", field="addons")


class InvoiceGenerator:
    def __init__(self, storage: Storage, ledger: TimeEntryLedger):
        self.storage = storage
        self.ledger = ledger

    def generate(
        self,
        client_id: str,
        entries: Iterable,
        addons: Iterable[InvoiceAddon] = (),
        invoice_number: str | None = None,
        invoice_date: date | None = None,
    ) -> Invoice:
        """Create an invoice and bill every selected entry and ticket add-on.

        ``entries`` may hold entry ids or objects carrying an ``id``; they are
        re-read inside the transaction so the selection is checked against
        the stored state. Everything happens in one transaction.
        """
        if not client_id:
            raise ValidationError("Client is required", field="clientId")

        entry_ids = [_entry_id(item) for item in entries]
        if len(set(entry_ids)) != len(entry_ids):
            raise ValidationError("The same time entry is listed more than once", field="entries")
        addons = [replace(a, id=None) for a in addons]
        if not entry_ids and not addons:
            raise ValidationError(
                "An invoice needs at least one time entry or add-on", field="entries"
            )
        for addon in addons:
            validate_addon(addon)
        ticket_addon_ids = [a.ticket_addon_id for a in addons if a.ticket_addon_id]
        if len(set(ticket_addon_ids)) != len(ticket_addon_ids):
            raise ValidationError("The same ticket add-on is listed more than once", field="addons")

        with self.storage.transaction() as conn:
            clients = self.storage.get_all_clients(conn)
            subtree = {c.id for c in get_client_hierarchy(clients, client_id)}
            if not subtree:
                raise NotFoundError("Client not found", client_id=client_id)

            selected = self._check_entries(entry_ids, subtree, conn)
            self._check_ticket_addons(ticket_addon_ids, subtree, conn)

            config = self.storage.get_config(conn)
            rates = {r.id: r for r in self.storage.get_all_billing_rates(conn)}
            charges = [
                price_entry(
                    entry,
                    clients,
                    rates,
                    allow_rateless=config.allow_rateless,
                    round_to_cents=config.round_to_cents,
                )
                for entry in selected
            ]

            if invoice_number is None and config.auto_number_invoices:
                invoice_number = self.storage.allocate_invoice_number(conn)
            invoice = Invoice(
                client_id=client_id,
                date=invoice_date or date.today(),
                invoice_number=invoice_number,
            )
            apply_totals(invoice, charges, addons, config.round_to_cents)
            self.storage.insert_invoice(invoice, conn)

            for position, addon in enumerate(addons):
                addon.invoice_id = invoice.id
                if not self.storage.save_invoice_addon(addon, position, conn):
                    raise ConsistencyError(
                        f"Add-on {addon.id} belongs to another invoice", addon_id=addon.id
                    )

            self.ledger.mark_billed(
                entry_ids, invoice.id, {c.entry.id: c.rate for c in charges}, conn
            )
            billed = self.storage.set_ticket_addons_billed(ticket_addon_ids, True, conn)
            if billed != len(ticket_addon_ids):
                raise ConsistencyError(
                    f"Expected to bill {len(ticket_addon_ids)} ticket add-ons but billed {billed}",
                    invoice_id=invoice.id,
                )

            invoice.entries = self.storage.get_invoice_entries(invoice.id, conn)
            invoice.addons = self.storage.get_invoice_addons(invoice.id, conn)
            self.check_totals(invoice, conn)

        logger.info(
            "Generated invoice %s for client %s: %d entries, %d add-ons, total %s",
            invoice.invoice_number or invoice.id,
            client_id,
            len(entry_ids),
            len(addons),
            invoice.total_amount,
        )
        return invoice

    def _check_entries(
        self, entry_ids: list[str], subtree: set[str], conn: sqlite3.Connection
    ) -> list[TimeEntry]:
        found = {e.id: e for e in self.storage.get_entries(entry_ids, conn)}
        selected = []
        for entry_id in entry_ids:
            entry = found.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Time entry {entry_id} not found", entry_id=entry_id)
            if entry.billed or entry.locked or entry.invoice_id:
                raise ValidationError(
                    f"Time entry {entry_id} is already billed", field="entries", entry_id=entry_id
                )
            if not entry.billable:
                raise ValidationError(
                    f"Time entry {entry_id} is not billable", field="entries", entry_id=entry_id
                )
            if entry.client_id not in subtree:
                raise ValidationError(
                    f"Time entry {entry_id} does not belong to this client",
                    field="entries",
                    entry_id=entry_id,
                )
            selected.append(entry)
        return selected

    def _check_ticket_addons(
        self, ticket_addon_ids: list[str], subtree: set[str], conn: sqlite3.Connection
    ) -> None:
        found = {a.id: a for a in self.storage.get_ticket_addons(ticket_addon_ids, conn)}
        for addon_id in ticket_addon_ids:
            ticket_addon = found.get(addon_id)
            if ticket_addon is None:
                raise ValidationError(
                    f"Ticket add-on {addon_id} not found", field="addons", ticket_addon_id=addon_id
                )
            if ticket_addon.billed:
                raise ValidationError(
                    f"Ticket add-on {addon_id} is already billed",
                    field="addons",
                    ticket_addon_id=addon_id,
                )
            ticket = self.storage.get_ticket(ticket_addon.ticket_id, conn)
            if ticket is None or ticket.client_id not in subtree:
                raise ValidationError(
                    f"Ticket add-on {addon_id} does not belong to this client",
                    field="addons",
                    ticket_addon_id=addon_id,
                )

    def recalculate_totals(self, invoice_id: str, conn: sqlite3.Connection | None = None) -> Invoice:
        """Re-sum a draft invoice from its current entries and addons."""
        if conn is None:
            with self.storage.transaction() as own:
                return self.recalculate_totals(invoice_id, own)

        invoice = self.storage.get_invoice(invoice_id, conn)
        if invoice is None:
            raise NotFoundError("Invoice not found", invoice_id=invoice_id)
        if invoice.sent:
            raise SentInvoiceError(invoice_id, "recalculate")

        round_to_cents = self.storage.get_config(conn).round_to_cents
        apply_totals(
            invoice, self._charges(invoice.entries, conn, round_to_cents), invoice.addons, round_to_cents
        )
        self.storage.update_invoice(invoice, conn)
        return invoice

    def check_totals(self, invoice: Invoice, conn: sqlite3.Connection | None = None) -> None:
        """Raise ConsistencyError if stored totals disagree with the constituents."""
        round_to_cents = self.storage.get_config(conn).round_to_cents
        expected = Invoice(client_id=invoice.client_id, date=invoice.date)
        apply_totals(
            expected, self._charges(invoice.entries, conn, round_to_cents), invoice.addons, round_to_cents
        )
        for name in ("total_minutes", "total_amount", "total_cost", "total_profit"):
            if getattr(expected, name) != getattr(invoice, name):
                raise ConsistencyError(
                    f"Invoice {invoice.id} {name} is {getattr(invoice, name)}, "
                    f"expected {getattr(expected, name)}",
                    invoice_id=invoice.id,
                )

    def estimate(self, client_id: str, include_sub_clients: bool = True) -> Invoice:
        """Preview what generating an invoice now would bill. Nothing is written."""
        clients = self.storage.get_all_clients()
        if not any(c.id == client_id for c in clients):
            raise NotFoundError("Client not found", client_id=client_id)
        entries = self.ledger.unbilled_for_client_subtree(
            client_id, include_sub_clients=include_sub_clients, clients=clients
        )
        config = self.storage.get_config()
        rates = {r.id: r for r in self.storage.get_all_billing_rates()}
        charges = [
            price_entry(
                e,
                clients,
                rates,
                allow_rateless=config.allow_rateless,
                round_to_cents=config.round_to_cents,
            )
            for e in entries
        ]
        preview = Invoice(client_id=client_id, date=date.today(), entries=entries)
        apply_totals(preview, charges, [], config.round_to_cents)
        return preview

    def _charges(
        self, entries: list[TimeEntry], conn: sqlite3.Connection | None, round_to_cents: bool = False
    ) -> list[EntryCharge]:
        if not entries:
            return []
        clients = self.storage.get_all_clients(conn)
        rates = {r.id: r for r in self.storage.get_all_billing_rates(conn)}
        return [
            price_entry(e, clients, rates, use_snapshot=True, round_to_cents=round_to_cents)
            for e in entries
        ]
