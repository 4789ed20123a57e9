"""Time entry ledger: creation, edits and the billed/locked transitions."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import fields, replace
from datetime import date
from decimal import Decimal

from errors import ConsistencyError, LockedEntryError, NotFoundError, ValidationError
from hierarchy import get_client_hierarchy
from models import Client, TimeEntry
from storage import Storage
from utils import calculate_duration_minutes, calculate_end_time

logger = logging.getLogger(__name__)

# Only the invoice generator and guard move these.
MANAGED_FIELDS = frozenset({"id", "billed", "locked", "invoice_id", "billed_rate", "created_at"})
EDITABLE_FIELDS = frozenset(f.name for f in fields(TimeEntry)) - MANAGED_FIELDS


def _derive_duration(entry: TimeEntry, end_given: bool, minutes_given: bool) -> None:
    """Fill in whichever of minutes/end_time is missing, in place."""
    if entry.start_time is None:
        raise ValidationError("Start time is required", field="startTime")
    if entry.date is None:
        entry.date = entry.start_time.date()
    if not isinstance(entry.date, date):
        raise ValidationError("Date is invalid", field="date")

    if minutes_given and entry.minutes is not None:
        if entry.minutes <= 0:
            raise ValidationError("Minutes must be positive", field="minutes")
        if not end_given:
            entry.end_time = calculate_end_time(entry.start_time, entry.minutes)
    elif end_given and entry.end_time is not None:
        if entry.end_time <= entry.start_time:
            raise ValidationError("End time must be after start time", field="endTime")
        entry.minutes = calculate_duration_minutes(entry.start_time, entry.end_time)
        if entry.minutes <= 0:
            raise ValidationError("Minutes must be positive", field="minutes")
    else:
        raise ValidationError("Either minutes or an end time is required", field="minutes")


class TimeEntryLedger:
    def __init__(self, storage: Storage):
        self.storage = storage

    def get(self, entry_id: str, conn: sqlite3.Connection | None = None) -> TimeEntry:
        entry = self.storage.get_entry(entry_id, conn)
        if entry is None:
            raise NotFoundError("Time entry not found", entry_id=entry_id)
        return entry

    def list_entries(
        self,
        client_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[TimeEntry]:
        client_ids = [client_id] if client_id is not None else None
        return self.storage.list_entries(
            client_ids=client_ids, date_from=date_from, date_to=date_to
        )

    def create(self, entry: TimeEntry) -> TimeEntry:
        """Validate and store a new, unbilled entry."""
        if not (entry.description or "").strip():
            raise ValidationError("Description is required", field="description")
        entry.billed = False
        entry.locked = False
        entry.invoice_id = None
        entry.billed_rate = None
        _derive_duration(
            entry,
            end_given=entry.end_time is not None,
            minutes_given=entry.minutes is not None,
        )
        self._check_references(entry)
        self.storage.insert_entry(entry)
        logger.debug("Created time entry %s (%s min)", entry.id, entry.minutes)
        return entry

    def update(self, entry_id: str, patch: dict) -> TimeEntry:
        """Apply a partial edit to an unbilled entry.

        Changing ``start_time`` or ``minutes`` moves ``end_time`` along with it
        unless the patch also sets ``end_time``; an ``end_time`` alone recomputes
        ``minutes``.
        """
        with self.storage.transaction() as conn:
            current = self.get(entry_id, conn)
            if current.is_frozen:
                raise LockedEntryError(entry_id, "update")

            managed = MANAGED_FIELDS.intersection(patch)
            if managed:
                raise ValidationError(
                    f"Field(s) managed by invoicing cannot be edited: {', '.join(sorted(managed))}",
                    field=sorted(managed)[0],
                )
            unknown = set(patch) - EDITABLE_FIELDS
            if unknown:
                raise ValidationError(
                    f"Unknown field(s): {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
                )

            updated = replace(current, **patch)
            if "description" in patch and not (updated.description or "").strip():
                raise ValidationError("Description is required", field="description")

            minutes_given = "minutes" in patch
            end_given = "end_time" in patch
            if "start_time" in patch and not minutes_given and not end_given:
                minutes_given = True
            if end_given and patch["end_time"] is None:
                # a cleared end time is derived again from the minutes
                end_given, minutes_given = False, True
            if "date" in patch and patch["date"] is None and updated.start_time:
                updated.date = updated.start_time.date()
            if minutes_given or end_given:
                _derive_duration(updated, end_given=end_given, minutes_given=minutes_given)

            self._check_references(updated, conn)
            self.storage.update_entry(updated, conn)
        return updated

    def remove(self, entry_id: str) -> None:
        with self.storage.transaction() as conn:
            entry = self.get(entry_id, conn)
            if entry.is_frozen:
                raise LockedEntryError(entry_id, "delete")
            self.storage.delete_entry(entry_id, conn)
        logger.debug("Deleted time entry %s", entry_id)

    def mark_billed(
        self,
        entry_ids: list[str],
        invoice_id: str,
        billed_rates: dict[str, Decimal],
        conn: sqlite3.Connection,
    ) -> None:
        """Bill and lock entries inside the caller's transaction.

        Raises ConsistencyError if any entry was billed by someone else in the
        meantime, which rolls the whole transaction back.
        """
        rates = {entry_id: billed_rates.get(entry_id, Decimal("0")) for entry_id in entry_ids}
        count = self.storage.mark_entries_billed(invoice_id, rates, conn)
        if count != len(entry_ids):
            raise ConsistencyError(
                f"Expected to bill {len(entry_ids)} entries but billed {count}",
                invoice_id=invoice_id,
            )

    def release(
        self,
        conn: sqlite3.Connection,
        invoice_id: str | None = None,
        entry_ids: list[str] | None = None,
    ) -> int:
        return self.storage.release_entries(conn, invoice_id=invoice_id, entry_ids=entry_ids)

    def unbilled_for_client_subtree(
        self,
        client_id: str,
        include_sub_clients: bool = True,
        clients: list[Client] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[TimeEntry]:
        """Billable, unbilled entries for the client (and its sub-clients)."""
        if include_sub_clients:
            if clients is None:
                clients = self.storage.get_all_clients(conn)
            client_ids = [c.id for c in get_client_hierarchy(clients, client_id)]
        else:
            client_ids = [client_id]
        return self.storage.list_entries(
            client_ids=client_ids, billable=True, billed=False, conn=conn
        )

    def _check_references(self, entry: TimeEntry, conn: sqlite3.Connection | None = None) -> None:
        if entry.client_id and self.storage.get_client(entry.client_id, conn) is None:
            raise NotFoundError("Client not found", client_id=entry.client_id)
        if entry.billing_rate_id and self.storage.get_billing_rate(entry.billing_rate_id, conn) is None:
            raise NotFoundError("Billing rate not found", billing_rate_id=entry.billing_rate_id)
        if entry.ticket_id and self.storage.get_ticket(entry.ticket_id, conn) is None:
            raise NotFoundError("Ticket not found", ticket_id=entry.ticket_id)
