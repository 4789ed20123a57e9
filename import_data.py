#!/usr/bin/env python3
"""Seed default settings and import time entries from extracted Excel JSON.

Each worksheet holds one client's time, named after the client. Columns:
A = date, B = start time, C = duration (HH:MM:SS or minutes),
D = description, E = billing rate name, F = billable (Y/N).
Row 1 is the header.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path

from errors import BillingError
from models import BillingRate, Client, TicketStatus, TimeEntry
from service import BillingService, configure_logging

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = [
    TicketStatus(id="", name="Open", color="#22C55E", is_default=True, sort_order=0),
    TicketStatus(id="", name="In Progress", color="#3B82F6", sort_order=1),
    TicketStatus(id="", name="On Hold", color="#F59E0B", sort_order=2),
    TicketStatus(id="", name="Waiting for Client", color="#8B5CF6", sort_order=3),
    TicketStatus(id="", name="Pending Review", color="#EC4899", sort_order=4),
    TicketStatus(id="", name="Ready for Deployment", color="#14B8A6", sort_order=5),
    TicketStatus(id="", name="Closed", color="#6B7280", is_closed=True, sort_order=6),
    TicketStatus(id="", name="Canceled", color="#DC2626", is_closed=True, sort_order=7),
]

DEFAULT_RATES = [
    BillingRate(id="", name="Standard Hourly", rate=Decimal("90"), cost=Decimal("50"),
                description="Standard hourly billing rate", is_default=True),
    BillingRate(id="", name="Critical Hourly", rate=Decimal("130"), cost=Decimal("65"),
                description="Urgent/critical issue billing rate"),
    BillingRate(id="", name="Maintenance", rate=Decimal("75"), cost=Decimal("45"),
                description="Regular maintenance work"),
    BillingRate(id="", name="Project", rate=Decimal("100"), cost=Decimal("55"),
                description="Project-based work"),
    BillingRate(id="", name="No Charge", rate=Decimal("0"), cost=Decimal("0"),
                description="No charge for this service"),
]

SKIP_SHEETS = {"Config", "Summary"}


def seed_defaults(service: BillingService) -> tuple[int, int]:
    """Add the default ticket statuses and billing rates that are missing.

    Returns (statuses added, rates added). Existing rows are left alone so
    running this twice is harmless.
    """
    storage = service.storage
    storage.save_config(storage.get_config())

    existing_statuses = {s.name for s in service.rates.all_statuses()}
    statuses_added = 0
    for status in DEFAULT_STATUSES:
        if status.name not in existing_statuses:
            service.rates.create_status(TicketStatus(**{**vars(status), "id": None}))
            statuses_added += 1

    existing_rates = {r.name for r in service.rates.all_rates()}
    has_default = service.rates.default_rate() is not None
    rates_added = 0
    for rate in DEFAULT_RATES:
        if rate.name not in existing_rates:
            fields = {**vars(rate), "id": None}
            fields["is_default"] = rate.is_default and not has_default
            service.rates.create_rate(BillingRate(**fields))
            rates_added += 1
    return statuses_added, rates_added


def parse_date(val) -> date | None:
    """Parse date from JSON value like '2025-08-30 00:00:00'."""
    if not val:
        return None
    try:
        return date.fromisoformat(str(val).split(" ")[0].split("T")[0])
    except ValueError:
        return None


def parse_time_value(val) -> time | None:
    """Parse time from JSON value like '09:15:00' or '1899-12-30 09:15:00'."""
    if not val:
        return None
    text = str(val).split(" ")[-1]
    parts = text.split(":")
    try:
        return time(int(parts[0]), int(parts[1]))
    except (ValueError, IndexError):
        return None


def parse_minutes(val) -> int | None:
    """Duration cell as minutes: '01:30:00' or a plain number of minutes."""
    if val is None or val == "":
        return None
    text = str(val)
    if ":" in text:
        parts = text.split(" ")[-1].split(":")
        try:
            minutes = int(parts[0]) * 60 + int(parts[1])
        except (ValueError, IndexError):
            return None
    else:
        try:
            minutes = int(Decimal(text))
        except ArithmeticError:
            return None
    return minutes if minutes > 0 else None


def _group_rows(sheet_data: dict) -> dict[int, dict]:
    rows: dict[int, dict] = {}
    for cell_ref, cell_data in sheet_data.items():
        # Parse row number from cell ref like 'A2', 'B10'
        col = "".join(ch for ch in cell_ref if ch.isalpha())
        row_num = int("".join(ch for ch in cell_ref if ch.isdigit()))
        # Skip header row
        if row_num == 1:
            continue
        rows.setdefault(row_num, {})[col] = cell_data
    return rows


def import_sheet(sheet_data: dict, client_id: str, rate_ids: dict[str, str]) -> list[TimeEntry]:
    """Turn one worksheet into unsaved time entries for ``client_id``."""
    entries = []
    for row_num, row in sorted(_group_rows(sheet_data).items()):
        def value(col):
            return row.get(col, {}).get("value")

        entry_date = parse_date(value("A"))
        minutes = parse_minutes(value("C"))
        description = str(value("D") or "").strip()
        if not entry_date or not minutes or not description:
            logger.debug("Skipping row %d: incomplete", row_num)
            continue

        start = parse_time_value(value("B")) or time(9, 0)
        billable_flag = str(value("F") or "Y").strip().upper()
        entries.append(
            TimeEntry(
                description=description,
                start_time=datetime.combine(entry_date, start),
                date=entry_date,
                minutes=minutes,
                client_id=client_id,
                billing_rate_id=rate_ids.get(str(value("E") or "").strip()),
                billable=billable_flag not in ("N", "NO", "FALSE", "0"),
            )
        )
    return entries


def _client_for_sheet(service: BillingService, name: str) -> Client:
    for client in service.clients.all():
        if client.name == name:
            return client
    return service.clients.create(Client(id=None, name=name, type="business"))


def import_from_json(json_path: Path, service: BillingService | None = None) -> int:
    """Import all data from an extracted JSON file. Returns the entry count."""
    with open(json_path) as f:
        data = json.load(f)

    service = (service or BillingService()).load()
    statuses, rates = seed_defaults(service)
    print(f"Seeded {statuses} ticket statuses and {rates} billing rates")

    rate_ids = {r.name: r.id for r in service.rates.all_rates()}
    total_entries = 0
    for sheet_name, sheet_data in data.items():
        if sheet_name in SKIP_SHEETS:
            continue

        client = _client_for_sheet(service, sheet_name)
        imported = 0
        for entry in import_sheet(sheet_data, client.id, rate_ids):
            try:
                service.ledger.create(entry)
            except BillingError as e:
                logger.warning("Skipped entry on %s for %s: %s", entry.date, sheet_name, e.message)
                continue
            imported += 1

        total_entries += imported
        print(f"Imported {imported} entries for {sheet_name}")

    print(f"\nTotal: {total_entries} entries imported")
    return total_entries


if __name__ == "__main__":
    configure_logging()
    json_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).parent / "spreadsheet_structure.json"
    import_from_json(json_path)
