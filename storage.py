from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator

from models import (
    BillingRate,
    Client,
    ClientBillingRateOverride,
    Config,
    Invoice,
    InvoiceAddon,
    Ticket,
    TicketAddon,
    TicketStatus,
    TimeEntry,
)
from utils import new_id

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 5.0


def default_db_path() -> Path:
    """Get database path from environment variable or default location."""
    if env_path := os.environ.get("TIMEVAULT_DB"):
        return Path(env_path)
    return Path(__file__).parent / "data" / "timevault.db"


SCHEMA = """
    CREATE TABLE IF NOT EXISTS config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS billing_rates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        rate TEXT NOT NULL,
        cost TEXT NOT NULL DEFAULT '0',
        description TEXT,
        is_default INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS clients (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'individual',
        parent_id TEXT REFERENCES clients(id),
        rate TEXT NOT NULL DEFAULT '0',
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS client_billing_rate_overrides (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
        base_rate_id TEXT NOT NULL REFERENCES billing_rates(id),
        override_type TEXT NOT NULL,
        value TEXT NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        UNIQUE(client_id, base_rate_id)
    );

    CREATE TABLE IF NOT EXISTS ticket_statuses (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        color TEXT NOT NULL,
        is_default INTEGER NOT NULL DEFAULT 0,
        is_closed INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        client_id TEXT NOT NULL REFERENCES clients(id),
        status_id TEXT REFERENCES ticket_statuses(id),
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS ticket_addons (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        description TEXT NOT NULL,
        amount TEXT NOT NULL,
        billed INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS invoices (
        id TEXT PRIMARY KEY,
        invoice_number TEXT,
        client_id TEXT NOT NULL REFERENCES clients(id),
        date TEXT NOT NULL,
        total_minutes INTEGER NOT NULL DEFAULT 0,
        total_amount TEXT NOT NULL DEFAULT '0',
        total_cost TEXT NOT NULL DEFAULT '0',
        total_profit TEXT NOT NULL DEFAULT '0',
        sent INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS invoice_addons (
        id TEXT PRIMARY KEY,
        invoice_id TEXT NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
        description TEXT NOT NULL,
        amount TEXT NOT NULL,
        cost TEXT NOT NULL DEFAULT '0',
        quantity TEXT NOT NULL DEFAULT '1',
        profit TEXT NOT NULL DEFAULT '0',
        ticket_addon_id TEXT REFERENCES ticket_addons(id),
        position INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS time_entries (
        id TEXT PRIMARY KEY,
        description TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT,
        minutes INTEGER NOT NULL,
        date TEXT NOT NULL,
        client_id TEXT REFERENCES clients(id),
        ticket_id TEXT REFERENCES tickets(id),
        billing_rate_id TEXT REFERENCES billing_rates(id),
        billable INTEGER NOT NULL DEFAULT 1,
        billed INTEGER NOT NULL DEFAULT 0,
        locked INTEGER NOT NULL DEFAULT 0,
        invoice_id TEXT REFERENCES invoices(id),
        billed_rate TEXT,
        created_at TEXT NOT NULL,
        CHECK (minutes > 0),
        CHECK (billed = 0 OR invoice_id IS NOT NULL),
        CHECK (locked = 0 OR billed = 1)
    );

    CREATE INDEX IF NOT EXISTS idx_entries_date ON time_entries(date);
    CREATE INDEX IF NOT EXISTS idx_entries_client ON time_entries(client_id);
    CREATE INDEX IF NOT EXISTS idx_entries_invoice ON time_entries(invoice_id);
    CREATE INDEX IF NOT EXISTS idx_clients_parent ON clients(parent_id);
    CREATE INDEX IF NOT EXISTS idx_invoices_client ON invoices(client_id);
    CREATE INDEX IF NOT EXISTS idx_invoice_addons_invoice ON invoice_addons(invoice_id);
"""

# Tables in dependency order, children first.
TABLES = (
    "invoice_addons",
    "time_entries",
    "invoices",
    "ticket_addons",
    "tickets",
    "ticket_statuses",
    "client_billing_rate_overrides",
    "clients",
    "billing_rates",
    "config",
)


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _parse_datetime(val: str | None) -> datetime | None:
    if not val:
        return None
    return datetime.fromisoformat(val)


def _decimal(val: str | None) -> Decimal | None:
    if val is None:
        return None
    return Decimal(val)


def _placeholders(values: Iterable) -> str:
    return ", ".join("?" for _ in values)


def _row_to_override(row: sqlite3.Row) -> ClientBillingRateOverride:
    return ClientBillingRateOverride(
        id=row["id"],
        client_id=row["client_id"],
        base_rate_id=row["base_rate_id"],
        override_type=row["override_type"],
        value=Decimal(row["value"]),
    )


def _row_to_client(row: sqlite3.Row, overrides: list[ClientBillingRateOverride]) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        parent_id=row["parent_id"],
        rate=Decimal(row["rate"]),
        billing_rate_overrides=overrides,
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_rate(row: sqlite3.Row) -> BillingRate:
    return BillingRate(
        id=row["id"],
        name=row["name"],
        rate=Decimal(row["rate"]),
        cost=Decimal(row["cost"]),
        description=row["description"],
        is_default=bool(row["is_default"]),
    )


def _row_to_status(row: sqlite3.Row) -> TicketStatus:
    return TicketStatus(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        is_default=bool(row["is_default"]),
        is_closed=bool(row["is_closed"]),
        sort_order=row["sort_order"],
    )


def _row_to_ticket(row: sqlite3.Row) -> Ticket:
    return Ticket(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        client_id=row["client_id"],
        status_id=row["status_id"],
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_ticket_addon(row: sqlite3.Row) -> TicketAddon:
    return TicketAddon(
        id=row["id"],
        ticket_id=row["ticket_id"],
        description=row["description"],
        amount=Decimal(row["amount"]),
        billed=bool(row["billed"]),
    )


def _row_to_entry(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        description=row["description"],
        start_time=_parse_datetime(row["start_time"]),
        end_time=_parse_datetime(row["end_time"]),
        minutes=row["minutes"],
        date=date.fromisoformat(row["date"]),
        client_id=row["client_id"],
        ticket_id=row["ticket_id"],
        billing_rate_id=row["billing_rate_id"],
        billable=bool(row["billable"]),
        billed=bool(row["billed"]),
        locked=bool(row["locked"]),
        invoice_id=row["invoice_id"],
        billed_rate=_decimal(row["billed_rate"]),
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_invoice_addon(row: sqlite3.Row) -> InvoiceAddon:
    return InvoiceAddon(
        id=row["id"],
        invoice_id=row["invoice_id"],
        description=row["description"],
        amount=Decimal(row["amount"]),
        cost=Decimal(row["cost"]),
        quantity=Decimal(row["quantity"]),
        ticket_addon_id=row["ticket_addon_id"],
    )


def _row_to_invoice(row: sqlite3.Row) -> Invoice:
    return Invoice(
        id=row["id"],
        invoice_number=row["invoice_number"],
        client_id=row["client_id"],
        date=date.fromisoformat(row["date"]),
        total_minutes=row["total_minutes"],
        total_amount=Decimal(row["total_amount"]),
        total_cost=Decimal(row["total_cost"]),
        total_profit=Decimal(row["total_profit"]),
        sent=bool(row["sent"]),
        created_at=_parse_datetime(row["created_at"]),
    )


def _entry_params(entry: TimeEntry) -> tuple:
    return (
        entry.description,
        entry.start_time.isoformat() if entry.start_time else None,
        entry.end_time.isoformat() if entry.end_time else None,
        entry.minutes,
        entry.date.isoformat() if entry.date else None,
        entry.client_id,
        entry.ticket_id,
        entry.billing_rate_id,
        int(entry.billable),
        int(entry.billed),
        int(entry.locked),
        entry.invoice_id,
        str(entry.billed_rate) if entry.billed_rate is not None else None,
    )


class Storage:
    """SQLite-backed data store shared by every billing component.

    Methods take an optional ``conn``; pass the connection yielded by
    :meth:`transaction` to run several calls atomically, or omit it to run the
    call on its own short-lived connection.
    """

    def __init__(self, db_path: Path | str | None = None, timeout: float = BUSY_TIMEOUT_SECONDS):
        self.db_path = Path(db_path) if db_path else default_db_path()
        self.timeout = timeout

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically, holding the write lock from the first read.

        Commits on success; any exception rolls back every write in the block.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def _connection(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = self.connect()
        try:
            yield own
        finally:
            own.close()

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.close()

    def reset(self) -> None:
        """Delete every row, keeping the schema."""
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")
        logger.info("Reset database %s", self.db_path)

    # --- Config ---

    def get_config(self, conn: sqlite3.Connection | None = None) -> Config:
        """Load config from database."""
        with self._connection(conn) as c:
            rows = c.execute("SELECT key, value FROM config").fetchall()

        config = Config()
        for row in rows:
            key, value = row["key"], row["value"]
            if key in ("default_hourly_cost",):
                setattr(config, key, Decimal(value))
            elif key == "next_invoice_number":
                config.next_invoice_number = int(value)
            elif key in ("auto_number_invoices", "allow_rateless", "round_to_cents"):
                setattr(config, key, value == "1")
            elif hasattr(config, key):
                setattr(config, key, value)
        return config

    def save_config(self, config: Config, conn: sqlite3.Connection | None = None) -> None:
        """Save config to database."""
        values = {
            "currency": config.currency,
            "default_hourly_cost": str(config.default_hourly_cost),
            "invoice_prefix": config.invoice_prefix,
            "next_invoice_number": str(config.next_invoice_number),
            "auto_number_invoices": "1" if config.auto_number_invoices else "0",
            "company_name": config.company_name,
            "company_address": config.company_address,
            "company_email": config.company_email,
            "time_entry_format": config.time_entry_format,
            "allow_rateless": "1" if config.allow_rateless else "0",
            "round_to_cents": "1" if config.round_to_cents else "0",
        }
        with self._connection(conn) as c:
            c.executemany(
                "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
                list(values.items()),
            )

    def allocate_invoice_number(self, conn: sqlite3.Connection) -> str:
        """Take the next invoice number and advance the counter."""
        config = self.get_config(conn)
        number = f"{config.invoice_prefix}-{config.next_invoice_number}"
        conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES ('next_invoice_number', ?)",
            (str(config.next_invoice_number + 1),),
        )
        return number

    # --- Clients ---

    def _overrides_by_client(
        self, conn: sqlite3.Connection, client_ids: list[str] | None = None
    ) -> dict[str, list[ClientBillingRateOverride]]:
        if client_ids is None:
            rows = conn.execute(
                "SELECT * FROM client_billing_rate_overrides ORDER BY client_id, position"
            ).fetchall()
        else:
            rows = conn.execute(
                f"""
                SELECT * FROM client_billing_rate_overrides
                WHERE client_id IN ({_placeholders(client_ids)})
                ORDER BY client_id, position
                """,
                client_ids,
            ).fetchall()
        grouped: dict[str, list[ClientBillingRateOverride]] = {}
        for row in rows:
            grouped.setdefault(row["client_id"], []).append(_row_to_override(row))
        return grouped

    def save_client(self, client: Client, conn: sqlite3.Connection | None = None) -> None:
        """Insert or update a client and replace its override rows."""
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT INTO clients (id, name, type, parent_id, rate, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    type = excluded.type,
                    parent_id = excluded.parent_id,
                    rate = excluded.rate
                """,
                (
                    client.id,
                    client.name,
                    client.type,
                    client.parent_id,
                    str(client.rate),
                    (client.created_at or datetime.now()).isoformat(),
                ),
            )
            c.execute(
                "DELETE FROM client_billing_rate_overrides WHERE client_id = ?", (client.id,)
            )
            for position, override in enumerate(client.billing_rate_overrides):
                override.client_id = client.id
                override.id = override.id or new_id()
                c.execute(
                    """
                    INSERT INTO client_billing_rate_overrides
                    (id, client_id, base_rate_id, override_type, value, position)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        override.id,
                        client.id,
                        override.base_rate_id,
                        override.override_type,
                        str(override.value),
                        position,
                    ),
                )

    def get_client(self, client_id: str, conn: sqlite3.Connection | None = None) -> Client | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
            if not row:
                return None
            overrides = self._overrides_by_client(c, [client_id])
        return _row_to_client(row, overrides.get(client_id, []))

    def get_all_clients(self, conn: sqlite3.Connection | None = None) -> list[Client]:
        """Every client with its overrides, ordered by name."""
        with self._connection(conn) as c:
            rows = c.execute("SELECT * FROM clients ORDER BY name, created_at").fetchall()
            overrides = self._overrides_by_client(c)
        return [_row_to_client(row, overrides.get(row["id"], [])) for row in rows]

    def delete_client(self, client_id: str, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute("DELETE FROM clients WHERE id = ?", (client_id,))

    def client_usage(self, client_id: str, conn: sqlite3.Connection | None = None) -> dict[str, int]:
        """Count rows that reference a client."""
        queries = {
            "children": "SELECT COUNT(*) FROM clients WHERE parent_id = ?",
            "entries": "SELECT COUNT(*) FROM time_entries WHERE client_id = ?",
            "tickets": "SELECT COUNT(*) FROM tickets WHERE client_id = ?",
            "invoices": "SELECT COUNT(*) FROM invoices WHERE client_id = ?",
        }
        with self._connection(conn) as c:
            return {
                name: c.execute(sql, (client_id,)).fetchone()[0]
                for name, sql in queries.items()
            }

    # --- Billing rates ---

    def save_billing_rate(self, rate: BillingRate, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT INTO billing_rates (id, name, rate, cost, description, is_default)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    rate = excluded.rate,
                    cost = excluded.cost,
                    description = excluded.description,
                    is_default = excluded.is_default
                """,
                (
                    rate.id,
                    rate.name,
                    str(rate.rate),
                    str(rate.cost),
                    rate.description,
                    int(rate.is_default),
                ),
            )

    def get_billing_rate(self, rate_id: str, conn: sqlite3.Connection | None = None) -> BillingRate | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM billing_rates WHERE id = ?", (rate_id,)).fetchone()
        return _row_to_rate(row) if row else None

    def get_billing_rate_by_name(self, name: str, conn: sqlite3.Connection | None = None) -> BillingRate | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM billing_rates WHERE name = ?", (name,)).fetchone()
        return _row_to_rate(row) if row else None

    def get_all_billing_rates(self, conn: sqlite3.Connection | None = None) -> list[BillingRate]:
        with self._connection(conn) as c:
            rows = c.execute("SELECT * FROM billing_rates ORDER BY name").fetchall()
        return [_row_to_rate(row) for row in rows]

    def get_default_billing_rate(self, conn: sqlite3.Connection | None = None) -> BillingRate | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM billing_rates WHERE is_default = 1").fetchone()
        return _row_to_rate(row) if row else None

    def clear_default_billing_rate(self, conn: sqlite3.Connection, keep_id: str | None = None) -> None:
        conn.execute(
            "UPDATE billing_rates SET is_default = 0 WHERE is_default = 1 AND id IS NOT ?",
            (keep_id,),
        )

    def delete_billing_rate(self, rate_id: str, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute("DELETE FROM billing_rates WHERE id = ?", (rate_id,))

    def billing_rate_in_use(self, rate_id: str, conn: sqlite3.Connection | None = None) -> bool:
        with self._connection(conn) as c:
            entries = c.execute(
                "SELECT COUNT(*) FROM time_entries WHERE billing_rate_id = ?", (rate_id,)
            ).fetchone()[0]
            overrides = c.execute(
                "SELECT COUNT(*) FROM client_billing_rate_overrides WHERE base_rate_id = ?",
                (rate_id,),
            ).fetchone()[0]
        return bool(entries or overrides)

    # --- Ticket statuses ---

    def save_ticket_status(self, status: TicketStatus, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT INTO ticket_statuses (id, name, color, is_default, is_closed, sort_order)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    color = excluded.color,
                    is_default = excluded.is_default,
                    is_closed = excluded.is_closed,
                    sort_order = excluded.sort_order
                """,
                (
                    status.id,
                    status.name,
                    status.color,
                    int(status.is_default),
                    int(status.is_closed),
                    status.sort_order,
                ),
            )

    def get_ticket_status(self, status_id: str, conn: sqlite3.Connection | None = None) -> TicketStatus | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM ticket_statuses WHERE id = ?", (status_id,)).fetchone()
        return _row_to_status(row) if row else None

    def get_all_ticket_statuses(self, conn: sqlite3.Connection | None = None) -> list[TicketStatus]:
        with self._connection(conn) as c:
            rows = c.execute(
                "SELECT * FROM ticket_statuses ORDER BY sort_order, name"
            ).fetchall()
        return [_row_to_status(row) for row in rows]

    def clear_default_ticket_status(self, conn: sqlite3.Connection, keep_id: str | None = None) -> None:
        conn.execute(
            "UPDATE ticket_statuses SET is_default = 0 WHERE is_default = 1 AND id IS NOT ?",
            (keep_id,),
        )

    def delete_ticket_status(self, status_id: str, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute("DELETE FROM ticket_statuses WHERE id = ?", (status_id,))

    # --- Tickets and ticket add-ons ---

    def save_ticket(self, ticket: Ticket, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT INTO tickets (id, title, description, client_id, status_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    client_id = excluded.client_id,
                    status_id = excluded.status_id
                """,
                (
                    ticket.id,
                    ticket.title,
                    ticket.description,
                    ticket.client_id,
                    ticket.status_id,
                    (ticket.created_at or datetime.now()).isoformat(),
                ),
            )

    def get_ticket(self, ticket_id: str, conn: sqlite3.Connection | None = None) -> Ticket | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
        return _row_to_ticket(row) if row else None

    def get_tickets(self, client_ids: list[str] | None = None, conn: sqlite3.Connection | None = None) -> list[Ticket]:
        with self._connection(conn) as c:
            if client_ids is None:
                rows = c.execute("SELECT * FROM tickets ORDER BY created_at DESC").fetchall()
            else:
                rows = c.execute(
                    f"""
                    SELECT * FROM tickets WHERE client_id IN ({_placeholders(client_ids)})
                    ORDER BY created_at DESC
                    """,
                    client_ids,
                ).fetchall()
        return [_row_to_ticket(row) for row in rows]

    def save_ticket_addon(self, addon: TicketAddon, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT OR REPLACE INTO ticket_addons (id, ticket_id, description, amount, billed)
                VALUES (?, ?, ?, ?, ?)
                """,
                (addon.id, addon.ticket_id, addon.description, str(addon.amount), int(addon.billed)),
            )

    def get_ticket_addons(self, addon_ids: list[str], conn: sqlite3.Connection | None = None) -> list[TicketAddon]:
        if not addon_ids:
            return []
        with self._connection(conn) as c:
            rows = c.execute(
                f"SELECT * FROM ticket_addons WHERE id IN ({_placeholders(addon_ids)})",
                addon_ids,
            ).fetchall()
        return [_row_to_ticket_addon(row) for row in rows]

    def get_unbilled_ticket_addons(self, client_ids: list[str], conn: sqlite3.Connection | None = None) -> list[TicketAddon]:
        if not client_ids:
            return []
        with self._connection(conn) as c:
            rows = c.execute(
                f"""
                SELECT a.* FROM ticket_addons a
                JOIN tickets t ON t.id = a.ticket_id
                WHERE t.client_id IN ({_placeholders(client_ids)}) AND a.billed = 0
                ORDER BY t.created_at, a.rowid
                """,
                client_ids,
            ).fetchall()
        return [_row_to_ticket_addon(row) for row in rows]

    def set_ticket_addons_billed(self, addon_ids: list[str], billed: bool, conn: sqlite3.Connection) -> int:
        if not addon_ids:
            return 0
        cursor = conn.execute(
            f"UPDATE ticket_addons SET billed = ? WHERE id IN ({_placeholders(addon_ids)})",
            [int(billed), *addon_ids],
        )
        return cursor.rowcount

    def delete_ticket_addon(self, addon_id: str, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute("DELETE FROM ticket_addons WHERE id = ?", (addon_id,))

    # --- Time entries ---

    def insert_entry(self, entry: TimeEntry, conn: sqlite3.Connection | None = None) -> None:
        entry.id = entry.id or new_id()
        created_at = _now()
        with self._connection(conn) as c:
            c.execute(
                """
                INSERT INTO time_entries
                (description, start_time, end_time, minutes, date, client_id, ticket_id,
                 billing_rate_id, billable, billed, locked, invoice_id, billed_rate,
                 id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*_entry_params(entry), entry.id, created_at),
            )
        entry.created_at = datetime.fromisoformat(created_at)

    def update_entry(self, entry: TimeEntry, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute(
                """
                UPDATE time_entries SET
                    description = ?, start_time = ?, end_time = ?, minutes = ?, date = ?,
                    client_id = ?, ticket_id = ?, billing_rate_id = ?, billable = ?,
                    billed = ?, locked = ?, invoice_id = ?, billed_rate = ?
                WHERE id = ?
                """,
                (*_entry_params(entry), entry.id),
            )

    def delete_entry(self, entry_id: str, conn: sqlite3.Connection | None = None) -> None:
        with self._connection(conn) as c:
            c.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))

    def get_entry(self, entry_id: str, conn: sqlite3.Connection | None = None) -> TimeEntry | None:
        """Get a single entry by id."""
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM time_entries WHERE id = ?", (entry_id,)).fetchone()
        return _row_to_entry(row) if row else None

    def get_entries(self, entry_ids: list[str], conn: sqlite3.Connection | None = None) -> list[TimeEntry]:
        if not entry_ids:
            return []
        with self._connection(conn) as c:
            rows = c.execute(
                f"SELECT * FROM time_entries WHERE id IN ({_placeholders(entry_ids)})",
                entry_ids,
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def get_invoice_entries(self, invoice_id: str, conn: sqlite3.Connection | None = None) -> list[TimeEntry]:
        with self._connection(conn) as c:
            rows = c.execute(
                "SELECT * FROM time_entries WHERE invoice_id = ? ORDER BY date DESC, created_at DESC",
                (invoice_id,),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def list_entries(
        self,
        client_ids: list[str] | None = None,
        billable: bool | None = None,
        billed: bool | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[TimeEntry]:
        """Entries matching every given filter, most recent first."""
        clauses: list[str] = []
        params: list = []
        if client_ids is not None:
            if not client_ids:
                return []
            clauses.append(f"client_id IN ({_placeholders(client_ids)})")
            params.extend(client_ids)
        if billable is not None:
            clauses.append("billable = ?")
            params.append(int(billable))
        if billed is not None:
            clauses.append("billed = ?")
            params.append(int(billed))
            if not billed:
                clauses.append("invoice_id IS NULL")
        if date_from is not None:
            clauses.append("date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("date <= ?")
            params.append(date_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connection(conn) as c:
            rows = c.execute(
                f"SELECT * FROM time_entries {where} ORDER BY date DESC, created_at DESC, rowid DESC",
                params,
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def mark_entries_billed(
        self, invoice_id: str, billed_rates: dict[str, Decimal], conn: sqlite3.Connection
    ) -> int:
        """Bill and lock the given entries in one statement.

        Only rows that are still unbilled are touched; the caller compares
        the returned row count with the number of ids.
        """
        if not billed_rates:
            return 0
        ids = list(billed_rates)
        cases = " ".join("WHEN ? THEN ?" for _ in ids)
        case_params: list = []
        for entry_id in ids:
            case_params.extend((entry_id, str(billed_rates[entry_id])))
        cursor = conn.execute(
            f"""
            UPDATE time_entries SET
                billed = 1,
                locked = 1,
                invoice_id = ?,
                billed_rate = CASE id {cases} END
            WHERE id IN ({_placeholders(ids)}) AND billed = 0 AND invoice_id IS NULL
            """,
            [invoice_id, *case_params, *ids],
        )
        return cursor.rowcount

    def release_entries(
        self,
        conn: sqlite3.Connection,
        invoice_id: str | None = None,
        entry_ids: list[str] | None = None,
    ) -> int:
        """Return entries to the unbilled, unlocked state."""
        clauses: list[str] = []
        params: list = []
        if invoice_id is not None:
            clauses.append("invoice_id = ?")
            params.append(invoice_id)
        if entry_ids is not None:
            if not entry_ids:
                return 0
            clauses.append(f"id IN ({_placeholders(entry_ids)})")
            params.extend(entry_ids)
        if not clauses:
            raise ValueError("release_entries needs an invoice_id or entry_ids")
        cursor = conn.execute(
            f"""
            UPDATE time_entries SET billed = 0, locked = 0, invoice_id = NULL, billed_rate = NULL
            WHERE {' AND '.join(clauses)}
            """,
            params,
        )
        return cursor.rowcount

    # --- Invoices ---

    def insert_invoice(self, invoice: Invoice, conn: sqlite3.Connection) -> None:
        invoice.id = invoice.id or new_id()
        created_at = _now()
        conn.execute(
            """
            INSERT INTO invoices
            (id, invoice_number, client_id, date, total_minutes, total_amount,
             total_cost, total_profit, sent, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                invoice.id,
                invoice.invoice_number,
                invoice.client_id,
                invoice.date.isoformat(),
                invoice.total_minutes,
                str(invoice.total_amount),
                str(invoice.total_cost),
                str(invoice.total_profit),
                int(invoice.sent),
                created_at,
            ),
        )
        invoice.created_at = datetime.fromisoformat(created_at)

    def update_invoice(self, invoice: Invoice, conn: sqlite3.Connection) -> None:
        """Write an invoice's header and total fields."""
        conn.execute(
            """
            UPDATE invoices SET
                invoice_number = ?, date = ?, total_minutes = ?, total_amount = ?,
                total_cost = ?, total_profit = ?, sent = ?
            WHERE id = ?
            """,
            (
                invoice.invoice_number,
                invoice.date.isoformat(),
                invoice.total_minutes,
                str(invoice.total_amount),
                str(invoice.total_cost),
                str(invoice.total_profit),
                int(invoice.sent),
                invoice.id,
            ),
        )

    def get_invoice(self, invoice_id: str, conn: sqlite3.Connection | None = None) -> Invoice | None:
        """Invoice with its entries and addons."""
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
            if not row:
                return None
            invoice = _row_to_invoice(row)
            invoice.entries = self.get_invoice_entries(invoice_id, c)
            invoice.addons = self.get_invoice_addons(invoice_id, c)
        return invoice

    def list_invoices(
        self,
        client_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Invoice]:
        """Invoices, newest first, with entries and addons."""
        clauses: list[str] = []
        params: list = []
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if date_from is not None:
            clauses.append("date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("date <= ?")
            params.append(date_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connection(conn) as c:
            rows = c.execute(
                f"SELECT * FROM invoices {where} ORDER BY date DESC, created_at DESC", params
            ).fetchall()
            invoices = [_row_to_invoice(row) for row in rows]
            for invoice in invoices:
                invoice.entries = self.get_invoice_entries(invoice.id, c)
                invoice.addons = self.get_invoice_addons(invoice.id, c)
        return invoices

    def delete_invoice(self, invoice_id: str, conn: sqlite3.Connection) -> None:
        conn.execute("DELETE FROM invoice_addons WHERE invoice_id = ?", (invoice_id,))
        conn.execute("DELETE FROM invoices WHERE id = ?", (invoice_id,))

    # --- Invoice add-ons ---

    def save_invoice_addon(self, addon: InvoiceAddon, position: int, conn: sqlite3.Connection) -> int:
        """Insert or update an addon row. Rows of other invoices are never touched; returns the row count."""
        addon.id = addon.id or new_id()
        cursor = conn.execute(
            """
            INSERT INTO invoice_addons
            (id, invoice_id, description, amount, cost, quantity, profit, ticket_addon_id, position)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                description = excluded.description,
                amount = excluded.amount,
                cost = excluded.cost,
                quantity = excluded.quantity,
                profit = excluded.profit,
                ticket_addon_id = excluded.ticket_addon_id,
                position = excluded.position
            WHERE invoice_addons.invoice_id = excluded.invoice_id
            """,
            (
                addon.id,
                addon.invoice_id,
                addon.description,
                str(addon.amount),
                str(addon.cost),
                str(addon.quantity),
                str(addon.profit),
                addon.ticket_addon_id,
                position,
            ),
        )
        return cursor.rowcount

    def get_invoice_addons(self, invoice_id: str, conn: sqlite3.Connection | None = None) -> list[InvoiceAddon]:
        with self._connection(conn) as c:
            rows = c.execute(
                "SELECT * FROM invoice_addons WHERE invoice_id = ? ORDER BY position, rowid",
                (invoice_id,),
            ).fetchall()
        return [_row_to_invoice_addon(row) for row in rows]

    def delete_invoice_addons(self, addon_ids: list[str], conn: sqlite3.Connection) -> None:
        if not addon_ids:
            return
        conn.execute(
            f"DELETE FROM invoice_addons WHERE id IN ({_placeholders(addon_ids)})",
            addon_ids,
        )
