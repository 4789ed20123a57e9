"""Tests for storage.py - database operations."""

from datetime import date, datetime
from decimal import Decimal

import pytest

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
from storage import Storage, default_db_path


def entry(client_id=None, minutes=60, on=date(2026, 1, 15), **kwargs):
    start = datetime.combine(on, datetime.min.time()).replace(hour=9)
    return TimeEntry(description="Work", start_time=start, date=on, minutes=minutes,
                     client_id=client_id, **kwargs)


@pytest.fixture
def client(temp_database):
    c = Client(id="c1", name="Client One", type="business")
    temp_database.save_client(c)
    return c


@pytest.fixture
def invoice(temp_database, client):
    inv = Invoice(client_id=client.id, date=date(2026, 1, 31))
    with temp_database.transaction() as conn:
        temp_database.insert_invoice(inv, conn)
    return inv


class TestInitDb:
    """Tests for init_db and the database location."""

    def test_creates_tables(self, temp_database):
        """Test that init_db creates the required tables."""
        conn = temp_database.connect()
        names = {row["name"] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )}
        conn.close()
        assert {"clients", "time_entries", "invoices", "invoice_addons", "config"} <= names

    def test_idempotent(self, temp_database):
        """Test that init_db can be called multiple times safely."""
        temp_database.init_db()
        temp_database.init_db()

    def test_path_from_environment(self, temp_database, tmp_path):
        """The TIMEVAULT_DB variable picks the file."""
        assert default_db_path() == tmp_path / "test_timevault.db"
        assert temp_database.db_path == tmp_path / "test_timevault.db"

    def test_explicit_path(self, tmp_path):
        store = Storage(tmp_path / "other.db")
        store.init_db()
        assert (tmp_path / "other.db").exists()

    def test_reset_clears_rows(self, temp_database, client):
        temp_database.reset()
        assert temp_database.get_all_clients() == []


class TestTransaction:
    """Tests for the transaction context manager."""

    def test_rollback_on_error(self, temp_database):
        """An exception inside the block undoes every write."""
        with pytest.raises(RuntimeError):
            with temp_database.transaction() as conn:
                temp_database.save_client(Client(id="x", name="X"), conn)
                raise RuntimeError("boom")
        assert temp_database.get_client("x") is None

    def test_commit(self, temp_database):
        with temp_database.transaction() as conn:
            temp_database.save_client(Client(id="x", name="X"), conn)
        assert temp_database.get_client("x").name == "X"


class TestConfig:
    """Tests for config storage."""

    def test_defaults_when_empty(self, temp_database):
        assert temp_database.get_config() == Config()

    def test_round_trip(self, temp_database):
        """Test saving and loading config."""
        config = Config(currency="EUR", auto_number_invoices=True, next_invoice_number=7,
                        default_hourly_cost=Decimal("42.5"), allow_rateless=False,
                        round_to_cents=True)
        temp_database.save_config(config)
        loaded = temp_database.get_config()
        assert loaded.currency == "EUR"
        assert loaded.auto_number_invoices is True
        assert loaded.allow_rateless is False
        assert loaded.round_to_cents is True
        assert loaded.next_invoice_number == 7
        assert loaded.default_hourly_cost == Decimal("42.5")

    def test_allocate_invoice_number(self, temp_database):
        """Numbers come from prefix and counter; the counter advances."""
        with temp_database.transaction() as conn:
            first = temp_database.allocate_invoice_number(conn)
            second = temp_database.allocate_invoice_number(conn)
        assert first == "INV-1001"
        assert second == "INV-1002"
        assert temp_database.get_config().next_invoice_number == 1003


class TestClients:
    """Tests for client rows and their overrides."""

    def test_overrides_keep_order(self, temp_database):
        temp_database.save_billing_rate(BillingRate(id="r1", name="A", rate=Decimal("10")))
        temp_database.save_billing_rate(BillingRate(id="r2", name="B", rate=Decimal("20")))
        temp_database.save_client(Client(id="c", name="C", billing_rate_overrides=[
            ClientBillingRateOverride(base_rate_id="r2", override_type="fixed", value=Decimal("5")),
            ClientBillingRateOverride(base_rate_id="r1", override_type="percentage", value=Decimal("90")),
        ]))
        loaded = temp_database.get_client("c")
        assert [o.base_rate_id for o in loaded.billing_rate_overrides] == ["r2", "r1"]
        assert loaded.billing_rate_overrides[1].value == Decimal("90")

    def test_save_replaces_overrides(self, temp_database):
        temp_database.save_billing_rate(BillingRate(id="r1", name="A", rate=Decimal("10")))
        c = Client(id="c", name="C", billing_rate_overrides=[
            ClientBillingRateOverride(base_rate_id="r1", override_type="fixed", value=Decimal("5")),
        ])
        temp_database.save_client(c)
        c.billing_rate_overrides = []
        temp_database.save_client(c)
        assert temp_database.get_client("c").billing_rate_overrides == []

    def test_all_clients_ordered_by_name(self, temp_database):
        temp_database.save_client(Client(id="b", name="Zed"))
        temp_database.save_client(Client(id="a", name="Alpha"))
        assert [c.name for c in temp_database.get_all_clients()] == ["Alpha", "Zed"]

    def test_client_usage(self, temp_database, client):
        temp_database.save_client(Client(id="kid", name="Kid", parent_id=client.id))
        temp_database.insert_entry(entry(client.id))
        usage = temp_database.client_usage(client.id)
        assert usage == {"children": 1, "entries": 1, "tickets": 0, "invoices": 0}


class TestBillingRates:
    """Tests for billing rate rows."""

    def test_default_and_clear(self, temp_database):
        temp_database.save_billing_rate(BillingRate(id="r1", name="A", rate=Decimal("10"), is_default=True))
        temp_database.save_billing_rate(BillingRate(id="r2", name="B", rate=Decimal("20")))
        assert temp_database.get_default_billing_rate().id == "r1"
        with temp_database.transaction() as conn:
            temp_database.clear_default_billing_rate(conn, keep_id="r2")
        assert temp_database.get_default_billing_rate() is None

    def test_in_use(self, temp_database, client):
        temp_database.save_billing_rate(BillingRate(id="r1", name="A", rate=Decimal("10")))
        assert not temp_database.billing_rate_in_use("r1")
        temp_database.insert_entry(entry(client.id, billing_rate_id="r1"))
        assert temp_database.billing_rate_in_use("r1")


class TestEntries:
    """Tests for time entry rows."""

    def test_insert_assigns_id_and_created_at(self, temp_database, client):
        e = entry(client.id)
        temp_database.insert_entry(e)
        assert e.id
        assert e.created_at is not None
        loaded = temp_database.get_entry(e.id)
        assert loaded.minutes == 60
        assert loaded.start_time == datetime(2026, 1, 15, 9)
        assert loaded.billed is False

    def test_get_missing(self, temp_database):
        assert temp_database.get_entry("nope") is None

    def test_positive_minutes_enforced(self, temp_database, client):
        """The schema refuses non-positive durations."""
        import sqlite3

        with pytest.raises(sqlite3.IntegrityError):
            temp_database.insert_entry(entry(client.id, minutes=0))

    def test_list_order_most_recent_first(self, temp_database, client):
        older = entry(client.id, on=date(2026, 1, 10))
        newer = entry(client.id, on=date(2026, 1, 20))
        same_day = entry(client.id, on=date(2026, 1, 20))
        for e in (older, newer, same_day):
            temp_database.insert_entry(e)
        assert [e.id for e in temp_database.list_entries()] == [same_day.id, newer.id, older.id]

    def test_list_filters(self, temp_database, client):
        temp_database.save_client(Client(id="c2", name="Two"))
        kept = entry(client.id, on=date(2026, 1, 15))
        temp_database.insert_entry(kept)
        temp_database.insert_entry(entry(client.id, on=date(2026, 2, 1)))
        temp_database.insert_entry(entry("c2", on=date(2026, 1, 15)))
        temp_database.insert_entry(entry(client.id, on=date(2026, 1, 16), billable=False))
        found = temp_database.list_entries(
            client_ids=[client.id], billable=True, billed=False,
            date_from=date(2026, 1, 1), date_to=date(2026, 1, 31),
        )
        assert [e.id for e in found] == [kept.id]

    def test_list_empty_client_ids(self, temp_database, client):
        temp_database.insert_entry(entry(client.id))
        assert temp_database.list_entries(client_ids=[]) == []


class TestBillingTransitions:
    """Tests for mark_entries_billed and release_entries."""

    def test_mark_billed(self, temp_database, client, invoice):
        e = entry(client.id)
        temp_database.insert_entry(e)
        with temp_database.transaction() as conn:
            count = temp_database.mark_entries_billed(invoice.id, {e.id: Decimal("80")}, conn)
        assert count == 1
        loaded = temp_database.get_entry(e.id)
        assert loaded.billed and loaded.locked
        assert loaded.invoice_id == invoice.id
        assert loaded.billed_rate == Decimal("80")

    def test_mark_billed_skips_billed_rows(self, temp_database, client, invoice):
        """An already billed entry is not counted a second time."""
        e = entry(client.id)
        temp_database.insert_entry(e)
        with temp_database.transaction() as conn:
            temp_database.mark_entries_billed(invoice.id, {e.id: Decimal("80")}, conn)
            again = temp_database.mark_entries_billed(invoice.id, {e.id: Decimal("90")}, conn)
        assert again == 0
        assert temp_database.get_entry(e.id).billed_rate == Decimal("80")

    def test_release(self, temp_database, client, invoice):
        e = entry(client.id)
        temp_database.insert_entry(e)
        with temp_database.transaction() as conn:
            temp_database.mark_entries_billed(invoice.id, {e.id: Decimal("80")}, conn)
            released = temp_database.release_entries(conn, invoice_id=invoice.id)
        assert released == 1
        loaded = temp_database.get_entry(e.id)
        assert not loaded.billed and not loaded.locked
        assert loaded.invoice_id is None and loaded.billed_rate is None

    def test_release_needs_a_filter(self, temp_database):
        with temp_database.transaction() as conn:
            with pytest.raises(ValueError):
                temp_database.release_entries(conn)


class TestInvoices:
    """Tests for invoice and invoice add-on rows."""

    def test_get_with_addons(self, temp_database, invoice):
        with temp_database.transaction() as conn:
            for position, desc in enumerate(["Second", "First"]):
                temp_database.save_invoice_addon(
                    InvoiceAddon(description=desc, amount=Decimal("10"), invoice_id=invoice.id),
                    position, conn,
                )
        loaded = temp_database.get_invoice(invoice.id)
        assert [a.description for a in loaded.addons] == ["Second", "First"]
        assert loaded.status == "draft"

    def test_get_missing(self, temp_database):
        assert temp_database.get_invoice("nope") is None

    def test_addon_upsert_stays_on_its_invoice(self, temp_database, client, invoice):
        """Saving an addon under another invoice's addon id changes nothing."""
        other = Invoice(client_id=client.id, date=date(2026, 2, 1))
        addon = InvoiceAddon(id="a1", description="Cable", amount=Decimal("10"), invoice_id=invoice.id)
        with temp_database.transaction() as conn:
            temp_database.insert_invoice(other, conn)
            assert temp_database.save_invoice_addon(addon, 0, conn) == 1
            clash = InvoiceAddon(id="a1", description="Other", amount=Decimal("99"), invoice_id=other.id)
            assert temp_database.save_invoice_addon(clash, 0, conn) == 0
        assert [a.description for a in temp_database.get_invoice_addons(invoice.id)] == ["Cable"]
        assert temp_database.get_invoice_addons(other.id) == []

    def test_decimal_precision_kept(self, temp_database, invoice):
        invoice.total_amount = Decimal("80") * 7 / 60
        with temp_database.transaction() as conn:
            temp_database.update_invoice(invoice, conn)
        assert temp_database.get_invoice(invoice.id).total_amount == Decimal("80") * 7 / 60

    def test_list_filters(self, temp_database, client, invoice):
        later = Invoice(client_id=client.id, date=date(2026, 3, 1))
        with temp_database.transaction() as conn:
            temp_database.insert_invoice(later, conn)
        assert [i.id for i in temp_database.list_invoices()] == [later.id, invoice.id]
        assert [i.id for i in temp_database.list_invoices(date_to=date(2026, 2, 1))] == [invoice.id]
        assert temp_database.list_invoices(client_id="other") == []

    def test_delete_removes_addons(self, temp_database, invoice):
        with temp_database.transaction() as conn:
            temp_database.save_invoice_addon(
                InvoiceAddon(description="x", amount=Decimal("1"), invoice_id=invoice.id), 0, conn
            )
            temp_database.delete_invoice(invoice.id, conn)
        assert temp_database.get_invoice(invoice.id) is None
        assert temp_database.get_invoice_addons(invoice.id) == []


class TestTickets:
    """Tests for tickets, statuses and ticket add-ons."""

    def test_unbilled_ticket_addons(self, temp_database, client):
        temp_database.save_ticket_status(TicketStatus(id="s", name="Open", is_default=True))
        temp_database.save_ticket(Ticket(id="t", title="Fix", client_id=client.id, status_id="s"))
        temp_database.save_ticket_addon(TicketAddon(id="a1", ticket_id="t", description="Cable",
                                                    amount=Decimal("5")))
        temp_database.save_ticket_addon(TicketAddon(id="a2", ticket_id="t", description="Disk",
                                                    amount=Decimal("50"), billed=True))
        assert [a.id for a in temp_database.get_unbilled_ticket_addons([client.id])] == ["a1"]
        with temp_database.transaction() as conn:
            assert temp_database.set_ticket_addons_billed(["a1"], True, conn) == 1
        assert temp_database.get_unbilled_ticket_addons([client.id]) == []
