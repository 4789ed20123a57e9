#!/usr/bin/env python3
"""TimeVault TUI application."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Footer, DataTable
from textual.coordinate import Coordinate
from rich.text import Text

from errors import BillingError
from hierarchy import client_tree, get_hierarchy_path, has_unbilled_time
from invoicing import price_entry
from models import Client, Invoice, InvoiceAddon, TimeEntry
from screens import (
    ALL_CLIENTS,
    ClientSelectScreen,
    ConfirmScreen,
    EditAddonScreen,
    EditEntryScreen,
    GenerateInvoiceScreen,
)
from service import BillingService, configure_logging
from widgets import ClientHeader, InvoiceHeader, InvoiceSummary, format_minutes, format_money

logger = logging.getLogger(__name__)

class TimeVaultApp(App):
    """Main TimeVault application."""

    CSS = """
    Screen {
        background: $surface;
    }

    #client-header, #invoice-header {
        height: auto;
        background: $primary;
        color: $text;
        padding: 0 1;
        text-style: bold;
    }

    #clients-table, #entries-table, #invoices-table, #invoice-table {
        height: 1fr;
        margin: 1 2;
    }

    #entries-summary, #invoice-summary {
        height: auto;
        padding: 1 2;
        color: $text;
    }

    .hidden {
        display: none;
    }

    DataTable {
        height: 100%;
    }

    DataTable > .datatable--cursor {
        background: $secondary;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("c", "clients_view", "Clients"),
        Binding("t", "entries_view", "Time"),
        Binding("i", "invoices_view", "Invoices"),
        Binding("f", "select_client", "Client"),
        Binding("$", "toggle_money", "$"),
        Binding("n", "new_entry", "New"),
        Binding("e", "edit_entry", "Edit"),
        Binding("d", "delete", "Delete"),
        Binding("g", "generate_invoice", "Invoice"),
        Binding("s", "send_invoice", "Send"),
        Binding("a", "add_addon", "Add-on"),
        Binding("x", "detach_entry", "Detach"),
        Binding("escape", "back", "Back"),
    ]

    def __init__(self, service: BillingService | None = None):
        super().__init__()
        self.service = (service or BillingService()).load()

        # View mode: "clients", "entries", "invoices" or "invoice"
        self.view_mode = "entries"

        # Client the entries/invoices views are filtered to, None for all
        self.current_client_id: str | None = None

        # Invoice shown in the invoice detail view
        self.current_invoice_id: str | None = None

        # Privacy mode: hide amounts by default
        self.show_money = False

    @property
    def config(self):
        return self.service.config

    @property
    def clients(self) -> list[Client]:
        return self.service.clients.all()

    @property
    def current_client(self) -> Client | None:
        if self.current_client_id is None:
            return None
        return next((c for c in self.clients if c.id == self.current_client_id), None)

    def compose(self) -> ComposeResult:
        yield ClientHeader(id="client-header")
        # Clients view
        yield Container(DataTable(id="clients-table"), id="clients-table-container", classes="hidden")
        # Time entries view
        yield Container(DataTable(id="entries-table"), id="entries-table-container")
        yield InvoiceSummary(id="entries-summary")
        # Invoices list view
        yield Container(DataTable(id="invoices-table"), id="invoices-table-container", classes="hidden")
        # Invoice detail view
        yield InvoiceHeader(id="invoice-header", classes="hidden")
        yield Container(DataTable(id="invoice-table"), id="invoice-table-container", classes="hidden")
        yield InvoiceSummary(id="invoice-summary", classes="hidden")
        yield Footer()

    def on_mount(self):
        self._setup_tables()
        self._set_view_mode("entries")

    def _setup_tables(self):
        for table_id in ("clients", "entries", "invoices", "invoice"):
            table = self.query_one(f"#{table_id}-table", DataTable)
            table.cursor_type = "row"
            table.clear(columns=True)

        table = self.query_one("#clients-table", DataTable)
        table.add_column("Client", width=36)
        table.add_column("Type", width=14)
        table.add_column("Overrides", width=10)
        table.add_column("Unbilled", width=10)

        table = self.query_one("#entries-table", DataTable)
        table.add_column("Date", width=10)
        table.add_column("Start", width=6)
        table.add_column("Time", width=8)
        table.add_column("Client", width=16)
        table.add_column("Description", width=36)
        table.add_column("Status", width=8)
        if self.show_money:
            table.add_column("Amount", width=12)

        table = self.query_one("#invoices-table", DataTable)
        table.add_column("Number", width=12)
        table.add_column("Date", width=10)
        table.add_column("Client", width=24)
        table.add_column("Time", width=8)
        table.add_column("Status", width=6)
        if self.show_money:
            table.add_column("Amount", width=12)
            table.add_column("Profit", width=12)

        table = self.query_one("#invoice-table", DataTable)
        table.add_column("Date", width=10)
        table.add_column("Description", width=40)
        table.add_column("Qty/Time", width=9)
        table.add_column("Rate", width=10)
        if self.show_money:
            table.add_column("Amount", width=12)

    # --- Display ---

    def _client_name(self, client_id: str | None) -> str:
        path = get_hierarchy_path(self.clients, client_id)
        return path[0].name if path else "—"

    def _visible_client_ids(self) -> list[str] | None:
        if self.current_client_id is None:
            return None
        return [c.id for c in self.service.clients.hierarchy(self.current_client_id)]

    def _visible_entries(self) -> list[TimeEntry]:
        client_ids = self._visible_client_ids()
        return self.service.storage.list_entries(client_ids=client_ids)

    def _visible_invoices(self) -> list[Invoice]:
        invoices = self.service.storage.list_invoices()
        client_ids = self._visible_client_ids()
        if client_ids is None:
            return invoices
        return [i for i in invoices if i.client_id in client_ids]

    def _entry_status(self, entry: TimeEntry) -> Text:
        if entry.locked:
            return Text("locked", style="dim")
        if not entry.billable:
            return Text("n/b", style="dim italic")
        return Text("open", style="green")

    def _entry_amount(self, entry: TimeEntry, rates: dict) -> Decimal:
        return price_entry(
            entry, self.clients, rates, use_snapshot=True, round_to_cents=self.config.round_to_cents
        ).amount

    def _unbilled_preview(self, entries: list[TimeEntry]) -> Invoice:
        """Totals of billable, unbilled entries among those shown."""
        rates = {r.id: r for r in self.service.rates.all_rates()}
        preview = Invoice(client_id=self.current_client_id or "", date=date.today())
        round_to_cents = self.config.round_to_cents
        for entry in entries:
            if entry.billed or not entry.billable:
                continue
            charge = price_entry(entry, self.clients, rates, round_to_cents=round_to_cents)
            preview.total_minutes += entry.minutes or 0
            preview.total_amount += charge.amount
            preview.total_cost += charge.cost
        preview.total_profit = preview.total_amount - preview.total_cost
        return preview

    def _refresh_display(self):
        titles = {
            "clients": "Clients",
            "entries": "Time entries",
            "invoices": "Invoices",
            "invoice": "Invoice",
        }
        header = self.query_one("#client-header", ClientHeader)
        header.update_display(
            titles[self.view_mode], get_hierarchy_path(self.clients, self.current_client_id)
        )
        if self.view_mode == "clients":
            self._refresh_clients_display()
        elif self.view_mode == "entries":
            self._refresh_entries_display()
        elif self.view_mode == "invoices":
            self._refresh_invoices_display()
        elif self.view_mode == "invoice":
            self._refresh_invoice_display()

    def _refresh_clients_display(self):
        table = self.query_one("#clients-table", DataTable)
        table.clear()
        clients = self.clients
        unbilled = self.service.storage.list_entries(billable=True, billed=False)
        for client, depth in client_tree(clients):
            flag = "●" if has_unbilled_time(unbilled, clients, client.id) else ""
            table.add_row(
                "  " * depth + client.name,
                client.type,
                str(len(client.billing_rate_overrides)) if client.billing_rate_overrides else "",
                Text(flag, style="yellow"),
                key=client.id,
            )

    def _refresh_entries_display(self):
        config = self.config
        table = self.query_one("#entries-table", DataTable)
        cursor = table.cursor_row
        table.clear()
        entries = self._visible_entries()
        rates = {r.id: r for r in self.service.rates.all_rates()}
        for entry in entries:
            row = [
                entry.date.isoformat(),
                entry.start_time.strftime("%H:%M") if entry.start_time else "",
                format_minutes(entry.minutes or 0, config.time_entry_format),
                self._client_name(entry.client_id)[:16],
                entry.description[:36],
                self._entry_status(entry),
            ]
            if self.show_money:
                row.append(format_money(self._entry_amount(entry, rates), config.currency))
            table.add_row(*row, key=entry.id)
        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))

        summary = self.query_one("#entries-summary", InvoiceSummary)
        summary.update_display(
            self._unbilled_preview(entries),
            currency=config.currency,
            show_money=self.show_money,
            time_format=config.time_entry_format,
            label="UNBILLED",
        )

    def _refresh_invoices_display(self):
        config = self.config
        table = self.query_one("#invoices-table", DataTable)
        table.clear()
        for invoice in self._visible_invoices():
            status = Text("sent", style="green") if invoice.sent else Text("draft", style="yellow")
            row = [
                invoice.invoice_number or "—",
                invoice.date.isoformat(),
                self._client_name(invoice.client_id)[:24],
                format_minutes(invoice.total_minutes, config.time_entry_format),
                status,
            ]
            if self.show_money:
                row.append(format_money(invoice.total_amount, config.currency))
                row.append(format_money(invoice.total_profit, config.currency))
            table.add_row(*row, key=invoice.id)

    def _refresh_invoice_display(self):
        config = self.config
        invoice = self.service.storage.get_invoice(self.current_invoice_id) if self.current_invoice_id else None
        if invoice is None:
            self._set_view_mode("invoices")
            return
        client = next((c for c in self.clients if c.id == invoice.client_id), None)
        self.query_one("#invoice-header", InvoiceHeader).update_display(invoice, client)

        table = self.query_one("#invoice-table", DataTable)
        table.clear()
        rates = {r.id: r for r in self.service.rates.all_rates()}
        for entry in invoice.entries:
            charge = price_entry(
                entry, self.clients, rates, use_snapshot=True, round_to_cents=self.config.round_to_cents
            )
            row = [
                entry.date.isoformat(),
                entry.description[:40],
                format_minutes(entry.minutes or 0, config.time_entry_format),
                f"{charge.rate:.2f}",
            ]
            if self.show_money:
                row.append(format_money(charge.amount, config.currency))
            table.add_row(*row, key=f"entry:{entry.id}")
        for addon in invoice.addons:
            row = [
                "",
                addon.description[:40],
                f"× {addon.quantity.normalize()}",
                f"{addon.amount:.2f}",
            ]
            if self.show_money:
                row.append(format_money(addon.total_amount, config.currency))
            table.add_row(*row, key=f"addon:{addon.id}")

        self.query_one("#invoice-summary", InvoiceSummary).update_display(
            invoice,
            currency=config.currency,
            show_money=self.show_money,
            time_format=config.time_entry_format,
        )

    # --- View switching ---

    def _set_view_mode(self, mode: str):
        """Switch between view modes and toggle widget visibility."""
        self.view_mode = mode

        view_widgets = {
            "clients": ["#clients-table-container"],
            "entries": ["#entries-table-container", "#entries-summary"],
            "invoices": ["#invoices-table-container"],
            "invoice": ["#invoice-header", "#invoice-table-container", "#invoice-summary"],
        }
        for view, widget_ids in view_widgets.items():
            for widget_id in widget_ids:
                widget = self.query_one(widget_id)
                if view == mode:
                    widget.remove_class("hidden")
                else:
                    widget.add_class("hidden")

        self.refresh_bindings()
        self._refresh_display()
        self.query_one(f"#{mode}-table", DataTable).focus()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Check if an action is available based on current view mode."""
        if action == "clients_view":
            return self.view_mode != "clients"
        elif action == "entries_view":
            return self.view_mode != "entries"
        elif action == "invoices_view":
            return self.view_mode != "invoices"
        elif action in ("new_entry", "edit_entry"):
            return True if self.view_mode == "entries" else None
        elif action == "delete":
            return True if self.view_mode in ("entries", "invoices", "invoice") else None
        elif action == "generate_invoice":
            return True if self.view_mode in ("entries", "clients", "invoices") else None
        elif action == "send_invoice":
            return True if self.view_mode in ("invoices", "invoice") else None
        elif action in ("add_addon", "detach_entry", "back"):
            return True if self.view_mode == "invoice" else None
        return True

    def action_clients_view(self):
        self._set_view_mode("clients")

    def action_entries_view(self):
        self._set_view_mode("entries")

    def action_invoices_view(self):
        self._set_view_mode("invoices")

    def action_back(self):
        if self.view_mode == "invoice":
            self._set_view_mode("invoices")

    def action_toggle_money(self):
        """Toggle display of amounts."""
        self.show_money = not self.show_money
        # Rebuild tables with new column structure
        self._setup_tables()
        self._refresh_display()

    def _selected_key(self, table_id: str) -> str | None:
        table = self.query_one(f"#{table_id}", DataTable)
        if table.row_count == 0:
            return None
        row_key = table.coordinate_to_cell_key(Coordinate(table.cursor_row, 0)).row_key
        return str(row_key.value) if row_key else None

    def _run(self, operation, *args, success: str | None = None):
        """Call a service operation, reporting business-rule failures to the user."""
        try:
            result = operation(*args)
        except BillingError as e:
            logger.info("%s refused: %s", getattr(operation, "__name__", operation), e.message)
            self.notify(e.message, severity="error")
            return None
        if success:
            self.notify(success)
        self._refresh_display()
        return result if result is not None else True

    # --- Client selection ---

    def action_select_client(self):
        self.push_screen(ClientSelectScreen(self.clients), self._on_client_selected)

    def _on_client_selected(self, client: Client | str | None) -> None:
        if client is None:
            return
        self.current_client_id = None if client == ALL_CLIENTS else client.id
        self._refresh_display()

    # --- Time entries ---

    def action_new_entry(self):
        if self.view_mode != "entries":
            return
        client = self.current_client
        if client is None:
            self.notify("Choose a client first (f)", severity="warning")
            return
        self.push_screen(
            EditEntryScreen(
                None, self.service.rates.all_rates(), client, self.config.time_entry_format
            ),
            self._on_entry_created,
        )

    def _on_entry_created(self, fields: dict | None) -> None:
        if not fields:
            return
        entry = TimeEntry(client_id=self.current_client_id, **fields)
        self._run(self.service.ledger.create, entry, success="Time entry added")

    def action_edit_entry(self):
        if self.view_mode != "entries":
            return
        entry_id = self._selected_key("entries-table")
        if entry_id is None:
            return
        entry = self.service.storage.get_entry(entry_id)
        if entry is None:
            return
        if entry.is_frozen:
            self.notify("This entry is on an invoice and cannot be edited", severity="warning")
            return
        client = next((c for c in self.clients if c.id == entry.client_id), None)
        self.push_screen(
            EditEntryScreen(
                entry, self.service.rates.all_rates(), client, self.config.time_entry_format
            ),
            lambda fields: self._on_entry_edited(entry_id, fields),
        )

    def _on_entry_edited(self, entry_id: str, fields: dict | None) -> None:
        if fields:
            self._run(self.service.ledger.update, entry_id, fields, success="Time entry saved")

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Handle Enter/double-click on table row."""
        if event.control.id != f"{self.view_mode}-table" or not event.row_key:
            return
        key = str(event.row_key.value)
        if self.view_mode == "clients":
            self.current_client_id = key
            self._set_view_mode("entries")
        elif self.view_mode == "entries":
            self.action_edit_entry()
        elif self.view_mode == "invoices":
            self.current_invoice_id = key
            self._set_view_mode("invoice")
        elif self.view_mode == "invoice" and key.startswith("addon:"):
            self._edit_addon(key.split(":", 1)[1])

    # --- Deleting ---

    def action_delete(self):
        if self.view_mode == "entries":
            entry_id = self._selected_key("entries-table")
            if entry_id:
                self.push_screen(
                    ConfirmScreen("Delete this time entry?"),
                    lambda confirmed: confirmed and self._run(
                        self.service.ledger.remove, entry_id, success="Time entry deleted"
                    ),
                )
        elif self.view_mode == "invoices":
            invoice_id = self._selected_key("invoices-table")
            if invoice_id:
                self._confirm_delete_invoice(invoice_id)
        elif self.view_mode == "invoice":
            key = self._selected_key("invoice-table")
            if key and key.startswith("addon:"):
                self._remove_addon(key.split(":", 1)[1])
            elif self.current_invoice_id:
                self._confirm_delete_invoice(self.current_invoice_id)

    def _confirm_delete_invoice(self, invoice_id: str) -> None:
        self.push_screen(
            ConfirmScreen(
                "Delete this invoice?", "Its time entries and add-ons return to unbilled."
            ),
            lambda confirmed: self._on_delete_invoice_confirmed(confirmed, invoice_id),
        )

    def _on_delete_invoice_confirmed(self, confirmed: bool | None, invoice_id: str) -> None:
        if not confirmed:
            return
        if self.view_mode == "invoice":
            self._set_view_mode("invoices")
        self._run(self.service.guard.delete_invoice, invoice_id, success="Invoice deleted")

    # --- Invoices ---

    def action_generate_invoice(self):
        client = self.current_client
        if self.view_mode == "clients":
            client_id = self._selected_key("clients-table")
            client = next((c for c in self.clients if c.id == client_id), None)
        if client is None:
            self.notify("Choose a client first (f)", severity="warning")
            return
        entries = self.service.ledger.unbilled_for_client_subtree(client.id, clients=self.clients)
        ticket_addons = self.service.tickets.unbilled_addons(client.id)
        if not entries and not ticket_addons:
            self.notify(f"{client.name} has no unbilled time", severity="warning")
            return
        config = self.config
        self.push_screen(
            GenerateInvoiceScreen(
                client,
                self.clients,
                entries,
                ticket_addons,
                self.service.rates.all_rates(),
                config.currency,
                config.time_entry_format,
            ),
            lambda selection: self._on_generate(client.id, selection),
        )

    def _on_generate(self, client_id: str, selection: dict | None) -> None:
        if not selection:
            return
        addons = [InvoiceAddon.from_ticket_addon(a) for a in selection["ticket_addons"]]
        invoice = self._run(
            self.service.invoices.generate,
            client_id,
            selection["entries"],
            addons,
            selection["invoice_number"],
        )
        if isinstance(invoice, Invoice):
            self.notify(
                f"Invoice {invoice.invoice_number} created" if invoice.invoice_number else "Invoice created"
            )
            self.current_invoice_id = invoice.id
            self._set_view_mode("invoice")

    def action_send_invoice(self):
        invoice_id = (
            self.current_invoice_id if self.view_mode == "invoice" else self._selected_key("invoices-table")
        )
        if not invoice_id:
            return
        self.push_screen(
            ConfirmScreen("Mark this invoice as sent?", "Sent invoices can no longer be changed."),
            lambda confirmed: confirmed and self._run(
                self.service.guard.send_invoice, invoice_id, success="Invoice sent"
            ),
        )

    def action_detach_entry(self):
        key = self._selected_key("invoice-table")
        if not key or not key.startswith("entry:"):
            self.notify("Select a time entry to remove from the invoice", severity="warning")
            return
        self._run(
            self.service.guard.detach_entry,
            key.split(":", 1)[1],
            success="Time entry returned to unbilled",
        )

    def _current_addons(self) -> list[InvoiceAddon]:
        invoice = self.service.storage.get_invoice(self.current_invoice_id)
        return invoice.addons if invoice else []

    def action_add_addon(self):
        if self.view_mode != "invoice" or not self.current_invoice_id:
            return
        self.push_screen(EditAddonScreen(), self._on_addon_saved)

    def _edit_addon(self, addon_id: str) -> None:
        addon = next((a for a in self._current_addons() if a.id == addon_id), None)
        if addon is not None:
            self.push_screen(EditAddonScreen(addon), self._on_addon_saved)

    def _on_addon_saved(self, addon: InvoiceAddon | None) -> None:
        if addon is None:
            return
        addons = self._current_addons()
        if addon.id:
            addons = [addon if a.id == addon.id else a for a in addons]
        else:
            addons.append(addon)
        self._run(
            self.service.guard.update_invoice_addons,
            self.current_invoice_id,
            addons,
            success="Add-ons updated",
        )

    def _remove_addon(self, addon_id: str) -> None:
        addons = [a for a in self._current_addons() if a.id != addon_id]
        self._run(
            self.service.guard.update_invoice_addons,
            self.current_invoice_id,
            addons,
            success="Add-on removed",
        )


def main():
    import sys
    if len(sys.argv) > 1 and sys.argv[1] == "--db-info":
        from datetime import datetime
        from storage import default_db_path
        db_path = default_db_path()
        print(f"Database: {db_path}")
        if db_path.exists():
            mtime = datetime.fromtimestamp(db_path.stat().st_mtime)
            size = db_path.stat().st_size
            print(f"Modified: {mtime.strftime('%Y-%m-%d %H:%M:%S')}")
            print(f"Size: {size:,} bytes")
        else:
            print("Status: Does not exist (will be created on first run)")
        return

    configure_logging()
    app = TimeVaultApp()
    app.run()


if __name__ == "__main__":
    main()
