"""Modal screens for the TimeVault application."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.coordinate import Coordinate
from textual.widgets import Button, Checkbox, DataTable, Input, Label, Select
from textual.screen import ModalScreen

from hierarchy import client_tree, get_hierarchy_path
from invoicing import price_entry
from models import BillingRate, Client, InvoiceAddon, TicketAddon, TimeEntry
from utils import formatted_to_minutes, minutes_to_formatted, to_decimal
from widgets import format_minutes, format_money

ALL_CLIENTS = "*"

DIALOG_CSS = """
    .dialog {
        height: auto;
        padding: 1 2;
        background: $surface;
        border: thick $primary;
    }

    .dialog-title {
        width: 100%;
        text-align: center;
        text-style: bold;
        margin-bottom: 1;
    }

    .field-group {
        width: 1fr;
        height: auto;
        margin: 0 1 0 0;
    }

    .field-label {
        height: 1;
        color: $text-muted;
    }

    .field-row {
        width: 100%;
        height: auto;
        margin-bottom: 1;
    }

    .field-row Input {
        width: 100%;
    }

    .dialog-buttons {
        width: 100%;
        height: auto;
        margin-top: 1;
        align: center middle;
    }

    .dialog-buttons Button {
        width: auto;
        min-width: 12;
        margin: 0 2;
    }
"""


def parse_hhmm(val: str) -> time | None:
    """Parse HH:MM to a time, or None if blank or invalid."""
    val = val.strip()
    if not val:
        return None
    try:
        parts = val.split(":")
        return time(int(parts[0]), int(parts[1]))
    except (ValueError, IndexError):
        return None


def parse_duration(val: str, time_format: str = "minutes") -> int | None:
    """Duration typed by the user, as minutes.

    Accepts HH:MM in either mode; plain numbers are minutes, or hours when the
    user prefers the HH:MM format.
    """
    val = val.strip()
    if not val:
        return None
    if ":" in val:
        return formatted_to_minutes(val)
    try:
        number = Decimal(val)
    except InvalidOperation:
        return None
    if time_format == "hh:mm":
        number *= 60
    return int(number) if number == int(number) else None


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no confirmation dialog."""

    CSS = """
    ConfirmScreen {
        align: center middle;
    }

    #confirm-dialog {
        width: 56;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: thick $warning;
    }

    #confirm-buttons {
        width: 100%;
        height: auto;
        margin-top: 1;
    }

    #confirm-buttons Button {
        width: 1fr;
        margin: 0 1;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("y", "confirm", "Yes"),
        Binding("n", "cancel", "No"),
    ]

    def __init__(self, message: str, detail: str | None = None):
        super().__init__()
        self.message = message
        self.detail = detail

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Label(self.message)
            if self.detail:
                yield Label(self.detail, classes="field-label")
            with Horizontal(id="confirm-buttons"):
                yield Button("Yes (Y)", variant="warning", id="yes")
                yield Button("No (N)", variant="default", id="no")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


class EditEntryScreen(ModalScreen[dict | None]):
    """Create or edit a time entry.

    Dismisses with the changed fields (snake_case, parsed), or None if
    cancelled. The caller decides whether that is a create or an update.
    """

    CSS = DIALOG_CSS + """
    EditEntryScreen {
        align: center middle;
    }

    #entry-dialog {
        width: 76;
    }

    #description-group {
        width: 3fr;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    # Field order for Enter key navigation
    FIELD_ORDER = ["entry-date", "entry-start", "entry-duration", "entry-description"]

    def __init__(
        self,
        entry: TimeEntry | None,
        rates: list[BillingRate],
        client: Client | None = None,
        time_format: str = "minutes",
    ):
        super().__init__()
        self.entry = entry
        self.rates = rates
        self.client = client
        self.time_format = time_format

    @property
    def is_new(self) -> bool:
        return self.entry is None or self.entry.id is None

    def _default_rate_id(self) -> str | None:
        if self.entry is not None and self.entry.billing_rate_id:
            return self.entry.billing_rate_id
        return next((r.id for r in self.rates if r.is_default), None)

    def compose(self) -> ComposeResult:
        entry = self.entry
        start = entry.start_time if entry and entry.start_time else datetime.now().replace(second=0, microsecond=0)
        entry_date = entry.date if entry and entry.date else start.date()
        duration = ""
        if entry and entry.minutes:
            duration = (
                minutes_to_formatted(entry.minutes) if self.time_format == "hh:mm" else str(entry.minutes)
            )
        title = "New time entry" if self.is_new else "Edit time entry"
        if self.client is not None:
            title += f" for {self.client.name}"

        with Vertical(id="entry-dialog", classes="dialog"):
            yield Label(title, classes="dialog-title")

            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group"):
                    yield Label("Date", classes="field-label")
                    yield Input(value=entry_date.isoformat(), placeholder="YYYY-MM-DD", id="entry-date")
                with Vertical(classes="field-group"):
                    yield Label("Start (HH:MM)", classes="field-label")
                    yield Input(value=start.strftime("%H:%M"), placeholder="09:00", id="entry-start")
                with Vertical(classes="field-group"):
                    label = "Duration (HH:MM)" if self.time_format == "hh:mm" else "Duration (m)"
                    yield Label(label, classes="field-label")
                    yield Input(value=duration, placeholder="60", id="entry-duration")

            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group", id="description-group"):
                    yield Label("Description", classes="field-label")
                    yield Input(
                        value=entry.description if entry else "",
                        placeholder="What did you work on?",
                        id="entry-description",
                    )

            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group"):
                    yield Label("Billing rate", classes="field-label")
                    yield Select(
                        [(f"{r.name} ({r.rate}/h)", r.id) for r in self.rates],
                        value=self._default_rate_id() or Select.BLANK,
                        allow_blank=True,
                        id="entry-rate",
                    )
                with Vertical(classes="field-group"):
                    yield Label(" ", classes="field-label")
                    yield Checkbox("Billable", value=entry.billable if entry else True, id="entry-billable")

            with Horizontal(classes="dialog-buttons"):
                yield Button("Save", variant="primary", id="save")
                yield Button("Cancel", variant="default", id="cancel")

    def on_mount(self) -> None:
        """Focus the description on new entries, the duration otherwise."""
        target = "#entry-description" if self.is_new else "#entry-duration"
        self.query_one(target, Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Move to next field on Enter, or save if on last field."""
        current_id = event.input.id
        if current_id in self.FIELD_ORDER:
            current_idx = self.FIELD_ORDER.index(current_id)
            if current_idx < len(self.FIELD_ORDER) - 1:
                next_id = self.FIELD_ORDER[current_idx + 1]
                self.query_one(f"#{next_id}", Input).focus()
            else:
                self._save_entry()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
        elif event.button.id == "save":
            self._save_entry()

    def action_cancel(self) -> None:
        self.dismiss(None)

    def _save_entry(self) -> None:
        try:
            entry_date = date.fromisoformat(self.query_one("#entry-date", Input).value.strip())
        except ValueError:
            self.app.notify("Invalid date. Use YYYY-MM-DD", severity="error")
            return

        start = parse_hhmm(self.query_one("#entry-start", Input).value)
        if start is None:
            self.app.notify("Invalid start time. Use HH:MM", severity="error")
            return

        minutes = parse_duration(self.query_one("#entry-duration", Input).value, self.time_format)
        if not minutes or minutes <= 0:
            self.app.notify("Duration must be a positive number of minutes", severity="error")
            return

        description = self.query_one("#entry-description", Input).value.strip()
        if not description:
            self.app.notify("Description is required", severity="error")
            return

        rate_value = self.query_one("#entry-rate", Select).value
        fields = {
            "date": entry_date,
            "start_time": datetime.combine(entry_date, start),
            "minutes": minutes,
            "description": description,
            "billing_rate_id": None if rate_value == Select.BLANK else rate_value,
            "billable": self.query_one("#entry-billable", Checkbox).value,
        }
        if not self.is_new:
            fields = {k: v for k, v in fields.items() if getattr(self.entry, k) != v}
            # moving the start keeps the duration, so end_time follows
            if "start_time" in fields:
                fields.setdefault("minutes", minutes)
        self.dismiss(fields)


class ClientSelectScreen(ModalScreen[Client | str | None]):
    """Pick a client, with search. Sub-clients are indented under their parent.

    Dismisses with the client, ALL_CLIENTS to clear the filter, or None.
    """

    CSS = """
    ClientSelectScreen {
        align: center middle;
    }

    #select-dialog {
        width: 70;
        height: 22;
        padding: 1 2;
        background: $surface;
        border: thick $primary;
    }

    #select-title {
        width: 100%;
        text-align: center;
        text-style: bold;
        margin-bottom: 1;
    }

    #select-search {
        width: 100%;
        margin-bottom: 1;
    }

    #select-table {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, clients: list[Client], allow_all: bool = True):
        super().__init__()
        self.clients = clients
        self.allow_all = allow_all

    def compose(self) -> ComposeResult:
        with Vertical(id="select-dialog"):
            yield Label("Select Client", id="select-title")
            yield Input(placeholder="Search...", id="select-search")
            yield DataTable(id="select-table")

    def on_mount(self) -> None:
        table = self.query_one("#select-table", DataTable)
        table.cursor_type = "row"
        table.add_column("Client", width=44)
        table.add_column("Type", width=14)
        self._refresh_table()
        self.query_one("#select-search", Input).focus()

    def _refresh_table(self, search: str = "") -> None:
        table = self.query_one("#select-table", DataTable)
        table.clear()
        if self.allow_all and not search:
            table.add_row("(all clients)", "", key=ALL_CLIENTS)
        for client, depth in client_tree(self.clients, search):
            table.add_row("  " * depth + client.name, client.type, key=client.id)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "select-search":
            self._refresh_table(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "select-search":
            self.query_one("#select-table", DataTable).focus()

    def on_key(self, event) -> None:
        # Move to table on down arrow from search input
        if event.key == "down":
            search_input = self.query_one("#select-search", Input)
            if search_input.has_focus:
                self.query_one("#select-table", DataTable).focus()
                event.prevent_default()
                event.stop()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.row_key is None:
            return
        client_id = str(event.row_key.value)
        if client_id == ALL_CLIENTS:
            self.dismiss(ALL_CLIENTS)
        else:
            self.dismiss(next((c for c in self.clients if c.id == client_id), None))

    def action_cancel(self) -> None:
        self.dismiss(None)


class GenerateInvoiceScreen(ModalScreen[dict | None]):
    """Choose unbilled entries and ticket add-ons for a new invoice.

    Everything starts selected; Space toggles the highlighted row. Dismisses
    with ``{"entries", "ticket_addons", "invoice_number"}`` or None.
    """

    CSS = DIALOG_CSS + """
    GenerateInvoiceScreen {
        align: center middle;
    }

    #generate-dialog {
        width: 96;
        height: 30;
    }

    #generate-table {
        height: 1fr;
    }

    #generate-total {
        height: auto;
        margin-top: 1;
        text-style: bold;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("space", "toggle_row", "Toggle"),
        Binding("ctrl+a", "toggle_all", "All"),
    ]

    def __init__(
        self,
        client: Client,
        clients: list[Client],
        entries: list[TimeEntry],
        ticket_addons: list[TicketAddon],
        rates: list[BillingRate],
        currency: str = "USD",
        time_format: str = "minutes",
    ):
        super().__init__()
        self.client = client
        self.clients = clients
        self.entries = entries
        self.ticket_addons = ticket_addons
        self.rates = {r.id: r for r in rates}
        self.currency = currency
        self.time_format = time_format
        self.selected: set[str] = {e.id for e in entries} | {a.id for a in ticket_addons}

    def compose(self) -> ComposeResult:
        with Vertical(id="generate-dialog", classes="dialog"):
            yield Label(f"Invoice {self.client.name}", classes="dialog-title")
            yield DataTable(id="generate-table")
            yield Label("", id="generate-total")
            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group"):
                    yield Label("Invoice number (optional)", classes="field-label")
                    yield Input(placeholder="INV-1001", id="generate-number")
            with Horizontal(classes="dialog-buttons"):
                yield Button("Generate", variant="primary", id="generate")
                yield Button("Cancel", variant="default", id="cancel")

    def on_mount(self) -> None:
        table = self.query_one("#generate-table", DataTable)
        table.cursor_type = "row"
        table.add_column("", width=2)
        table.add_column("Date", width=10)
        table.add_column("Client", width=16)
        table.add_column("Description", width=32)
        table.add_column("Time", width=8)
        table.add_column("Amount", width=12)
        self._refresh_table()
        table.focus()

    def _client_name(self, client_id: str | None) -> str:
        path = get_hierarchy_path(self.clients, client_id)
        return path[0].name if path else ""

    def entry_amount(self, entry: TimeEntry) -> Decimal:
        return price_entry(entry, self.clients, self.rates).amount

    def selected_total(self) -> Decimal:
        total = sum(
            (self.entry_amount(e) for e in self.entries if e.id in self.selected), Decimal("0")
        )
        total += sum((a.amount for a in self.ticket_addons if a.id in self.selected), Decimal("0"))
        return total

    def _refresh_table(self) -> None:
        table = self.query_one("#generate-table", DataTable)
        cursor = table.cursor_row
        table.clear()
        for entry in self.entries:
            table.add_row(
                "✓" if entry.id in self.selected else "",
                entry.date.isoformat(),
                self._client_name(entry.client_id)[:16],
                entry.description[:32],
                format_minutes(entry.minutes, self.time_format),
                format_money(self.entry_amount(entry), self.currency),
                key=entry.id,
            )
        for addon in self.ticket_addons:
            table.add_row(
                "✓" if addon.id in self.selected else "",
                "",
                "add-on",
                addon.description[:32],
                "",
                format_money(addon.amount, self.currency),
                key=addon.id,
            )
        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))
        count = len(self.selected)
        self.query_one("#generate-total", Label).update(
            f"{count} item(s) selected  {format_money(self.selected_total(), self.currency)}"
        )

    def toggle(self, item_id: str) -> None:
        if item_id in self.selected:
            self.selected.discard(item_id)
        else:
            self.selected.add(item_id)

    def action_toggle_row(self) -> None:
        table = self.query_one("#generate-table", DataTable)
        if table.row_count == 0:
            return
        row_key = table.coordinate_to_cell_key(Coordinate(table.cursor_row, 0)).row_key
        if row_key:
            self.toggle(str(row_key.value))
            self._refresh_table()

    def action_toggle_all(self) -> None:
        everything = {e.id for e in self.entries} | {a.id for a in self.ticket_addons}
        self.selected = set() if self.selected == everything else everything
        self._refresh_table()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.row_key:
            self.toggle(str(event.row_key.value))
            self._refresh_table()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
        elif event.button.id == "generate":
            self._generate()

    def action_cancel(self) -> None:
        self.dismiss(None)

    def selection(self, invoice_number: str = "") -> dict:
        return {
            "entries": [e.id for e in self.entries if e.id in self.selected],
            "ticket_addons": [a for a in self.ticket_addons if a.id in self.selected],
            "invoice_number": invoice_number.strip() or None,
        }

    def _generate(self) -> None:
        if not self.selected:
            self.app.notify("Select at least one entry or add-on", severity="error")
            return
        self.dismiss(self.selection(self.query_one("#generate-number", Input).value))


class EditAddonScreen(ModalScreen[InvoiceAddon | None]):
    """Create or edit an invoice add-on line."""

    CSS = DIALOG_CSS + """
    EditAddonScreen {
        align: center middle;
    }

    #addon-dialog {
        width: 70;
    }

    #addon-description-group {
        width: 3fr;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    FIELD_ORDER = ["addon-description", "addon-amount", "addon-cost", "addon-quantity"]

    def __init__(self, addon: InvoiceAddon | None = None):
        super().__init__()
        self.addon = addon

    def compose(self) -> ComposeResult:
        addon = self.addon
        with Vertical(id="addon-dialog", classes="dialog"):
            yield Label("New add-on" if addon is None else "Edit add-on", classes="dialog-title")
            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group", id="addon-description-group"):
                    yield Label("Description", classes="field-label")
                    yield Input(value=addon.description if addon else "", id="addon-description")
            with Horizontal(classes="field-row"):
                with Vertical(classes="field-group"):
                    yield Label("Unit price", classes="field-label")
                    yield Input(value=str(addon.amount) if addon else "", placeholder="0.00", id="addon-amount")
                with Vertical(classes="field-group"):
                    yield Label("Unit cost", classes="field-label")
                    yield Input(value=str(addon.cost) if addon else "0", id="addon-cost")
                with Vertical(classes="field-group"):
                    yield Label("Quantity", classes="field-label")
                    yield Input(value=str(addon.quantity) if addon else "1", id="addon-quantity")
            with Horizontal(classes="dialog-buttons"):
                yield Button("Save", variant="primary", id="save")
                yield Button("Cancel", variant="default", id="cancel")

    def on_mount(self) -> None:
        self.query_one("#addon-description", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        current_id = event.input.id
        if current_id in self.FIELD_ORDER:
            current_idx = self.FIELD_ORDER.index(current_id)
            if current_idx < len(self.FIELD_ORDER) - 1:
                self.query_one(f"#{self.FIELD_ORDER[current_idx + 1]}", Input).focus()
            else:
                self._save()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
        elif event.button.id == "save":
            self._save()

    def action_cancel(self) -> None:
        self.dismiss(None)

    def _save(self) -> None:
        description = self.query_one("#addon-description", Input).value.strip()
        if not description:
            self.app.notify("Description is required", severity="error")
            return
        try:
            amount = to_decimal(self.query_one("#addon-amount", Input).value.strip())
            cost = to_decimal(self.query_one("#addon-cost", Input).value.strip())
            quantity = to_decimal(self.query_one("#addon-quantity", Input).value.strip() or "1")
        except InvalidOperation:
            self.app.notify("Price, cost and quantity must be numbers", severity="error")
            return
        if quantity <= 0:
            self.app.notify("Quantity must be positive", severity="error")
            return

        self.dismiss(
            InvoiceAddon(
                id=self.addon.id if self.addon else None,
                invoice_id=self.addon.invoice_id if self.addon else None,
                ticket_addon_id=self.addon.ticket_addon_id if self.addon else None,
                description=description,
                amount=amount,
                cost=cost,
                quantity=quantity,
            )
        )
