"""Custom widgets for the TimeVault application."""

from __future__ import annotations

from decimal import Decimal

from textual.widgets import Static
from rich.text import Text

from models import Client, Invoice
from utils import minutes_to_formatted, quantize_money

CURRENCY_SYMBOLS = {"USD": "$", "GBP": "£", "EUR": "€"}


def format_money(amount: Decimal, currency: str = "USD") -> str:
    """Amount rounded half up to cents, with the currency symbol."""
    amount = quantize_money(amount)
    symbol = CURRENCY_SYMBOLS.get(currency, "")
    sign = "-" if amount < 0 else ""
    text = f"{sign}{symbol}{abs(amount):,.2f}"
    return text if symbol else f"{text} {currency}"


def format_minutes(minutes: int, time_format: str = "minutes") -> str:
    """Duration in the user's preferred format."""
    if time_format == "hh:mm":
        return minutes_to_formatted(minutes)
    return f"{minutes}m"


class ClientHeader(Static):
    """Shows the view title on the left and the selected client's path on the right."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.view_title = ""
        self.path: list[Client] = []

    @property
    def breadcrumb(self) -> str:
        if not self.path:
            return "All clients"
        return " › ".join(c.name for c in reversed(self.path))

    def update_display(self, title: str, path: list[Client], width: int = 74):
        self.view_title = title
        self.path = path

        text = Text()
        text.append(title.upper(), style="bold")
        crumb = self.breadcrumb
        spacing = width - len(title) - len(crumb)
        text.append(" " * spacing if spacing > 0 else "  ")
        text.append(crumb, style="bold")
        self.update(text)


class InvoiceSummary(Static):
    """Totals block for an invoice or an unbilled-time preview."""

    def update_display(
        self,
        invoice: Invoice,
        currency: str = "USD",
        show_money: bool = True,
        time_format: str = "minutes",
        label: str = "TOTAL",
    ):
        text = Text()
        text.append(f"{'Time':>45}  {format_minutes(invoice.total_minutes, time_format):>12}\n")

        if not show_money:
            text.append(f"{label:>45}  {'•••':>12}", style="dim")
            self.update(text)
            return

        lines = [
            ("Cost", invoice.total_cost),
            ("Profit", invoice.total_profit),
        ]
        for name, value in lines:
            line = f"{name:>45}  {format_money(value, currency):>12}\n"
            # Dim zero values
            text.append(line, style="dim" if value == 0 else "")

        # Amount is never dimmed
        text.append(f"{label:>45}  {format_money(invoice.total_amount, currency):>12}", style="bold")
        self.update(text)


class InvoiceHeader(Static):
    """Invoice number, date and draft/sent status."""

    def update_display(self, invoice: Invoice, client: Client | None):
        number = invoice.invoice_number or "(unnumbered)"
        text = Text()
        text.append(f"INVOICE {number}", style="bold")
        text.append(f"  {invoice.date.strftime('%b %d, %Y')}")
        if client is not None:
            text.append(f"  {client.name}")
        text.append("  ")
        if invoice.sent:
            text.append(" SENT ", style="bold reverse green")
        else:
            text.append(" DRAFT ", style="bold reverse yellow")
        self.update(text)
