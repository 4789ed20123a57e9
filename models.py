from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

CLIENT_TYPES = ("business", "container", "individual", "organization")
PARENT_CLIENT_TYPES = ("business", "container", "organization")

OVERRIDE_PERCENTAGE = "percentage"
OVERRIDE_FIXED = "fixed"
OVERRIDE_TYPES = (OVERRIDE_PERCENTAGE, OVERRIDE_FIXED)


@dataclass
class ClientBillingRateOverride:
    base_rate_id: str
    override_type: str
    value: Decimal
    client_id: str | None = None
    id: str | None = None


@dataclass
class Client:
    id: str
    name: str
    type: str = "individual"
    parent_id: str | None = None
    rate: Decimal = Decimal("0")
    billing_rate_overrides: list[ClientBillingRateOverride] = field(default_factory=list)
    created_at: datetime | None = None

    @property
    def can_have_children(self) -> bool:
        return self.type in PARENT_CLIENT_TYPES

    def override_for(self, base_rate_id: str) -> ClientBillingRateOverride | None:
        """First override on this client for the given base rate."""
        for override in self.billing_rate_overrides:
            if override.base_rate_id == base_rate_id:
                return override
        return None


@dataclass
class BillingRate:
    id: str
    name: str
    rate: Decimal
    cost: Decimal = Decimal("0")
    description: str | None = None
    is_default: bool = False


@dataclass
class TicketStatus:
    id: str
    name: str
    color: str = "#6B7280"
    is_default: bool = False
    is_closed: bool = False
    sort_order: int = 0


@dataclass
class Ticket:
    id: str
    title: str
    client_id: str
    description: str | None = None
    status_id: str | None = None
    created_at: datetime | None = None


@dataclass
class TicketAddon:
    id: str
    ticket_id: str
    description: str
    amount: Decimal
    billed: bool = False


@dataclass
class TimeEntry:
    description: str
    start_time: datetime | None
    date: date | None = None
    minutes: int | None = None
    end_time: datetime | None = None
    client_id: str | None = None
    ticket_id: str | None = None
    billing_rate_id: str | None = None
    billable: bool = True
    billed: bool = False
    locked: bool = False
    invoice_id: str | None = None
    billed_rate: Decimal | None = None
    id: str | None = None
    created_at: datetime | None = None

    @property
    def hours(self) -> Decimal:
        """Duration as decimal hours."""
        if not self.minutes:
            return Decimal("0")
        return (Decimal(self.minutes) / 60).quantize(Decimal("0.01"))

    @property
    def is_frozen(self) -> bool:
        return self.locked or self.billed


@dataclass
class InvoiceAddon:
    description: str
    amount: Decimal
    cost: Decimal = Decimal("0")
    quantity: Decimal = Decimal("1")
    ticket_addon_id: str | None = None
    invoice_id: str | None = None
    id: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.amount * self.quantity

    @property
    def total_cost(self) -> Decimal:
        return self.cost * self.quantity

    @property
    def profit(self) -> Decimal:
        return self.total_amount - self.total_cost

    @classmethod
    def from_ticket_addon(cls, addon: TicketAddon) -> InvoiceAddon:
        return cls(
            description=addon.description,
            amount=addon.amount,
            ticket_addon_id=addon.id,
        )


@dataclass
class Invoice:
    client_id: str
    date: date
    invoice_number: str | None = None
    total_minutes: int = 0
    total_amount: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    total_profit: Decimal = Decimal("0")
    sent: bool = False
    entries: list[TimeEntry] = field(default_factory=list)
    addons: list[InvoiceAddon] = field(default_factory=list)
    id: str | None = None
    created_at: datetime | None = None

    @property
    def status(self) -> str:
        return "sent" if self.sent else "draft"

    @property
    def total_hours(self) -> Decimal:
        return (Decimal(self.total_minutes) / 60).quantize(Decimal("0.01"))


@dataclass
class Config:
    currency: str = "USD"
    default_hourly_cost: Decimal = Decimal("50")
    invoice_prefix: str = "INV"
    next_invoice_number: int = 1001
    auto_number_invoices: bool = False
    company_name: str = "Your Company Name"
    company_address: str = "Your Address"
    company_email: str = "your@email.com"
    time_entry_format: str = "minutes"
    allow_rateless: bool = True
    round_to_cents: bool = False
