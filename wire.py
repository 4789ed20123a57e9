"""JSON wire models.

Requests and responses use camelCase field names; the Python side keeps
snake_case. Money is emitted as numbers and timestamps as ISO strings.
"""

import datetime as dt
from decimal import Decimal
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from models import Client, ClientBillingRateOverride, Invoice, InvoiceAddon, TimeEntry

Money = Annotated[Decimal, PlainSerializer(float, return_type=float)]

# Fields a new entry never takes from the caller: it always starts unbilled.
ENTRY_MANAGED_FIELDS = frozenset(
    {"id", "billed", "locked", "invoice_id", "billed_rate", "created_at", "hours"}
)
ENTRY_READ_ONLY_FIELDS = frozenset({"id", "created_at", "hours"})


def _without(body: dict, names: frozenset) -> dict:
    keys = names | {to_camel(n) for n in names}
    return {k: v for k, v in body.items() if k not in keys}


def _blank_to_none(value):
    return None if value == "" else value


def _date_part(value):
    value = _blank_to_none(value)
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        allow_inf_nan=False,
    )


# --- Requests ---


class TimeEntryFields(WireModel):
    description: str = ""
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    minutes: Optional[int] = None
    date: Optional[dt.date] = None
    client_id: Optional[str] = None
    ticket_id: Optional[str] = None
    billing_rate_id: Optional[str] = None
    billable: bool = True

    @field_validator("client_id", "ticket_id", "billing_rate_id", "start_time", "end_time", "minutes",
                     mode="before")
    @classmethod
    def _blank(cls, value):
        return _blank_to_none(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return _date_part(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _naive(cls, value):
        # stored timestamps are naive local time
        return value.replace(tzinfo=None) if value else value


class TimeEntryIn(TimeEntryFields):
    def to_entry(self) -> TimeEntry:
        return TimeEntry(**self.model_dump())


class TimeEntryPatch(TimeEntryFields):
    """Fields to change on an existing entry.

    Invoicing fields are accepted here so the ledger can refuse them by name.
    """

    billed: Any = None
    locked: Any = None
    invoice_id: Any = None
    billed_rate: Any = None

    def to_patch(self) -> dict:
        return self.model_dump(exclude_unset=True)


class InvoiceAddonIn(WireModel):
    id: Optional[str] = None
    description: str = ""
    amount: Decimal
    cost: Decimal = Decimal("0")
    quantity: Decimal = Decimal("1")
    ticket_addon_id: Optional[str] = None
    # echoed back from responses, ignored
    invoice_id: Optional[str] = None
    profit: Optional[float] = None

    @field_validator("cost", "quantity", mode="before")
    @classmethod
    def _default_blank(cls, value, info):
        if value is None or value == "":
            return Decimal("1") if info.field_name == "quantity" else Decimal("0")
        return value

    def to_addon(self) -> InvoiceAddon:
        return InvoiceAddon(
            id=self.id,
            description=self.description,
            amount=self.amount,
            cost=self.cost,
            quantity=self.quantity,
            ticket_addon_id=self.ticket_addon_id or None,
        )


class InvoiceCreate(WireModel):
    client_id: Optional[str] = None
    entries: Optional[list[Union[str, dict[str, Any]]]] = None
    addons: Optional[list[InvoiceAddonIn]] = None
    invoice_number: Optional[str] = None
    date: Optional[dt.date] = None

    @field_validator("client_id", "invoice_number", mode="before")
    @classmethod
    def _blank(cls, value):
        return _blank_to_none(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return _date_part(value)


class InvoicePatch(WireModel):
    """Editable invoice fields. A full invoice from a response may be sent back as is."""

    model_config = ConfigDict(extra="ignore")

    invoice_number: Optional[str] = None
    date: Optional[dt.date] = None
    addons: Optional[list[InvoiceAddonIn]] = None
    sent: bool = False

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _blank(cls, value):
        return _blank_to_none(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return _date_part(value)

    def to_patch(self) -> dict:
        patch = {name: getattr(self, name) for name in self.model_fields_set}
        if "addons" in patch:
            patch["addons"] = [a.to_addon() for a in self.addons or []]
        return patch


class ListQuery(WireModel):
    model_config = ConfigDict(extra="ignore")

    client_id: Optional[str] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None

    @field_validator("client_id", mode="before")
    @classmethod
    def _blank(cls, value):
        return _blank_to_none(value)

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _date(cls, value):
        return _date_part(value)


def decode_entry(body: dict) -> TimeEntry:
    return TimeEntryIn.model_validate(_without(body, ENTRY_MANAGED_FIELDS)).to_entry()


def decode_entry_patch(body: dict) -> dict:
    return TimeEntryPatch.model_validate(_without(body, ENTRY_READ_ONLY_FIELDS)).to_patch()


# --- Responses ---


class OutModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OverrideOut(OutModel):
    id: Optional[str] = None
    client_id: Optional[str] = None
    base_rate_id: str
    override_type: str
    value: Money


class ClientOut(OutModel):
    id: str
    name: str
    type: str
    parent_id: Optional[str] = None
    rate: Money
    billing_rate_overrides: list[OverrideOut] = []
    created_at: Optional[dt.datetime] = None


class TimeEntryOut(OutModel):
    id: Optional[str] = None
    description: str
    date: Optional[dt.date] = None
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    minutes: Optional[int] = None
    hours: Money
    client_id: Optional[str] = None
    ticket_id: Optional[str] = None
    billing_rate_id: Optional[str] = None
    billable: bool
    billed: bool
    locked: bool
    invoice_id: Optional[str] = None
    billed_rate: Optional[Money] = None
    created_at: Optional[dt.datetime] = None


class InvoiceAddonOut(OutModel):
    id: Optional[str] = None
    invoice_id: Optional[str] = None
    description: str
    amount: Money
    cost: Money
    quantity: Money
    profit: Money
    ticket_addon_id: Optional[str] = None


class InvoiceOut(OutModel):
    id: Optional[str] = None
    invoice_number: Optional[str] = None
    client_id: str
    date: dt.date
    status: str
    sent: bool
    total_minutes: int
    total_amount: Money
    total_cost: Money
    total_profit: Money
    entries: list[TimeEntryOut] = []
    addons: list[InvoiceAddonOut] = []
    created_at: Optional[dt.datetime] = None


_OUT_MODELS = {
    Client: ClientOut,
    ClientBillingRateOverride: OverrideOut,
    TimeEntry: TimeEntryOut,
    InvoiceAddon: InvoiceAddonOut,
    Invoice: InvoiceOut,
}


def encode(obj) -> dict:
    """A model object as a JSON-compatible dict with camelCase keys."""
    out = _OUT_MODELS[type(obj)]
    return out.model_validate(obj).model_dump(mode="json", by_alias=True)
