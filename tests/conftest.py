"""Shared fixtures for tests."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from models import BillingRate, Client, ClientBillingRateOverride, TimeEntry


@pytest.fixture
def temp_database(tmp_path, monkeypatch):
    """A Storage on a fresh temporary database."""
    db_path = tmp_path / "test_timevault.db"
    monkeypatch.setenv("TIMEVAULT_DB", str(db_path))

    from storage import Storage

    storage = Storage()
    storage.init_db()
    yield storage


@pytest.fixture
def service(temp_database):
    """A BillingService wired to the temporary database."""
    from service import BillingService

    return BillingService(temp_database).load()


@pytest.fixture
def standard_rate(service) -> BillingRate:
    """Standard Hourly: bills 100/h, costs 50/h, the default rate."""
    return service.rates.create_rate(
        BillingRate(id="rate-std", name="Standard Hourly", rate=Decimal("100"),
                    cost=Decimal("50"), is_default=True)
    )


@pytest.fixture
def critical_rate(service) -> BillingRate:
    return service.rates.create_rate(
        BillingRate(id="rate-crit", name="Critical Hourly", rate=Decimal("130"), cost=Decimal("65"))
    )


@pytest.fixture
def acme(service, standard_rate) -> Client:
    """A business client with an $80 fixed override on Standard Hourly."""
    return service.clients.create(
        Client(
            id="acme",
            name="Acme",
            type="business",
            billing_rate_overrides=[
                ClientBillingRateOverride(base_rate_id=standard_rate.id, override_type="fixed",
                                          value=Decimal("80")),
            ],
        )
    )


@pytest.fixture
def acme_child(service, acme) -> Client:
    """An individual sub-client of Acme with no overrides of its own."""
    return service.clients.create(
        Client(id="acme-child", name="Acme Child", type="individual", parent_id=acme.id)
    )


@pytest.fixture
def globex(service) -> Client:
    """An unrelated client."""
    return service.clients.create(Client(id="globex", name="Globex", type="business"))


@pytest.fixture
def make_entry(service, standard_rate):
    """Create a stored time entry; defaults to 120 minutes at the standard rate."""

    def _make(client_id: str, minutes: int = 120, billing_rate_id: str | None = "default",
              billable: bool = True, on: date = date(2026, 1, 15), description: str = "Work"):
        entry = TimeEntry(
            description=description,
            start_time=datetime.combine(on, datetime.min.time()).replace(hour=9),
            minutes=minutes,
            client_id=client_id,
            billing_rate_id=standard_rate.id if billing_rate_id == "default" else billing_rate_id,
            billable=billable,
        )
        return service.ledger.create(entry)

    return _make
