"""Tests for rates.py - billing rates and ticket statuses."""

from decimal import Decimal

import pytest

from errors import NotFoundError, ValidationError
from models import BillingRate, Ticket, TicketStatus


class TestBillingRates:
    """Tests for RateBook billing rate operations."""

    def test_single_default(self, service, standard_rate):
        """Promoting a rate demotes the previous default."""
        service.rates.create_rate(
            BillingRate(id="", name="Weekend", rate=Decimal("150"), is_default=True)
        )
        defaults = [r.name for r in service.rates.all_rates() if r.is_default]
        assert defaults == ["Weekend"]

    def test_update_to_default(self, service, standard_rate, critical_rate):
        service.rates.update_rate(critical_rate.id, {"is_default": True})
        assert service.rates.default_rate().id == critical_rate.id
        assert not service.rates.get_rate(standard_rate.id).is_default

    def test_unique_name(self, service, standard_rate):
        with pytest.raises(ValidationError):
            service.rates.create_rate(BillingRate(id="", name=standard_rate.name, rate=Decimal("1")))

    def test_rename_to_own_name(self, service, standard_rate):
        updated = service.rates.update_rate(standard_rate.id, {"name": standard_rate.name,
                                                               "rate": "110"})
        assert updated.rate == Decimal("110")

    def test_negative_rate(self, service):
        with pytest.raises(ValidationError):
            service.rates.create_rate(BillingRate(id="", name="Bad", rate=Decimal("-1")))

    def test_non_numeric_rate(self, service):
        with pytest.raises(ValidationError):
            service.rates.create_rate(BillingRate(id="", name="Bad", rate="lots"))

    def test_delete(self, service, standard_rate, critical_rate):
        service.rates.delete_rate(critical_rate.id)
        with pytest.raises(NotFoundError):
            service.rates.get_rate(critical_rate.id)

    def test_delete_default_refused(self, service, standard_rate):
        with pytest.raises(ValidationError, match="default"):
            service.rates.delete_rate(standard_rate.id)

    def test_delete_in_use_refused(self, service, acme, critical_rate, make_entry):
        make_entry(acme.id, billing_rate_id=critical_rate.id)
        with pytest.raises(ValidationError, match="used"):
            service.rates.delete_rate(critical_rate.id)


class TestTicketStatuses:
    """Tests for RateBook ticket status operations."""

    @pytest.fixture
    def statuses(self, service):
        open_ = service.rates.create_status(TicketStatus(id="", name="Open", is_default=True))
        done = service.rates.create_status(TicketStatus(id="", name="Done", is_closed=True,
                                                        sort_order=5))
        return open_, done

    def test_order(self, service, statuses):
        assert [s.name for s in service.rates.all_statuses()] == ["Open", "Done"]

    def test_single_default(self, service, statuses):
        _, done = statuses
        service.rates.update_status(done.id, {"is_default": True})
        assert service.rates.default_status().id == done.id

    def test_delete_default_refused(self, service, statuses):
        open_, _ = statuses
        with pytest.raises(ValidationError):
            service.rates.delete_status(open_.id)

    def test_delete_in_use_refused(self, service, acme, statuses):
        _, done = statuses
        service.tickets.create_ticket(Ticket(id="", title="Fix", client_id=acme.id, status_id=done.id))
        with pytest.raises(ValidationError):
            service.rates.delete_status(done.id)

    def test_delete(self, service, statuses):
        _, done = statuses
        service.rates.delete_status(done.id)
        assert [s.name for s in service.rates.all_statuses()] == ["Open"]
