"""Tests for guard.py - edits to existing invoices."""

from datetime import date
from decimal import Decimal

import pytest

from errors import LockedEntryError, NotFoundError, SentInvoiceError, ValidationError
from guard import is_new_addon_id
from models import InvoiceAddon, Ticket


@pytest.fixture
def draft(service, acme, make_entry):
    """A draft invoice for Acme with two one-hour entries and one addon."""
    entries = [make_entry(acme.id, minutes=60).id, make_entry(acme.id, minutes=60).id]
    return service.invoices.generate(
        acme.id, entries,
        addons=[InvoiceAddon(description="Setup", amount=Decimal("30"), cost=Decimal("10"))],
    )


def test_is_new_addon_id():
    assert is_new_addon_id(None)
    assert is_new_addon_id("temp-1712")
    assert not is_new_addon_id("4f1c")


class TestUpdateInvoiceAddons:
    """Tests for InvoiceGuard.update_invoice_addons."""

    def test_add_update_remove(self, service, draft):
        kept = draft.addons[0]
        kept.amount = Decimal("40")
        new = InvoiceAddon(id="temp-1", description="Training", amount=Decimal("100"),
                           cost=Decimal("60"))
        invoice = service.guard.update_invoice_addons(draft.id, [new, kept])

        assert [a.description for a in invoice.addons] == ["Training", "Setup"]
        assert invoice.total_amount == Decimal("160.00") + Decimal("100") + Decimal("40")
        assert invoice.total_cost == Decimal("100.00") + Decimal("60") + Decimal("10")
        assert not any(a.id.startswith("temp") for a in invoice.addons)

        invoice = service.guard.update_invoice_addons(draft.id, [])
        assert invoice.addons == []
        assert invoice.total_amount == Decimal("160.00")

    def test_unknown_addon_id(self, service, draft):
        ghost = InvoiceAddon(id="not-here", description="x", amount=Decimal("1"))
        with pytest.raises(NotFoundError):
            service.guard.update_invoice_addons(draft.id, [ghost])

    def test_invalid_addon(self, service, draft):
        bad = InvoiceAddon(description="x", amount=Decimal("1"), quantity=Decimal("0"))
        with pytest.raises(ValidationError):
            service.guard.update_invoice_addons(draft.id, [bad])

    def test_removing_ticket_addon_releases_it(self, service, acme, make_entry):
        ticket = service.tickets.create_ticket(Ticket(id="t1", title="Fix", client_id=acme.id))
        ticket_addon = service.tickets.add_addon(ticket.id, "Cable", "5")
        invoice = service.invoices.generate(
            acme.id, [make_entry(acme.id).id], addons=[InvoiceAddon.from_ticket_addon(ticket_addon)]
        )
        service.guard.update_invoice_addons(invoice.id, [])
        assert [a.id for a in service.tickets.unbilled_addons(acme.id)] == [ticket_addon.id]

    def test_new_addon_cannot_link_ticket_addon(self, service, acme, draft):
        ticket = service.tickets.create_ticket(Ticket(id="t1", title="Fix", client_id=acme.id))
        ticket_addon = service.tickets.add_addon(ticket.id, "Cable", "5")
        with pytest.raises(ValidationError):
            service.guard.update_invoice_addons(
                draft.id, [InvoiceAddon.from_ticket_addon(ticket_addon)]
            )


class TestUpdateInvoice:
    """Tests for InvoiceGuard.update_invoice."""

    def test_header_fields(self, service, draft):
        invoice = service.guard.update_invoice(
            draft.id, {"invoice_number": "X-1", "date": date(2026, 2, 1)}
        )
        assert invoice.invoice_number == "X-1"
        assert invoice.date == date(2026, 2, 1)
        assert invoice.total_amount == draft.total_amount

    def test_unknown_field(self, service, draft):
        with pytest.raises(ValidationError):
            service.guard.update_invoice(draft.id, {"total_amount": 0})

    def test_send_in_patch(self, service, draft):
        invoice = service.guard.update_invoice(draft.id, {"sent": True})
        assert invoice.status == "sent"

    def test_missing(self, service):
        with pytest.raises(NotFoundError):
            service.guard.update_invoice("ghost", {"invoice_number": "x"})


class TestSentInvoicesAreFrozen:
    """Once sent, nothing about an invoice or its entries changes."""

    @pytest.fixture
    def sent(self, service, draft):
        service.guard.send_invoice(draft.id)
        return draft

    def test_update(self, service, sent):
        with pytest.raises(SentInvoiceError) as excinfo:
            service.guard.update_invoice(sent.id, {"invoice_number": "X"})
        assert excinfo.value.status == 403

    def test_addons(self, service, sent):
        with pytest.raises(SentInvoiceError):
            service.guard.update_invoice_addons(sent.id, [])

    def test_delete(self, service, sent):
        with pytest.raises(SentInvoiceError):
            service.guard.delete_invoice(sent.id)
        assert service.storage.get_invoice(sent.id) is not None

    def test_detach(self, service, sent):
        with pytest.raises(SentInvoiceError):
            service.guard.detach_entry(sent.entries[0].id)

    def test_send_twice(self, service, sent):
        with pytest.raises(SentInvoiceError):
            service.guard.send_invoice(sent.id)

    def test_entries_stay_locked(self, service, sent):
        with pytest.raises(LockedEntryError):
            service.ledger.update(sent.entries[0].id, {"description": "x"})


class TestDetachAndDelete:
    """Tests for detach_entry and delete_invoice."""

    def test_detach_entry(self, service, draft):
        entry_id = draft.entries[0].id
        invoice = service.guard.detach_entry(entry_id)
        assert invoice.total_minutes == 60
        assert invoice.total_amount == Decimal("80.00") + Decimal("30")
        entry = service.ledger.get(entry_id)
        assert not entry.billed and not entry.locked and entry.invoice_id is None
        service.ledger.update(entry_id, {"description": "Editable again"})

    def test_detach_unbilled_entry(self, service, acme, make_entry):
        entry = make_entry(acme.id)
        with pytest.raises(ValidationError):
            service.guard.detach_entry(entry.id)

    def test_delete_releases_everything(self, service, draft):
        service.guard.delete_invoice(draft.id)
        assert service.storage.get_invoice(draft.id) is None
        for entry in draft.entries:
            stored = service.ledger.get(entry.id)
            assert not stored.billed and stored.invoice_id is None and stored.billed_rate is None
        assert len(service.ledger.unbilled_for_client_subtree(draft.client_id)) == 2

    def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            service.guard.delete_invoice("ghost")
