from __future__ import annotations

import logging
from decimal import InvalidOperation

from errors import NotFoundError, ValidationError
from hierarchy import get_client_hierarchy
from models import Ticket, TicketAddon
from storage import Storage
from utils import new_id, to_decimal

logger = logging.getLogger(__name__)


class TicketBook:
    def __init__(self, storage: Storage):
        self.storage = storage

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.storage.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found", ticket_id=ticket_id)
        return ticket

    def tickets_for_client(self, client_id: str) -> list[Ticket]:
        return self.storage.get_tickets([client_id])

    def create_ticket(self, ticket: Ticket) -> Ticket:
        """Store a ticket, giving it the default status when none is set."""
        if not (ticket.title or "").strip():
            raise ValidationError("Ticket title is required", field="title")
        if self.storage.get_client(ticket.client_id) is None:
            raise NotFoundError("Client not found", client_id=ticket.client_id)
        if ticket.status_id is None:
            default = next((s for s in self.storage.get_all_ticket_statuses() if s.is_default), None)
            ticket.status_id = default.id if default else None
        elif self.storage.get_ticket_status(ticket.status_id) is None:
            raise NotFoundError("Ticket status not found", status_id=ticket.status_id)
        ticket.id = ticket.id or new_id()
        self.storage.save_ticket(ticket)
        return self.storage.get_ticket(ticket.id)

    def add_addon(self, ticket_id: str, description: str, amount) -> TicketAddon:
        self.get_ticket(ticket_id)
        if not (description or "").strip():
            raise ValidationError("Add-on description is required", field="description")
        try:
            amount = to_decimal(amount)
        except InvalidOperation:
            raise ValidationError("Amount must be a number", field="amount") from None
        addon = TicketAddon(id=new_id(), ticket_id=ticket_id, description=description, amount=amount)
        self.storage.save_ticket_addon(addon)
        logger.debug("Added add-on %s to ticket %s", addon.id, ticket_id)
        return addon

    def remove_addon(self, addon_id: str) -> None:
        with self.storage.transaction() as conn:
            found = self.storage.get_ticket_addons([addon_id], conn)
            if not found:
                raise NotFoundError("Ticket add-on not found", ticket_addon_id=addon_id)
            if found[0].billed:
                raise ValidationError("Cannot delete a billed ticket add-on")
            self.storage.delete_ticket_addon(addon_id, conn)

    def unbilled_addons(self, client_id: str, include_sub_clients: bool = True) -> list[TicketAddon]:
        if include_sub_clients:
            clients = self.storage.get_all_clients()
            client_ids = [c.id for c in get_client_hierarchy(clients, client_id)]
        else:
            client_ids = [client_id]
        return self.storage.get_unbilled_ticket_addons(client_ids)
