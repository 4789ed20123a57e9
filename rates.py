"""Billing rates and ticket statuses.

Both carry an ``is_default`` flag of which at most one row may hold; promoting
a row and demoting the previous default happen in the same transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from decimal import InvalidOperation

from errors import NotFoundError, ValidationError
from models import BillingRate, TicketStatus
from storage import Storage
from utils import new_id, to_decimal

logger = logging.getLogger(__name__)

RATE_PATCH_FIELDS = frozenset({"name", "rate", "cost", "description", "is_default"})
STATUS_PATCH_FIELDS = frozenset({"name", "color", "is_default", "is_closed", "sort_order"})


def _check_patch(patch: dict, allowed: frozenset[str]) -> None:
    unknown = set(patch) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown field(s): {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
        )


def _check_unique_name(existing_id: str | None, other_id: str | None, name: str) -> None:
    if other_id is not None and other_id != existing_id:
        raise ValidationError(f"{name!r} already exists", field="name")


class RateBook:
    def __init__(self, storage: Storage):
        self.storage = storage

    # --- Billing rates ---

    def all_rates(self) -> list[BillingRate]:
        return self.storage.get_all_billing_rates()

    def get_rate(self, rate_id: str, conn: sqlite3.Connection | None = None) -> BillingRate:
        rate = self.storage.get_billing_rate(rate_id, conn)
        if rate is None:
            raise NotFoundError("Rate not found", billing_rate_id=rate_id)
        return rate

    def default_rate(self) -> BillingRate | None:
        return self.storage.get_default_billing_rate()

    def create_rate(self, rate: BillingRate) -> BillingRate:
        rate.id = rate.id or new_id()
        self._validate_rate(rate)
        with self.storage.transaction() as conn:
            other = self.storage.get_billing_rate_by_name(rate.name, conn)
            _check_unique_name(rate.id, other.id if other else None, rate.name)
            if rate.is_default:
                self.storage.clear_default_billing_rate(conn, keep_id=rate.id)
            self.storage.save_billing_rate(rate, conn)
        logger.info("Created billing rate %s", rate.name)
        return rate

    def update_rate(self, rate_id: str, patch: dict) -> BillingRate:
        _check_patch(patch, RATE_PATCH_FIELDS)
        with self.storage.transaction() as conn:
            updated = replace(self.get_rate(rate_id, conn), **patch)
            self._validate_rate(updated)
            other = self.storage.get_billing_rate_by_name(updated.name, conn)
            _check_unique_name(rate_id, other.id if other else None, updated.name)
            if updated.is_default:
                self.storage.clear_default_billing_rate(conn, keep_id=rate_id)
            self.storage.save_billing_rate(updated, conn)
        return updated

    def delete_rate(self, rate_id: str) -> None:
        with self.storage.transaction() as conn:
            rate = self.get_rate(rate_id, conn)
            if rate.is_default:
                raise ValidationError("Cannot delete the default billing rate")
            if self.storage.billing_rate_in_use(rate_id, conn):
                raise ValidationError(
                    "Cannot delete a billing rate used by time entries or client overrides"
                )
            self.storage.delete_billing_rate(rate_id, conn)
        logger.info("Deleted billing rate %s", rate.name)

    @staticmethod
    def _validate_rate(rate: BillingRate) -> None:
        if not (rate.name or "").strip():
            raise ValidationError("Rate name is required", field="name")
        try:
            rate.rate = to_decimal(rate.rate)
            rate.cost = to_decimal(rate.cost)
        except InvalidOperation:
            raise ValidationError("Rate and cost must be numbers", field="rate") from None
        if rate.rate < 0 or rate.cost < 0:
            raise ValidationError("Rate and cost cannot be negative", field="rate")

    # --- Ticket statuses ---

    def all_statuses(self) -> list[TicketStatus]:
        return self.storage.get_all_ticket_statuses()

    def get_status(self, status_id: str, conn: sqlite3.Connection | None = None) -> TicketStatus:
        status = self.storage.get_ticket_status(status_id, conn)
        if status is None:
            raise NotFoundError("Ticket status not found", status_id=status_id)
        return status

    def default_status(self) -> TicketStatus | None:
        return next((s for s in self.all_statuses() if s.is_default), None)

    def create_status(self, status: TicketStatus) -> TicketStatus:
        status.id = status.id or new_id()
        if not (status.name or "").strip():
            raise ValidationError("Status name is required", field="name")
        with self.storage.transaction() as conn:
            names = {s.name: s.id for s in self.storage.get_all_ticket_statuses(conn)}
            _check_unique_name(status.id, names.get(status.name), status.name)
            if status.is_default:
                self.storage.clear_default_ticket_status(conn, keep_id=status.id)
            self.storage.save_ticket_status(status, conn)
        return status

    def update_status(self, status_id: str, patch: dict) -> TicketStatus:
        _check_patch(patch, STATUS_PATCH_FIELDS)
        with self.storage.transaction() as conn:
            updated = replace(self.get_status(status_id, conn), **patch)
            if not (updated.name or "").strip():
                raise ValidationError("Status name is required", field="name")
            names = {s.name: s.id for s in self.storage.get_all_ticket_statuses(conn)}
            _check_unique_name(status_id, names.get(updated.name), updated.name)
            if updated.is_default:
                self.storage.clear_default_ticket_status(conn, keep_id=status_id)
            self.storage.save_ticket_status(updated, conn)
        return updated

    def delete_status(self, status_id: str) -> None:
        with self.storage.transaction() as conn:
            status = self.get_status(status_id, conn)
            if status.is_default:
                raise ValidationError("Cannot delete the default ticket status")
            if any(t.status_id == status_id for t in self.storage.get_tickets(conn=conn)):
                raise ValidationError("Cannot delete a ticket status that tickets still use")
            self.storage.delete_ticket_status(status_id, conn)
