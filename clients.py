from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation

from errors import NotFoundError, ValidationError
from hierarchy import get_children, get_client_hierarchy, validate_parent
from models import CLIENT_TYPES, OVERRIDE_TYPES, Client, ClientBillingRateOverride
from storage import Storage
from utils import new_id, to_decimal

logger = logging.getLogger(__name__)

CLIENT_PATCH_FIELDS = frozenset({"name", "type", "parent_id", "rate", "billing_rate_overrides"})


class ClientRegistry:
    """Clients and their billing-rate overrides.

    Keeps the full client list in memory for hierarchy walks. Call ``load``
    once at startup and ``reset`` whenever the store is changed behind the
    registry's back.
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self._clients: list[Client] | None = None

    def load(self, force: bool = False) -> list[Client]:
        if self._clients is None or force:
            self._clients = self.storage.get_all_clients()
        return self._clients

    def reset(self) -> None:
        self._clients = None

    def all(self) -> list[Client]:
        return list(self.load())

    def get(self, client_id: str) -> Client:
        for client in self.load():
            if client.id == client_id:
                return client
        raise NotFoundError("Client not found", client_id=client_id)

    def hierarchy(self, client_id: str) -> list[Client]:
        """The client and all of its sub-clients."""
        return get_client_hierarchy(self.load(), client_id)

    def create(self, client: Client) -> Client:
        client.id = client.id or new_id()
        self._validate(client, is_new=True)
        with self.storage.transaction() as conn:
            self.storage.save_client(client, conn)
        self.reset()
        logger.info("Created client %s (%s)", client.name, client.id)
        return self.get(client.id)

    def update(self, client_id: str, patch: dict) -> Client:
        """Apply a partial edit. Overrides, when given, replace the stored set."""
        unknown = set(patch) - CLIENT_PATCH_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown field(s): {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        current = self.get(client_id)
        updated = replace(current, **patch)
        if "billing_rate_overrides" not in patch:
            updated.billing_rate_overrides = list(current.billing_rate_overrides)
        self._validate(updated, is_new=False)
        with self.storage.transaction() as conn:
            self.storage.save_client(updated, conn)
        self.reset()
        return self.get(client_id)

    def remove(self, client_id: str) -> None:
        self.get(client_id)
        with self.storage.transaction() as conn:
            usage = self.storage.client_usage(client_id, conn)
            blockers = [name for name, count in usage.items() if count]
            if blockers:
                raise ValidationError(
                    f"Cannot delete a client that still has {', '.join(blockers)}",
                    client_id=client_id,
                )
            self.storage.delete_client(client_id, conn)
        self.reset()
        logger.info("Deleted client %s", client_id)

    def _validate(self, client: Client, is_new: bool) -> None:
        if not (client.name or "").strip():
            raise ValidationError("Client name is required", field="name")
        if not client.type:
            client.type = "individual"
        elif client.type not in CLIENT_TYPES:
            logger.debug("Client %s uses unrecognised type %r", client.id, client.type)
        if not is_new and not client.can_have_children and get_children(self.load(), client.id):
            raise ValidationError(
                f"A {client.type} client cannot have sub-clients; move them first", field="type"
            )

        try:
            client.rate = to_decimal(client.rate)
        except InvalidOperation:
            raise ValidationError("Rate must be a number", field="rate") from None

        if client.parent_id:
            existing = self.load()
            validate_parent(existing, None if is_new else client.id, client.parent_id)
        else:
            client.parent_id = None

        rate_ids = {r.id for r in self.storage.get_all_billing_rates()}
        seen: set[str] = set()
        for override in client.billing_rate_overrides:
            _validate_override(override, rate_ids)
            if override.base_rate_id in seen:
                raise ValidationError(
                    "Only one override per billing rate is allowed",
                    field="billingRateOverrides",
                    base_rate_id=override.base_rate_id,
                )
            seen.add(override.base_rate_id)


def _validate_override(override: ClientBillingRateOverride, rate_ids: set[str]) -> None:
    if override.override_type not in OVERRIDE_TYPES:
        raise ValidationError(
            f"Invalid override type {override.override_type!r}", field="billingRateOverrides"
        )
    if override.base_rate_id not in rate_ids:
        raise NotFoundError("Billing rate not found", base_rate_id=override.base_rate_id)
    try:
        override.value = to_decimal(override.value)
    except InvalidOperation:
        raise ValidationError("Override value must be a number", field="billingRateOverrides") from None
    if override.value < Decimal("0"):
        raise ValidationError("Override value cannot be negative", field="billingRateOverrides")
