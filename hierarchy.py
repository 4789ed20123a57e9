"""Client hierarchy walks and billing-rate override resolution.

All functions work on a flat collection of clients linked by ``parent_id``.
Walks keep a visited set and raise ConsistencyError on a cycle instead of
looping forever on corrupted data.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from errors import ConsistencyError, NotFoundError, ValidationError
from models import (
    OVERRIDE_FIXED,
    OVERRIDE_PERCENTAGE,
    BillingRate,
    Client,
    ClientBillingRateOverride,
    TimeEntry,
)


def _index(clients: Iterable[Client]) -> dict[str, Client]:
    by_id: dict[str, Client] = {}
    for client in clients:
        by_id.setdefault(client.id, client)
    return by_id


def get_children(clients: Sequence[Client], client_id: str) -> list[Client]:
    return [c for c in clients if c.parent_id == client_id]


def get_descendants(clients: Sequence[Client], client_id: str) -> list[Client]:
    """All clients below ``client_id``, depth first, in input order per level."""
    children_of: dict[str, list[Client]] = {}
    for client in clients:
        if client.parent_id is not None:
            children_of.setdefault(client.parent_id, []).append(client)

    descendants: list[Client] = []
    visited = {client_id}
    stack = list(reversed(children_of.get(client_id, [])))
    while stack:
        child = stack.pop()
        if child.id in visited:
            raise ConsistencyError(
                f"Client hierarchy contains a cycle at {child.id}", client_id=child.id
            )
        visited.add(child.id)
        descendants.append(child)
        stack.extend(reversed(children_of.get(child.id, [])))
    return descendants


def get_client_hierarchy(clients: Sequence[Client], client_id: str) -> list[Client]:
    """The client itself followed by all of its descendants."""
    client = _index(clients).get(client_id)
    if client is None:
        return []
    return [client, *get_descendants(clients, client_id)]


def get_hierarchy_path(clients: Sequence[Client], client_id: str | None) -> list[Client]:
    """The client and its ancestors, most specific first.

    Stops silently at the first parent that is not in ``clients``.
    """
    if client_id is None:
        return []
    by_id = _index(clients)
    path: list[Client] = []
    seen: set[str] = set()
    current = by_id.get(client_id)
    while current is not None:
        if current.id in seen:
            raise ConsistencyError(
                f"Client hierarchy contains a cycle at {current.id}", client_id=current.id
            )
        seen.add(current.id)
        path.append(current)
        current = by_id.get(current.parent_id) if current.parent_id else None
    return path


def resolve_effective_override(
    clients: Sequence[Client], client_id: str | None, base_rate_id: str
) -> ClientBillingRateOverride | None:
    """Nearest override for ``base_rate_id``: the client's own masks its ancestors'."""
    for client in get_hierarchy_path(clients, client_id):
        override = client.override_for(base_rate_id)
        if override is not None:
            return override
    return None


def effective_rate(
    billing_rate: BillingRate, override: ClientBillingRateOverride | None
) -> Decimal:
    if override is None:
        return billing_rate.rate
    if override.override_type == OVERRIDE_FIXED:
        return override.value
    if override.override_type == OVERRIDE_PERCENTAGE:
        return billing_rate.rate * (override.value / Decimal(100))
    raise ConsistencyError(
        f"Unknown override type {override.override_type!r}", override_id=override.id
    )


def resolve_rate(
    clients: Sequence[Client], client_id: str | None, billing_rate: BillingRate
) -> Decimal:
    """Effective hourly rate of ``billing_rate`` for work done for ``client_id``."""
    override = resolve_effective_override(clients, client_id, billing_rate.id)
    return effective_rate(billing_rate, override)


def has_unbilled_time(
    entries: Iterable[TimeEntry], clients: Sequence[Client], client_id: str
) -> bool:
    """True if the client or any sub-client has billable, unbilled time."""
    subtree = {client_id} | {c.id for c in get_descendants(clients, client_id)}
    return any(
        e.client_id in subtree and e.billable and not e.billed for e in entries
    )


def is_descendant(clients: Sequence[Client], candidate_id: str, ancestor_id: str) -> bool:
    """True if ``candidate_id`` sits somewhere below ``ancestor_id``."""
    path = get_hierarchy_path(clients, candidate_id)
    return any(c.id == ancestor_id for c in path[1:])


def validate_parent(clients: Sequence[Client], client_id: str | None, parent_id: str) -> Client:
    """Check that ``parent_id`` may become the parent of ``client_id``."""
    if client_id is not None and parent_id == client_id:
        raise ValidationError("Client cannot be its own parent", field="parentId")

    parent = _index(clients).get(parent_id)
    if parent is None:
        raise NotFoundError("Parent client not found", client_id=parent_id)

    if not parent.can_have_children:
        raise ValidationError(
            "Only business, organization or container clients can have sub-clients",
            field="parentId",
        )

    if client_id is not None and is_descendant(clients, parent_id, client_id):
        raise ValidationError(
            "Cannot create circular parent-child relationship", field="parentId"
        )
    return parent


def client_tree(clients: Sequence[Client], search: str = "") -> list[tuple[Client, int]]:
    """Clients in display order with their depth, children under their parent.

    Clients whose parent is missing are shown as roots. With ``search`` the
    result is flattened to the clients whose name contains it.
    """
    ids = {c.id for c in clients}
    by_parent: dict[str | None, list[Client]] = {}
    for client in clients:
        parent = client.parent_id if client.parent_id in ids else None
        by_parent.setdefault(parent, []).append(client)

    rows: list[tuple[Client, int]] = []
    seen: set[str] = set()
    stack = [(c, 0) for c in sorted(by_parent.get(None, []), key=lambda c: c.name.lower(), reverse=True)]
    while stack:
        client, depth = stack.pop()
        if client.id in seen:
            continue
        seen.add(client.id)
        rows.append((client, depth))
        children = sorted(by_parent.get(client.id, []), key=lambda c: c.name.lower(), reverse=True)
        stack.extend((child, depth + 1) for child in children)

    needle = search.strip().lower()
    if needle:
        rows = [(c, 0) for c, _ in rows if needle in c.name.lower()]
    return rows
