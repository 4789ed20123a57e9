"""Tests for hierarchy.py - client trees and rate resolution."""

from datetime import datetime
from decimal import Decimal

import pytest

from errors import ConsistencyError, NotFoundError, ValidationError
from hierarchy import (
    client_tree,
    effective_rate,
    get_children,
    get_client_hierarchy,
    get_descendants,
    get_hierarchy_path,
    has_unbilled_time,
    is_descendant,
    resolve_effective_override,
    resolve_rate,
    validate_parent,
)
from models import BillingRate, Client, ClientBillingRateOverride, TimeEntry

RATE = BillingRate(id="r1", name="Standard", rate=Decimal("100"), cost=Decimal("50"))


def override(value, override_type="fixed", base_rate_id="r1"):
    return ClientBillingRateOverride(
        base_rate_id=base_rate_id, override_type=override_type, value=Decimal(value)
    )


@pytest.fixture
def tree():
    """root (business) -> mid (organization) -> leaf (individual); other is separate."""
    return [
        Client(id="root", name="Root", type="business", billing_rate_overrides=[override("80")]),
        Client(id="mid", name="Mid", type="organization", parent_id="root"),
        Client(id="leaf", name="Leaf", type="individual", parent_id="mid"),
        Client(id="other", name="Other", type="business"),
    ]


class TestWalks:
    """Tests for children, descendants and paths."""

    def test_children(self, tree):
        assert [c.id for c in get_children(tree, "root")] == ["mid"]

    def test_descendants_unbounded_depth(self, tree):
        """Descendants include grandchildren."""
        assert [c.id for c in get_descendants(tree, "root")] == ["mid", "leaf"]

    def test_hierarchy_includes_self(self, tree):
        assert [c.id for c in get_client_hierarchy(tree, "mid")] == ["mid", "leaf"]

    def test_hierarchy_unknown_client(self, tree):
        assert get_client_hierarchy(tree, "nope") == []

    def test_path_most_specific_first(self, tree):
        assert [c.id for c in get_hierarchy_path(tree, "leaf")] == ["leaf", "mid", "root"]

    def test_path_none_client(self, tree):
        assert get_hierarchy_path(tree, None) == []

    def test_path_stops_at_missing_parent(self):
        """A dangling parent link ends the path without error."""
        clients = [Client(id="a", name="A", parent_id="gone")]
        assert [c.id for c in get_hierarchy_path(clients, "a")] == ["a"]

    def test_cycle_raises(self):
        """Corrupted parent links raise instead of looping."""
        clients = [
            Client(id="a", name="A", type="business", parent_id="b"),
            Client(id="b", name="B", type="business", parent_id="a"),
        ]
        with pytest.raises(ConsistencyError):
            get_hierarchy_path(clients, "a")
        with pytest.raises(ConsistencyError):
            get_descendants(clients, "a")


class TestOverrideResolution:
    """Tests for resolve_effective_override and effective_rate."""

    def test_inherited_from_ancestor(self, tree):
        """A grandchild without overrides uses the root's override."""
        assert resolve_rate(tree, "leaf", RATE) == Decimal("80")

    def test_nearest_override_wins(self, tree):
        """The child's own override masks the parent's."""
        tree[1].billing_rate_overrides = [override("70")]
        assert resolve_rate(tree, "leaf", RATE) == Decimal("70")
        assert resolve_rate(tree, "root", RATE) == Decimal("80")

    def test_no_override_falls_back_to_base(self, tree):
        assert resolve_rate(tree, "other", RATE) == Decimal("100")

    def test_override_for_other_rate_ignored(self, tree):
        tree[3].billing_rate_overrides = [override("10", base_rate_id="r2")]
        assert resolve_rate(tree, "other", RATE) == Decimal("100")

    def test_unknown_client_is_not_an_error(self, tree):
        assert resolve_effective_override(tree, "nope", "r1") is None
        assert resolve_rate(tree, None, RATE) == Decimal("100")

    def test_percentage(self):
        """Percentage overrides scale the base rate."""
        assert effective_rate(RATE, override("90", "percentage")) == Decimal("90")
        assert effective_rate(RATE, override("125", "percentage")) == Decimal("125")

    def test_fixed_ignores_base(self):
        assert effective_rate(RATE, override("42.50")) == Decimal("42.50")

    def test_unknown_override_type(self):
        with pytest.raises(ConsistencyError):
            effective_rate(RATE, override("1", "bogus"))


class TestUnbilledTime:
    """Tests for has_unbilled_time."""

    def _entry(self, client_id, billed=False, billable=True):
        return TimeEntry(description="x", start_time=datetime(2026, 1, 1, 9), minutes=60,
                         client_id=client_id, billed=billed, billable=billable)

    def test_sub_client_time_counts(self, tree):
        assert has_unbilled_time([self._entry("leaf")], tree, "root")

    def test_billed_and_non_billable_ignored(self, tree):
        entries = [self._entry("leaf", billed=True), self._entry("root", billable=False)]
        assert not has_unbilled_time(entries, tree, "root")

    def test_other_subtree_ignored(self, tree):
        assert not has_unbilled_time([self._entry("other")], tree, "root")


class TestValidateParent:
    """Tests for is_descendant and validate_parent."""

    def test_is_descendant(self, tree):
        assert is_descendant(tree, "leaf", "root")
        assert not is_descendant(tree, "root", "leaf")
        assert not is_descendant(tree, "root", "root")

    def test_valid_parent(self, tree):
        assert validate_parent(tree, "other", "root").id == "root"

    def test_own_parent(self, tree):
        with pytest.raises(ValidationError):
            validate_parent(tree, "root", "root")

    def test_missing_parent(self, tree):
        with pytest.raises(NotFoundError):
            validate_parent(tree, "other", "nope")

    def test_individual_cannot_be_parent(self, tree):
        with pytest.raises(ValidationError):
            validate_parent(tree, "other", "leaf")

    def test_circular(self, tree):
        """Moving a client under its own descendant is rejected."""
        with pytest.raises(ValidationError, match="circular"):
            validate_parent(tree, "root", "mid")


class TestClientTree:
    """Tests for client_tree display ordering."""

    def test_children_follow_parent(self, tree):
        rows = [(c.id, depth) for c, depth in client_tree(tree)]
        assert rows == [("other", 0), ("root", 0), ("mid", 1), ("leaf", 2)]

    def test_search_flattens(self, tree):
        rows = [(c.id, depth) for c, depth in client_tree(tree, "lea")]
        assert rows == [("leaf", 0)]
