"""Tests for dependency ordering and key-map bookkeeping."""

import pytest

from db_promoter.deploy.keymap import KeyMap, extract_key, freeze_key, is_missing_key, key_filters
from db_promoter.deploy.ordering import build_dependency_graph, topological_sort
from db_promoter.errors import DependencyCycleError
from db_promoter.packaging.models import Relationship


def _rel(source: str, target: str, column: str = "ref_id") -> Relationship:
    return Relationship(
        source_table=source, source_column=column, target_table=target, target_column="id"
    )


# ============================================================================
# Dependency graph
# ============================================================================


class TestBuildDependencyGraph:
    """Verify graph construction from relationships."""

    def test_edges_point_at_parents(self) -> None:
        """A table depends on the tables its FKs reference."""
        graph = build_dependency_graph(["orders", "customers"], [_rel("orders", "customers")])
        assert graph == {"orders": {"customers"}, "customers": set()}

    def test_self_reference_ignored(self) -> None:
        """A self-referencing FK adds no edge."""
        graph = build_dependency_graph(["employees"], [_rel("employees", "employees", "manager_id")])
        assert graph == {"employees": set()}


class TestTopologicalSort:
    """Verify parents-first ordering and cycle detection."""

    def test_parents_first(self) -> None:
        """Referenced tables come before the tables that reference them."""
        tables = ["order_items", "orders", "customers", "products"]
        graph = build_dependency_graph(
            tables,
            [
                _rel("orders", "customers"),
                _rel("order_items", "orders"),
                _rel("order_items", "products"),
            ],
        )
        assert topological_sort(graph, tables) == ["customers", "orders", "products", "order_items"]

    def test_independent_tables_keep_package_order(self) -> None:
        """Without relationships the package order is kept."""
        assert topological_sort({}, ["b", "a", "c"]) == ["b", "a", "c"]

    def test_dependency_outside_tables_ignored(self) -> None:
        """A parent that is not being sorted does not block its child."""
        assert topological_sort({"orders": {"customers"}}, ["orders"]) == ["orders"]

    def test_duplicates_removed(self) -> None:
        """Each table appears once."""
        assert topological_sort({}, ["a", "a", "b"]) == ["a", "b"]

    def test_cycle_raises_with_path(self) -> None:
        """A two-table cycle is reported with its path."""
        graph = build_dependency_graph(["a", "b"], [_rel("a", "b"), _rel("b", "a")])
        with pytest.raises(DependencyCycleError) as exc_info:
            topological_sort(graph, ["a", "b"])
        assert exc_info.value.cycle == ["a", "b", "a"]
        assert str(exc_info.value) == "Circular dependency detected: a -> b -> a"

    def test_longer_cycle(self) -> None:
        """A cycle through three tables is detected."""
        graph = {"a": {"b"}, "b": {"c"}, "c": {"a"}}
        with pytest.raises(DependencyCycleError) as exc_info:
            topological_sort(graph, ["a", "b", "c"])
        assert exc_info.value.cycle == ["a", "b", "c", "a"]


# ============================================================================
# Key maps
# ============================================================================


class TestKeyHelpers:
    """Verify key extraction and filters."""

    def test_single_column_key_is_scalar(self) -> None:
        """One key column gives a scalar key."""
        assert extract_key({"id": 7, "name": "x"}, ["id"]) == 7

    def test_composite_key_is_dict(self) -> None:
        """Several key columns give a dict key."""
        assert extract_key({"a": 1, "b": 2, "c": 3}, ["a", "b"]) == {"a": 1, "b": 2}

    def test_key_filters(self) -> None:
        """Keys turn back into column filters."""
        assert key_filters(7, ["id"]) == {"id": 7}
        assert key_filters({"a": 1, "b": 2}, ["a", "b"]) == {"a": 1, "b": 2}

    def test_missing_keys(self) -> None:
        """None and all-None composite keys are missing."""
        assert is_missing_key(None)
        assert is_missing_key({"a": None, "b": None})
        assert not is_missing_key({"a": 1, "b": None})
        assert not is_missing_key(0)

    def test_freeze_is_order_independent(self) -> None:
        """Composite keys freeze the same regardless of dict order."""
        assert freeze_key({"a": 1, "b": 2}) == freeze_key({"b": 2, "a": 1})


class TestKeyMap:
    """Verify KeyMap recording and lookup."""

    def test_record_and_get(self) -> None:
        """Recorded keys map old to new."""
        key_map = KeyMap()
        key_map.record(1, 101, "inserted")
        assert key_map.get(1) == 101
        assert 1 in key_map
        assert key_map.entry(1).action == "inserted"

    def test_composite_lookup(self) -> None:
        """Composite keys are looked up by value."""
        key_map = KeyMap()
        key_map.record({"a": 1, "b": 2}, {"a": 5, "b": 2}, "inserted")
        assert key_map.get({"b": 2, "a": 1}) == {"a": 5, "b": 2}

    def test_unknown_key_returns_default(self) -> None:
        """Unknown keys return the default."""
        assert KeyMap().get(3, "x") == "x"

    def test_unkeyed_entries_counted(self) -> None:
        """Rows without a key still produce an entry."""
        key_map = KeyMap()
        key_map.record(None, 5, "inserted")
        key_map.record(None, 6, "inserted")
        assert len(key_map) == 2
        assert None not in key_map

    def test_rerecord_replaces(self) -> None:
        """Recording an old key again replaces its entry."""
        key_map = KeyMap()
        key_map.record(1, 101, "inserted")
        key_map.record(1, 1, "skipped")
        assert len(key_map) == 1
        assert key_map.entries()[0].action == "skipped"
