"""Dependency ordering for relational deploys.

Tables are emitted so that every table comes after the tables its
foreign keys reference.  Unlike schema repair, data replay cannot
tolerate a guessed order, so a cycle is an error rather than a
best-effort break.

Usage:
    from db_promoter.deploy.ordering import build_dependency_graph, topological_sort

    graph = build_dependency_graph(data.table_names, data.relationships)
    order = topological_sort(graph, data.table_names)
"""

from collections.abc import Iterable

from db_promoter.errors import DependencyCycleError
from db_promoter.packaging.models import Relationship


def build_dependency_graph(
    tables: list[str], relationships: Iterable[Relationship]
) -> dict[str, set[str]]:
    """Build a ``table -> referenced tables`` graph from FK relationships.

    Self-references are left out: a table never has to wait for itself,
    and its self-referencing values are fixed up after load.

    Args:
        tables: Table names in the package.
        relationships: Foreign-key edges (source depends on target).

    Returns:
        Dict mapping each table to the set of tables it depends on.
    """
    graph: dict[str, set[str]] = {t: set() for t in tables}
    for rel in relationships:
        if rel.source_table == rel.target_table:
            continue
        graph.setdefault(rel.source_table, set()).add(rel.target_table)
    return graph


def topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Order *tables* so dependencies come before their dependents.

    Depth-first, visiting a table's dependencies in the order they appear
    in *tables* so the result is deterministic.  Dependencies on tables
    outside *tables* are ignored.

    Args:
        dependencies: Graph from ``build_dependency_graph``.
        tables: Table names to order, in package order.

    Returns:
        Tables with referenced (parent) tables first.

    Raises:
        DependencyCycleError: If the graph restricted to *tables* has a cycle.

    Example:
        >>> topological_sort({"orders": {"customers"}}, ["orders", "customers"])
        ['customers', 'orders']
    """
    ordered_input = list(dict.fromkeys(tables))
    relevant = {
        t: [d for d in ordered_input if d != t and d in dependencies.get(t, set())]
        for t in ordered_input
    }

    sorted_tables: list[str] = []
    visited: set[str] = set()
    path: list[str] = []  # tables currently being visited, in order

    def visit(table: str) -> None:
        if table in visited:
            return
        if table in path:
            start = path.index(table)
            raise DependencyCycleError(path[start:] + [table])
        path.append(table)
        for dep in relevant[table]:
            visit(dep)
        path.pop()
        visited.add(table)
        sorted_tables.append(table)

    for table in ordered_input:
        visit(table)

    return sorted_tables
