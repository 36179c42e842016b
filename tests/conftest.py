"""Shared fixtures: in-memory relational and document store fakes."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId


# ============================================================================
# Relational store
# ============================================================================


def _matches_row(row: dict, filters: dict | None) -> bool:
    return all(row.get(k) == v for k, v in (filters or {}).items())


def _make_memory_adapter(
    tables: dict[str, list[dict]] | None = None,
    serial: dict[str, str] | None = None,
) -> AsyncMock:
    """Create an AsyncMock adapter backed by a dict of table -> rows.

    Args:
        tables: Initial rows per table.
        serial: table -> column assigned by the "store" on insert when
            the row does not carry it (values start at 101).
    """
    store: dict[str, list[dict]] = {t: [dict(r) for r in rows] for t, rows in (tables or {}).items()}
    counters: dict[str, int] = {}
    adapter = AsyncMock()
    adapter.store = store
    adapter.dialect = "postgresql"

    async def _select(table, columns="*", filters=None, order_by=None):
        return [dict(r) for r in store.get(table, []) if _matches_row(r, filters)]

    async def _insert(table, data):
        row = dict(data)
        column = (serial or {}).get(table)
        if column and row.get(column) is None:
            counters[table] = counters.get(table, 100) + 1
            row[column] = counters[table]
        store.setdefault(table, []).append(row)
        return dict(row)

    async def _update(table, data, filters):
        matched = [r for r in store.get(table, []) if _matches_row(r, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(data)
        return dict(matched[0])

    async def _delete(table, filters):
        store[table] = [r for r in store.get(table, []) if not _matches_row(r, filters)]

    adapter.select = AsyncMock(side_effect=_select)
    adapter.insert = AsyncMock(side_effect=_insert)
    adapter.update = AsyncMock(side_effect=_update)
    adapter.delete = AsyncMock(side_effect=_delete)
    adapter.query = AsyncMock(return_value=[])
    adapter.execute = AsyncMock()
    adapter.close = AsyncMock()

    @asynccontextmanager
    async def _transaction():
        yield None

    adapter.transaction = MagicMock(side_effect=_transaction)
    return adapter


@pytest.fixture
def memory_adapter():
    """Factory for in-memory relational adapters."""
    return _make_memory_adapter


# ============================================================================
# Document store
# ============================================================================


def _field_values(doc: dict, path: str) -> list[Any]:
    """Values at a dotted path, descending into arrays of sub-documents."""
    current: list[Any] = [doc]
    for part in path.split("."):
        found: list[Any] = []
        for value in current:
            if isinstance(value, list):
                found.extend(v[part] for v in value if isinstance(v, dict) and part in v)
            elif isinstance(value, dict) and part in value:
                found.append(value[part])
        current = found
    values: list[Any] = []
    for value in current:
        values.extend(value if isinstance(value, list) else [value])
    return values


def _matches_doc(doc: dict, query: dict | None) -> bool:
    for path, condition in (query or {}).items():
        values = _field_values(doc, path)
        if isinstance(condition, dict) and "$in" in condition:
            if not any(v in condition["$in"] for v in values):
                return False
        elif condition not in values:
            return False
    return True


class FakeDocumentClient:
    """In-memory ``DocumentClient`` supporting the query shapes the deployer uses."""

    def __init__(
        self,
        collections: dict[str, list[dict]] | None = None,
        indexes: dict[str, list[dict]] | None = None,
        database_name: str = "target",
    ) -> None:
        self.collections: dict[str, list[dict]] = {
            name: [dict(d) for d in docs] for name, docs in (collections or {}).items()
        }
        self.indexes = indexes or {}
        self.queries: list[tuple[str, dict]] = []
        self.created_indexes: list[tuple[str, list, bool, str | None]] = []
        self.failing_indexes: set[str] = set()
        self.failing_collections: set[str] = set()
        self.delete_calls: list[tuple[str, dict]] = []
        self._database_name = database_name

    @property
    def database_name(self) -> str:
        return self._database_name

    async def find(self, collection: str, query: dict | None = None) -> AsyncIterator[dict]:
        if collection in self.failing_collections:
            raise RuntimeError(f"find failed on {collection}")
        self.queries.append((collection, query or {}))
        for doc in list(self.collections.get(collection, [])):
            if _matches_doc(doc, query):
                yield dict(doc)

    async def list_indexes(self, collection: str) -> list[dict]:
        return self.indexes.get(collection, [{"name": "_id_", "key": {"_id": 1}}])

    async def count_documents(self, collection: str, query: dict) -> int:
        return sum(1 for d in self.collections.get(collection, []) if _matches_doc(d, query))

    async def insert_one(self, collection: str, document: dict) -> Any:
        doc = dict(document)
        doc.setdefault("_id", ObjectId())
        self.collections.setdefault(collection, []).append(doc)
        return doc["_id"]

    async def update_one(self, collection: str, query: dict, update: dict) -> int:
        for doc in self.collections.get(collection, []):
            if _matches_doc(doc, query):
                doc.update(update.get("$set", {}))
                return 1
        return 0

    async def update_many(
        self,
        collection: str,
        query: dict,
        update: dict,
        array_filters: list[dict] | None = None,
    ) -> int:
        modified = 0
        for doc in self.collections.get(collection, []):
            if not _matches_doc(doc, query):
                continue
            for path, value in update.get("$set", {}).items():
                if ".$[ref]" not in path:
                    doc[path] = value
                    continue
                head, _, rest = path.partition(".$[ref]")
                rest = rest.lstrip(".")
                _, expected = next(iter(array_filters[0].items()))
                items = doc.get(head, [])
                for i, item in enumerate(items):
                    if rest and isinstance(item, dict) and item.get(rest) == expected:
                        item[rest] = value
                    elif not rest and item == expected:
                        items[i] = value
            modified += 1
        return modified

    async def delete_many(self, collection: str, query: dict) -> int:
        self.delete_calls.append((collection, query))
        docs = self.collections.get(collection, [])
        kept = [d for d in docs if not _matches_doc(d, query)]
        self.collections[collection] = kept
        return len(docs) - len(kept)

    async def create_index(self, collection, keys, unique=False, name=None) -> str:
        if name in self.failing_indexes:
            raise RuntimeError(f"index {name} conflicts")
        self.created_indexes.append((collection, keys, unique, name))
        return name or ""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


@pytest.fixture
def document_client():
    """Factory for in-memory document clients."""
    return FakeDocumentClient
