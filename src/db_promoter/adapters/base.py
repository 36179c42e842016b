"""Store client protocol definitions.

Defines the ``DatabaseClient`` Protocol for relational stores and the
``DocumentClient`` Protocol for document stores.  All methods are
``async def`` -- the library is async-first.

Usage:
    from db_promoter.adapters.base import DatabaseClient, DocumentClient

    async def copy_row(client: DatabaseClient) -> None:
        rows = await client.query("SELECT id, name FROM customers WHERE id = :id", {"id": 1})
        await client.insert("customers", rows[0])

    async def count(client: DocumentClient) -> int:
        return await client.count_documents("Workflow", {})
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Relational client interface that all database adapters implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "customers",
                "id",
                filters={"id": 42},
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Args:
            table: Table name.
            data: Dict of field=value pairs to insert.

        Returns:
            Dict representing the created row, including store-assigned keys.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Args:
            table: Table name.
            data: Dict of field=value pairs to update.
            filters: Dict of field=value filters (all must match via AND).

        Returns:
            Dict representing the updated row.

        Raises:
            Exception: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows from table.

        Args:
            table: Table name.
            filters: Dict of field=value filters (all must match via AND).

        Example:
            await client.delete("customers", {"id": 42})
        """
        ...

    async def query(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a raw read-only statement and return its rows.

        Args:
            sql: SQL text with ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement that returns no rows.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...


class DocumentClient(Protocol):
    """Document-store client interface.

    Collections are addressed by name within the client's database.
    Filters and updates use the store's native query syntax.
    """

    @property
    def database_name(self) -> str:
        """Name of the database this client reads and writes."""
        ...

    def find(self, collection: str, query: dict[str, Any] | None = None) -> AsyncIterator[dict]:
        """Stream documents of *collection* matching *query*.

        Example:
            async for doc in client.find("Workflow", {"status": "active"}):
                ...
        """
        ...

    async def list_indexes(self, collection: str) -> list[dict]:
        """Return raw index descriptions (``name``, ``key``, ``unique``)."""
        ...

    async def count_documents(self, collection: str, query: dict[str, Any]) -> int:
        """Count documents matching *query*."""
        ...

    async def insert_one(self, collection: str, document: dict) -> Any:
        """Insert *document* and return its id (store-assigned if absent)."""
        ...

    async def update_one(self, collection: str, query: dict[str, Any], update: dict) -> int:
        """Apply *update* to the first match.  Returns the modified count."""
        ...

    async def update_many(
        self,
        collection: str,
        query: dict[str, Any],
        update: dict,
        array_filters: list[dict] | None = None,
    ) -> int:
        """Apply *update* to every match.  Returns the modified count."""
        ...

    async def delete_many(self, collection: str, query: dict[str, Any]) -> int:
        """Delete every match.  Returns the deleted count."""
        ...

    async def create_index(
        self,
        collection: str,
        keys: list[tuple[str, Any]],
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        """Create an index and return its name."""
        ...

    async def ping(self) -> bool:
        """Check the store connection."""
        ...

    async def close(self) -> None:
        """Close the client and release its connections."""
        ...
