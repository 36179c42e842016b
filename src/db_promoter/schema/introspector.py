"""PostgreSQL catalog introspection via information_schema.

Reads what packaging needs to know about a table from the live catalog:
- Columns: data type, nullability, default, max length, identity flag
- Primary-key columns in key order
- Foreign keys with their referenced table/column and cascade rules
- Current sequence values (for auto-increment resume)

Uses psycopg (v3) async connections.

Usage:
    async with SchemaIntrospector(database_url) as introspector:
        columns = await introspector.get_columns("orders")
        fks = await introspector.get_foreign_keys("orders")
"""

import psycopg
from psycopg import AsyncConnection, sql

from db_promoter.schema.models import ColumnSchema, ForeignKeySchema


class SchemaIntrospector:
    """Introspects a PostgreSQL database catalog.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            columns = await introspector.get_column_names()
    """

    # Tables to exclude from introspection (system tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, database_url: str, schema_name: str = "public"):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL (SQLAlchemy driver
                suffixes such as ``+asyncpg`` are stripped).
            schema_name: PostgreSQL schema to introspect (default: public)
        """
        url = database_url.replace("postgresql+asyncpg://", "postgresql://", 1)
        self._database_url = url
        self.schema_name = schema_name
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens connection."""
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = await psycopg.AsyncConnection.connect(url)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _fetch(self, query: str | sql.Composed, params: tuple = ()) -> list[tuple]:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        async with self._conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    async def get_tables(self) -> list[str]:
        """Get all base table names in the schema."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        rows = await self._fetch(query, (self.schema_name,))
        return [row[0] for row in rows if row[0] not in self.EXCLUDED_TABLES]

    async def get_column_names(self) -> dict[str, set[str]]:
        """Get column names for all tables (used by the package schema check).

        Returns:
            Dict mapping table name to set of column names
        """
        query = """
            SELECT table_name, column_name
            FROM information_schema.columns
            WHERE table_schema = %s
        """
        result: dict[str, set[str]] = {}
        for table_name, column_name in await self._fetch(query, (self.schema_name,)):
            if table_name in self.EXCLUDED_TABLES:
                continue
            result.setdefault(table_name, set()).add(column_name)
        return result

    async def get_primary_key(self, table_name: str) -> list[str]:
        """Get primary-key column names in key order."""
        query = """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = %s
              AND tc.table_name = %s
            ORDER BY kcu.ordinal_position
        """
        rows = await self._fetch(query, (self.schema_name, table_name))
        return [row[0] for row in rows]

    async def get_columns(self, table_name: str) -> list[ColumnSchema]:
        """Get columns for a table in ordinal order.

        Returns an empty list when the table does not exist.
        """
        query = """
            SELECT
                column_name,
                data_type,
                is_nullable,
                column_default,
                character_maximum_length,
                is_identity
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
        """
        pk_columns = set(await self.get_primary_key(table_name))
        columns = []
        for row in await self._fetch(query, (self.schema_name, table_name)):
            col_name, data_type, is_nullable, default, max_length, is_identity = row
            columns.append(
                ColumnSchema(
                    name=col_name,
                    data_type=data_type.lower(),
                    is_nullable=(is_nullable == "YES"),
                    default=default,
                    max_length=max_length,
                    is_identity=(is_identity == "YES"),
                    is_primary_key=col_name in pk_columns,
                )
            )
        return columns

    async def get_foreign_keys(self, table_name: str) -> list[ForeignKeySchema]:
        """Get foreign-key columns of a table with their referenced columns."""
        query = """
            SELECT
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                tc.constraint_name,
                rc.delete_rule,
                rc.update_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.table_schema = ccu.constraint_schema
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
                AND tc.table_schema = rc.constraint_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = %s
              AND tc.table_name = %s
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        rows = await self._fetch(query, (self.schema_name, table_name))
        return [
            ForeignKeySchema(
                column_name=col_name,
                referenced_table=ref_table,
                referenced_column=ref_col,
                constraint_name=name,
                on_delete=delete_rule,
                on_update=update_rule,
            )
            for col_name, ref_table, ref_col, name, delete_rule, update_rule in rows
        ]

    async def get_serial_sequence(self, table_name: str, column_name: str) -> str | None:
        """Name of the sequence owned by a serial or identity column."""
        rows = await self._fetch(
            "SELECT pg_get_serial_sequence(%s, %s)",
            (f"{self.schema_name}.{table_name}", column_name),
        )
        return rows[0][0] if rows else None

    async def get_sequence_value(self, sequence_name: str) -> int | None:
        """Current ``last_value`` of a sequence (``None`` if never called)."""
        query = sql.SQL("SELECT last_value, is_called FROM {}").format(
            sql.Identifier(*(part.strip('"') for part in sequence_name.split(".")))
        )
        rows = await self._fetch(query)
        if not rows:
            return None
        last_value, is_called = rows[0]
        return last_value if is_called else None
