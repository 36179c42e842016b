"""Relational packager: catalog + rows -> ``Package`` of kind ``database``.

For each requested table the packager reads columns and keys from the
catalog, classifies the primary-key replay strategy, selects the rows
(honouring per-table WHERE clauses and excluded columns) and, when asked,
follows foreign keys to related tables up to a depth bound.  The result is
either a complete package or a ``PackagingError`` -- never a partial
package.

Usage:
    from db_promoter.packaging.relational import RelationalPackager

    async with SchemaIntrospector(url) as introspector:
        packager = RelationalPackager(adapter, introspector)
        package = await packager.package_tables(
            "orders-seed",
            "1.0.0",
            PackageFilter(tables=["orders"], include_related=True, max_depth=2),
        )
"""

import logging
import re
from collections import deque

from db_promoter.adapters.base import DatabaseClient
from db_promoter.errors import PackagingError
from db_promoter.packaging.models import (
    ColumnInfo,
    DatabaseData,
    ForeignKeyInfo,
    Package,
    PackageFilter,
    PKMapping,
    PKStrategy,
    Relationship,
    TableData,
)
from db_promoter.schema.introspector import SchemaIntrospector
from db_promoter.schema.models import ColumnSchema

logger = logging.getLogger(__name__)

_NEXTVAL = re.compile(r"nextval\('([^']+)'", re.IGNORECASE)


def quote_identifier(name: str) -> str:
    """Double-quote a SQL identifier.

    Example:
        >>> quote_identifier('odd"name')
        '"odd""name"'
    """
    return '"' + name.replace('"', '""') + '"'


def classify_pk_strategy(pk_columns: list[ColumnSchema]) -> tuple[PKStrategy, str | None]:
    """Choose the replay strategy for a primary key from its column types.

    - ``auto_increment``/``serial`` types and identity columns -> ``auto_increment``
    - a ``nextval(...)`` default -> ``sequence`` (with the sequence name)
    - UUID/GUID types, and everything else -> ``preserve``

    Args:
        pk_columns: Primary-key columns as read from the catalog.

    Returns:
        Tuple of (strategy, sequence name or ``None``).

    Example:
        >>> col = ColumnSchema(name="id", data_type="integer",
        ...                    default="nextval('orders_id_seq'::regclass)")
        >>> classify_pk_strategy([col])
        ('sequence', 'orders_id_seq')
    """
    for col in pk_columns:
        data_type = col.data_type.lower()
        if col.is_identity or "auto_increment" in data_type or "serial" in data_type:
            return "auto_increment", None
        match = _NEXTVAL.search(col.default or "")
        if match:
            return "sequence", match.group(1)
    # uuid / uniqueidentifier keys and natural keys travel unchanged
    return "preserve", None


class RelationalPackager:
    """Builds database packages from a live relational store.

    Args:
        adapter: Client used to select rows.
        introspector: Connected catalog introspector for the same database.
        dialect: Store dialect tag recorded in the package.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        introspector: SchemaIntrospector,
        dialect: str = "postgresql",
    ) -> None:
        self.adapter = adapter
        self.introspector = introspector
        self.dialect = dialect

    async def package_tables(
        self,
        name: str,
        version: str,
        package_filter: PackageFilter,
        created_by: str = "",
        description: str = "",
    ) -> Package:
        """Package the requested tables (and related tables, if asked).

        Raises:
            PackagingError: If no tables are requested, a table does not
                exist, or any catalog lookup or SELECT fails.
        """
        if not package_filter.tables:
            raise PackagingError("No tables requested")

        packaged: dict[str, TableData] = {}
        pk_mappings: dict[str, PKMapping] = {}

        # breadth-first, so every table is packaged at its shortest FK distance
        queue = deque((table_name, 0) for table_name in package_filter.tables)
        while queue:
            table_name, depth = queue.popleft()
            if table_name in packaged:
                continue
            if not self._within_depth(depth, package_filter):
                logger.debug(f"Skipping '{table_name}': depth {depth} beyond max_depth")
                continue
            targets = await self._package_table(
                table_name, depth, package_filter, packaged, pk_mappings
            )
            if package_filter.include_related:
                queue.extend((target, depth + 1) for target in targets if target not in packaged)

        tables = list(packaged.values())
        relationships = self._build_relationships(tables)
        sequence_info = await self._capture_sequences(pk_mappings)

        data = DatabaseData(
            tables=tables,
            pk_mappings=pk_mappings,
            relationships=relationships,
            sequence_info=sequence_info,
            dialect=self.dialect,
        )

        logger.info(
            f"Packaged {len(tables)} tables ({sum(t.row_count for t in tables)} rows) "
            f"into '{name}' {version}"
        )

        return Package(
            name=name,
            version=version,
            description=description,
            kind="database",
            created_by=created_by,
            database_data=data,
            include_parent=package_filter.include_related,
            metadata={
                "requested_tables": list(package_filter.tables),
                "table_count": len(tables),
                "total_rows": sum(t.row_count for t in tables),
            },
        )

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _within_depth(self, depth: int, package_filter: PackageFilter) -> bool:
        if depth == 0:
            return True
        if package_filter.max_depth == 0:
            return package_filter.allow_unbounded
        return depth <= package_filter.max_depth

    async def _package_table(
        self,
        table_name: str,
        depth: int,
        package_filter: PackageFilter,
        packaged: dict[str, TableData],
        pk_mappings: dict[str, PKMapping],
    ) -> list[str]:
        """Package one table and return the tables its foreign keys reference."""
        try:
            columns = await self.introspector.get_columns(table_name)
            foreign_keys = await self.introspector.get_foreign_keys(table_name)
        except Exception as e:
            raise PackagingError(f"Failed to introspect table '{table_name}': {e}") from e

        if not columns:
            raise PackagingError(f"Table '{table_name}' not found")

        fk_column_names = {fk.column_name for fk in foreign_keys}
        pk_schema = [c for c in columns if c.is_primary_key]
        pk_columns = [c.name for c in pk_schema]

        excluded = set(package_filter.exclude_columns.get(table_name, []))
        selected = [c.name for c in columns if c.name not in excluded]
        if not selected:
            raise PackagingError(f"All columns of '{table_name}' are excluded")

        rows = await self._select_rows(table_name, selected, package_filter.where.get(table_name))

        table = TableData(
            name=table_name,
            schema_name=self.introspector.schema_name,
            columns=[
                ColumnInfo(
                    name=c.name,
                    data_type=c.data_type,
                    is_nullable=c.is_nullable,
                    is_primary_key=c.is_primary_key,
                    is_foreign_key=c.name in fk_column_names,
                    max_length=c.max_length,
                )
                for c in columns
            ],
            pk_columns=pk_columns,
            fk_columns=[
                ForeignKeyInfo(
                    column_name=fk.column_name,
                    referenced_table=fk.referenced_table,
                    referenced_column=fk.referenced_column,
                    constraint_name=fk.constraint_name,
                    on_delete=fk.on_delete,
                    on_update=fk.on_update,
                )
                for fk in foreign_keys
            ],
            rows=rows,
            row_count=len(rows),
        )
        packaged[table_name] = table
        pk_mappings[table_name] = self._pk_mapping(table_name, pk_schema, package_filter)

        logger.debug(f"Packaged '{table_name}' at depth {depth}: {len(rows)} rows")

        return list(dict.fromkeys(fk.referenced_table for fk in foreign_keys))

    async def _select_rows(
        self, table_name: str, columns: list[str], where: str | None
    ) -> list[dict]:
        column_list = ", ".join(quote_identifier(c) for c in columns)
        source = (
            f"{quote_identifier(self.introspector.schema_name)}."
            f"{quote_identifier(table_name)}"
        )
        statement = f"SELECT {column_list} FROM {source}"
        if where:
            statement += f" WHERE {where}"

        try:
            return await self.adapter.query(statement)
        except Exception as e:
            raise PackagingError(f"Failed to query table '{table_name}': {e}") from e

    def _pk_mapping(
        self,
        table_name: str,
        pk_schema: list[ColumnSchema],
        package_filter: PackageFilter,
    ) -> PKMapping:
        strategy, sequence_name = classify_pk_strategy(pk_schema)
        if table_name in package_filter.pk_strategies:
            strategy = package_filter.pk_strategies[table_name]
            if strategy != "sequence":
                sequence_name = None
        return PKMapping(
            table_name=table_name,
            pk_columns=[c.name for c in pk_schema],
            is_auto_increment=strategy in ("auto_increment", "sequence"),
            sequence_name=sequence_name,
            strategy=strategy,
        )

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _build_relationships(self, tables: list[TableData]) -> list[Relationship]:
        return [
            Relationship(
                source_table=table.name,
                source_column=fk.column_name,
                target_table=fk.referenced_table,
                target_column=fk.referenced_column,
                constraint_name=fk.constraint_name,
                on_delete=fk.on_delete,
                on_update=fk.on_update,
            )
            for table in tables
            for fk in table.fk_columns
        ]

    async def _capture_sequences(self, pk_mappings: dict[str, PKMapping]) -> dict[str, int]:
        """Read current sequence values; failures only log a warning."""
        sequence_info: dict[str, int] = {}
        for table_name, mapping in pk_mappings.items():
            if not mapping.is_auto_increment or len(mapping.pk_columns) != 1:
                continue
            try:
                if mapping.sequence_name is None:
                    mapping.sequence_name = await self.introspector.get_serial_sequence(
                        table_name, mapping.pk_columns[0]
                    )
                if mapping.sequence_name is None:
                    continue
                value = await self.introspector.get_sequence_value(mapping.sequence_name)
            except Exception as e:
                logger.warning(f"Could not read sequence state for '{table_name}': {e}")
                continue
            if value is not None:
                sequence_info[table_name] = value
        return sequence_info
