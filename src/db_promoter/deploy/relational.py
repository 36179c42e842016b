"""Relational deployer: replays a database package into a target store.

Tables are written parents-first (see ``deploy.ordering``).  Each row's
primary key is handled by the table's strategy, every old key is mapped
to its new key, and foreign-key values are rewritten through those maps:
inline when the referenced table was already loaded, and in a post-load
pass for self-referencing keys.

A deployer owns its key maps and is single-use: construct one per deploy.
To make a deploy atomic, run it inside ``AsyncPostgresAdapter.transaction()``.

Usage:
    from db_promoter.deploy.relational import RelationalDeployer

    async with adapter.transaction():
        record = await RelationalDeployer(adapter, target="staging").deploy(
            package, DeploymentOptions(skip_existing=True)
        )
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import uuid4

from db_promoter.adapters.base import DatabaseClient
from db_promoter.deploy.keymap import KeyMap, extract_key, is_missing_key, key_filters
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord, MappingAction
from db_promoter.deploy.ordering import build_dependency_graph, topological_sort
from db_promoter.errors import DependencyCycleError, ExistingRecordError
from db_promoter.packaging.models import (
    DatabaseData,
    Package,
    PKMapping,
    Relationship,
    TableData,
)

logger = logging.getLogger(__name__)


def restore_value(value: Any, data_type: str) -> Any:
    """Convert a packaged JSON value back to the native type of its column.

    Packaged rows carry dates, times and numerics as strings; the driver
    binds those column types only from the matching Python types.

    Example:
        >>> restore_value("2024-01-02", "date")
        datetime.date(2024, 1, 2)
        >>> restore_value("1.50", "numeric")
        Decimal('1.50')
    """
    if not isinstance(value, str):
        return value
    data_type = data_type.lower()
    if data_type.startswith(("timestamp", "datetime")):
        return datetime.fromisoformat(value)
    if data_type == "date":
        return date.fromisoformat(value)
    if data_type.startswith("time"):
        return time.fromisoformat(value)
    if data_type in ("numeric", "decimal"):
        return Decimal(value)
    return value


def restore_row(row: dict[str, Any], column_types: dict[str, str]) -> dict[str, Any]:
    """Apply ``restore_value`` to every column with a known type."""
    return {
        column: restore_value(value, column_types[column]) if column in column_types else value
        for column, value in row.items()
    }


class RelationalDeployer:
    """Deploys ``database`` packages through a ``DatabaseClient``.

    Args:
        adapter: Target store client.
        target: Identifier of the target, recorded on the deployment record.
        deployed_by: Actor recorded on the deployment record.
    """

    def __init__(self, adapter: DatabaseClient, target: str = "", deployed_by: str = "") -> None:
        self.adapter = adapter
        self.target = target
        self.deployed_by = deployed_by
        self._key_maps: dict[str, KeyMap] = {}
        self._inline_relationships: set[str] = set()
        self._used = False

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(self, package: Package, options: DeploymentOptions) -> DeploymentRecord:
        """Deploy *package* and return the finalized deployment record.

        Failures are reported through the record (``status`` and
        ``error_log``), not raised.

        Raises:
            RuntimeError: If this deployer instance was already used.
        """
        if self._used:
            raise RuntimeError("RelationalDeployer is single-use; create a new one per deploy")
        self._used = True

        record = DeploymentRecord(
            package_id=package.id,
            package_name=package.name,
            package_version=package.version,
            target=self.target,
            deployed_by=self.deployed_by,
            metadata={"dry_run": options.dry_run},
        )

        data = package.database_data
        if package.kind != "database" or data is None:
            return record.fail("Package has no database payload")

        if options.dry_run:
            return self._validate(data, options, record)

        try:
            order = topological_sort(
                build_dependency_graph(data.table_names, data.relationships),
                data.table_names,
            )
        except DependencyCycleError as e:
            return record.fail(str(e))

        record.metadata["table_order"] = order
        record.metadata["pk_columns"] = {
            name: self._pk_mapping(data, name).pk_columns for name in order
        }
        counts: dict[str, dict[str, int]] = {}
        record.metadata["counts"] = counts

        logger.info(f"Deploying '{package.name}' {package.version}: {len(order)} tables")

        aborted = False
        for table_name in order:
            table = data.get_table(table_name)
            counts[table_name] = {"inserted": 0, "updated": 0, "skipped": 0, "failed": 0}
            try:
                await self._deploy_table(table, data, options, record, counts[table_name])
            except Exception as e:
                logger.error(f"Table '{table_name}' failed: {e}")
                record.error_log.append(f"Table '{table_name}' failed: {e}")
                aborted = not options.continue_on_error
            finally:
                record.pk_mapping_result[table_name] = self._key_maps[table_name].entries()
            if aborted:
                return record.finish("failed")

        record.metadata["relationships_rewritten"] = await self._rewrite_relationships(
            data, record
        )

        logger.info(f"Deployed '{package.name}' {package.version} with {len(record.error_log)} errors")
        return record.finish("completed")

    def _validate(
        self, data: DatabaseData, options: DeploymentOptions, record: DeploymentRecord
    ) -> DeploymentRecord:
        """Structural checks only; the target store is never touched."""
        errors: list[str] = []
        if not data.tables:
            errors.append("Package contains no tables")
        for table in data.tables:
            if not table.name:
                errors.append("Package contains a table without a name")

        names = set(data.table_names)
        if options.validate_references:
            for rel in data.relationships:
                for table_name in (rel.source_table, rel.target_table):
                    if table_name not in names:
                        errors.append(
                            f"Relationship {rel.source_table}.{rel.source_column} -> "
                            f"{rel.target_table}.{rel.target_column}: "
                            f"table '{table_name}' is not in the package"
                        )

        try:
            record.metadata["table_order"] = topological_sort(
                build_dependency_graph(data.table_names, data.relationships),
                data.table_names,
            )
        except DependencyCycleError as e:
            errors.append(str(e))

        record.error_log.extend(errors)
        return record.finish("failed" if errors else "validated")

    # ------------------------------------------------------------------
    # Tables and rows
    # ------------------------------------------------------------------

    def _pk_mapping(self, data: DatabaseData, table_name: str) -> PKMapping:
        mapping = data.pk_mappings.get(table_name)
        if mapping is not None:
            return mapping
        table = data.get_table(table_name)
        return PKMapping(table_name=table_name, pk_columns=list(table.pk_columns))

    async def _deploy_table(
        self,
        table: TableData,
        data: DatabaseData,
        options: DeploymentOptions,
        record: DeploymentRecord,
        counts: dict[str, int],
    ) -> None:
        """Deploy one table's rows in batches.

        A row failure is logged and skipped under ``continue_on_error``;
        otherwise it propagates and fails the table.
        """
        key_map = self._key_maps.setdefault(table.name, KeyMap())
        mapping = self._pk_mapping(data, table.name)
        inbound = [
            rel
            for rel in data.relationships
            if rel.source_table == table.name
            and rel.target_table != table.name
            and self._target_key_map(rel, data) is not None
        ]
        self._inline_relationships.update(rel.id for rel in inbound)
        column_types = {c.name: c.data_type for c in table.columns}

        for start in range(0, len(table.rows), options.batch_size):
            batch = table.rows[start:start + options.batch_size]
            for row in batch:
                try:
                    action = await self._deploy_row(
                        table, mapping, inbound, row, options, key_map, column_types
                    )
                except Exception as e:
                    if not options.continue_on_error:
                        raise
                    counts["failed"] += 1
                    old_key = extract_key(row, mapping.pk_columns) if mapping.pk_columns else None
                    logger.error(f"Row {old_key!r} of '{table.name}' failed: {e}")
                    record.error_log.append(f"Row {old_key!r} of '{table.name}' failed: {e}")
                    continue
                counts[action] += 1
            logger.debug(
                f"'{table.name}': batch {start // options.batch_size + 1} done "
                f"({min(start + options.batch_size, len(table.rows))}/{len(table.rows)} rows)"
            )

    async def _deploy_row(
        self,
        table: TableData,
        mapping: PKMapping,
        inbound: list[Relationship],
        source_row: dict[str, Any],
        options: DeploymentOptions,
        key_map: KeyMap,
        column_types: dict[str, str],
    ) -> MappingAction:
        row = dict(source_row)
        pk_columns = mapping.pk_columns
        old_key = extract_key(row, pk_columns) if pk_columns else None

        self._remap_foreign_keys(row, inbound)

        if pk_columns and mapping.strategy in ("auto_increment", "sequence"):
            for col in pk_columns:
                row.pop(col, None)
            new_key = None
        elif pk_columns and mapping.strategy == "uuid":
            new_key = extract_key({c: str(uuid4()) for c in pk_columns}, pk_columns)
            row.update(key_filters(new_key, pk_columns))
        else:
            # key columns that are also FKs were remapped above
            new_key = extract_key(row, pk_columns) if pk_columns else None

        if pk_columns and not is_missing_key(new_key):
            if await self._exists(table.name, pk_columns, new_key):
                if options.skip_existing:
                    key_map.record(old_key, new_key, "skipped")
                    return "skipped"
                if options.update_existing:
                    changes = restore_row(
                        {k: v for k, v in row.items() if k not in pk_columns}, column_types
                    )
                    if changes:
                        await self.adapter.update(
                            table.name, data=changes, filters=key_filters(new_key, pk_columns)
                        )
                    key_map.record(old_key, new_key, "updated")
                    return "updated"
                raise ExistingRecordError(
                    f"{table.name} row {new_key!r} already exists "
                    f"(set skip_existing or update_existing)"
                )

        created = await self.adapter.insert(table.name, data=restore_row(row, column_types))
        if pk_columns and new_key is None and created:
            new_key = extract_key(created, pk_columns)
        key_map.record(old_key, new_key, "inserted")
        return "inserted"

    async def _exists(self, table_name: str, pk_columns: list[str], key: Any) -> bool:
        rows = await self.adapter.select(
            table_name,
            columns=", ".join(pk_columns),
            filters=key_filters(key, pk_columns),
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Foreign keys
    # ------------------------------------------------------------------

    def _target_key_map(self, rel: Relationship, data: DatabaseData) -> KeyMap | None:
        """Key map of *rel*'s target table, if deployed and keyed by the referenced column."""
        if data.get_table(rel.target_table) is None:
            return None
        if self._pk_mapping(data, rel.target_table).pk_columns != [rel.target_column]:
            return None
        return self._key_maps.get(rel.target_table)

    def _remap_foreign_keys(self, row: dict[str, Any], inbound: list[Relationship]) -> None:
        """Rewrite FK values whose referenced rows were already deployed."""
        for rel in inbound:
            target_map = self._key_maps[rel.target_table]
            old_value = row.get(rel.source_column)
            if old_value is None or old_value not in target_map:
                continue
            new_value = target_map.get(old_value)
            if new_value is not None and not isinstance(new_value, dict):
                row[rel.source_column] = new_value

    async def _rewrite_relationships(self, data: DatabaseData, record: DeploymentRecord) -> int:
        """Post-load FK rewrite for relationships not handled inline.

        Only rows this deploy wrote are touched, each by its new key.
        Failures become warnings.

        Returns:
            Number of rows updated.
        """
        rewritten = 0
        for rel in data.relationships:
            if rel.id in self._inline_relationships:
                continue
            source_map = self._key_maps.get(rel.source_table)
            target_map = self._target_key_map(rel, data)
            if source_map is None or target_map is None:
                continue

            source_table = data.get_table(rel.source_table)
            source_pk = self._pk_mapping(data, rel.source_table).pk_columns
            if not source_pk:
                continue

            for row in source_table.rows:
                old_value = row.get(rel.source_column)
                if old_value is None or old_value not in target_map:
                    continue
                new_value = target_map.get(old_value)
                if new_value is None or new_value == old_value:
                    continue
                entry = source_map.entry(extract_key(row, source_pk))
                if entry is None or entry.action == "skipped" or is_missing_key(entry.new_key):
                    continue
                try:
                    await self.adapter.update(
                        rel.source_table,
                        data={rel.source_column: new_value},
                        filters=key_filters(entry.new_key, source_pk),
                    )
                    rewritten += 1
                except Exception as e:
                    message = (
                        f"Could not rewrite {rel.source_table}.{rel.source_column} "
                        f"for row {entry.new_key!r}: {e}"
                    )
                    logger.warning(message)
                    record.warnings.append(message)
        return rewritten

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def rollback(self, record: DeploymentRecord) -> dict[str, int]:
        """Delete the rows a deploy inserted, children first.

        Rows the deploy only skipped or updated are left alone.  If a delete
        fails, the error and the counts deleted so far are kept on *record*
        (its status is left unchanged) and the error is re-raised.

        Returns:
            Deleted row count per table.
        """
        order = record.metadata.get("table_order") or list(record.pk_mapping_result)
        pk_columns: dict[str, list[str]] = record.metadata.get("pk_columns", {})
        deleted: dict[str, int] = {}

        for table_name in reversed(order):
            columns = pk_columns.get(table_name, [])
            deleted[table_name] = 0
            for entry in record.pk_mapping_result.get(table_name, []):
                if entry.action != "inserted" or not columns or is_missing_key(entry.new_key):
                    continue
                try:
                    await self.adapter.delete(table_name, key_filters(entry.new_key, columns))
                except Exception as e:
                    message = f"Rollback of '{table_name}' row {entry.new_key!r} failed: {e}"
                    logger.error(message)
                    record.error_log.append(message)
                    record.metadata["rolled_back"] = deleted
                    raise
                deleted[table_name] += 1
            logger.debug(f"Rolled back {deleted[table_name]} rows from '{table_name}'")

        record.metadata["rolled_back"] = deleted
        record.finish("rolled_back")
        return deleted
