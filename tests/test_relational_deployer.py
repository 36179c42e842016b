"""Tests for RelationalDeployer against an in-memory store."""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from pydantic import ValidationError

from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord
from db_promoter.deploy.relational import RelationalDeployer, restore_value
from db_promoter.packaging.models import (
    ColumnInfo,
    DatabaseData,
    Package,
    PKMapping,
    Relationship,
    TableData,
)


def _table(name: str, rows: list[dict], pk: list[str] | None = None) -> TableData:
    return TableData(name=name, pk_columns=pk or ["id"], rows=rows, row_count=len(rows))


def _rel(source: str, column: str, target: str, target_column: str = "id") -> Relationship:
    return Relationship(
        source_table=source,
        source_column=column,
        target_table=target,
        target_column=target_column,
    )


def _package(
    tables: list[TableData],
    relationships: list[Relationship] | None = None,
    strategies: dict[str, str] | None = None,
) -> Package:
    strategies = strategies or {}
    pk_mappings = {
        t.name: PKMapping(
            table_name=t.name,
            pk_columns=t.pk_columns,
            is_auto_increment=strategies.get(t.name) in ("auto_increment", "sequence"),
            strategy=strategies.get(t.name, "preserve"),
        )
        for t in tables
    }
    return Package(
        name="orders",
        version="1.0.0",
        kind="database",
        database_data=DatabaseData(
            tables=tables,
            pk_mappings=pk_mappings,
            relationships=relationships or [],
        ),
    )


def _mapping(record: DeploymentRecord, table: str) -> list[tuple]:
    return [(e.old_key, e.new_key, e.action) for e in record.pk_mapping_result[table]]


# ============================================================================
# Deploy
# ============================================================================


class TestDeploy:
    """Verify key strategies and foreign-key rewriting."""

    @pytest.mark.asyncio
    async def test_preserve_promotes_rows(self, memory_adapter) -> None:
        """Preserved keys map to themselves."""
        adapter = memory_adapter()
        package = _package([_table("customers", [{"id": 1, "name": "Ada"}])])

        record = await RelationalDeployer(adapter, target="staging").deploy(package, DeploymentOptions())

        assert record.status == "completed"
        assert record.target == "staging"
        assert _mapping(record, "customers") == [(1, 1, "inserted")]
        assert adapter.store["customers"] == [{"id": 1, "name": "Ada"}]
        assert record.metadata["counts"]["customers"]["inserted"] == 1

    @pytest.mark.asyncio
    async def test_uuid_keys_rewrite_children(self, memory_adapter) -> None:
        """Fresh UUIDs reach child FKs even when the child is listed first."""
        adapter = memory_adapter()
        package = _package(
            [
                _table("orders", [{"id": 10, "customer_id": 1}]),
                _table("customers", [{"id": 1, "name": "Ada"}]),
            ],
            [_rel("orders", "customer_id", "customers")],
            {"customers": "uuid"},
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "completed"
        assert record.metadata["table_order"] == ["customers", "orders"]
        new_id = adapter.store["customers"][0]["id"]
        UUID(new_id)
        assert adapter.store["orders"] == [{"id": 10, "customer_id": new_id}]
        assert record.metadata["relationships_rewritten"] == 0

    @pytest.mark.asyncio
    async def test_auto_increment_keys_read_back(self, memory_adapter) -> None:
        """Store-assigned keys are read back and used for child FKs."""
        adapter = memory_adapter(serial={"customers": "id"})
        package = _package(
            [
                _table("customers", [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Bob"}]),
                _table("orders", [{"id": 10, "customer_id": 2}]),
            ],
            [_rel("orders", "customer_id", "customers")],
            {"customers": "auto_increment"},
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert _mapping(record, "customers") == [(1, 101, "inserted"), (2, 102, "inserted")]
        assert adapter.store["orders"][0]["customer_id"] == 102

    @pytest.mark.asyncio
    async def test_self_reference_rewritten_after_load(self, memory_adapter) -> None:
        """Self-referencing FKs are fixed up by new key after all rows load."""
        adapter = memory_adapter(serial={"employees": "id"})
        package = _package(
            [
                _table(
                    "employees",
                    [
                        {"id": 1, "name": "boss", "manager_id": None},
                        {"id": 2, "name": "worker", "manager_id": 1},
                    ],
                )
            ],
            [_rel("employees", "manager_id", "employees")],
            {"employees": "auto_increment"},
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "completed"
        assert record.metadata["relationships_rewritten"] == 1
        worker = next(r for r in adapter.store["employees"] if r["id"] == 102)
        assert worker["manager_id"] == 101

    @pytest.mark.asyncio
    async def test_composite_keys(self, memory_adapter) -> None:
        """Composite keys map as dicts and pick up remapped FK columns."""
        adapter = memory_adapter(serial={"orders": "id"})
        package = _package(
            [
                _table("orders", [{"id": 10, "status": "open"}]),
                _table(
                    "order_items",
                    [{"order_id": 10, "product_id": 7, "qty": 2}],
                    pk=["order_id", "product_id"],
                ),
            ],
            [_rel("order_items", "order_id", "orders")],
            {"orders": "auto_increment"},
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "completed"
        assert _mapping(record, "order_items") == [
            ({"order_id": 10, "product_id": 7}, {"order_id": 101, "product_id": 7}, "inserted")
        ]
        assert adapter.store["order_items"] == [{"order_id": 101, "product_id": 7, "qty": 2}]

    @pytest.mark.asyncio
    async def test_batches_cover_all_rows(self, memory_adapter) -> None:
        """Rows are written across batches without loss."""
        adapter = memory_adapter()
        rows = [{"id": i} for i in range(1, 6)]
        package = _package([_table("items", rows)])

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions(batch_size=2))

        assert record.metadata["counts"]["items"]["inserted"] == 5
        assert len(adapter.store["items"]) == 5


# ============================================================================
# Column values
# ============================================================================

EVENT_COLUMNS = [
    ColumnInfo(name="id", data_type="integer", is_primary_key=True),
    ColumnInfo(name="created_at", data_type="timestamp with time zone"),
    ColumnInfo(name="day", data_type="date"),
    ColumnInfo(name="amount", data_type="numeric"),
    ColumnInfo(name="note", data_type="text"),
]

EVENT_ROW = {
    "id": 1,
    "created_at": "2024-01-02T03:04:05+00:00",
    "day": "2024-01-02",
    "amount": "1.50",
    "note": "2024-01-02",
}


class TestColumnValues:
    """Verify packaged strings are written back as native column types."""

    @pytest.mark.parametrize(
        "value,data_type,expected",
        [
            ("2024-01-02T03:04:05+00:00", "timestamp with time zone", datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
            ("2024-01-02T03:04:05", "timestamp without time zone", datetime(2024, 1, 2, 3, 4, 5)),
            ("2024-01-02", "date", date(2024, 1, 2)),
            ("10:30:00", "time without time zone", time(10, 30)),
            ("1.50", "numeric", Decimal("1.50")),
            ("2024-01-02", "text", "2024-01-02"),
            (None, "date", None),
            (7, "numeric", 7),
        ],
    )
    def test_restore_value(self, value, data_type: str, expected) -> None:
        """Strings are parsed by column type; other values pass through."""
        assert restore_value(value, data_type) == expected

    @pytest.mark.asyncio
    async def test_insert_uses_native_types(self, memory_adapter) -> None:
        """Inserted rows carry datetime, date and Decimal values."""
        adapter = memory_adapter()
        table = TableData(name="events", columns=EVENT_COLUMNS, pk_columns=["id"], rows=[EVENT_ROW], row_count=1)

        record = await RelationalDeployer(adapter).deploy(_package([table]), DeploymentOptions())

        assert record.status == "completed"
        [stored] = adapter.store["events"]
        assert stored["created_at"] == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert type(stored["day"]) is date
        assert stored["amount"] == Decimal("1.50")
        assert stored["note"] == "2024-01-02"
        assert record.pk_mapping_result["events"][0].new_key == 1

    @pytest.mark.asyncio
    async def test_update_uses_native_types(self, memory_adapter) -> None:
        """update_existing writes native values too."""
        adapter = memory_adapter(tables={"events": [{"id": 1, "note": "old"}]})
        table = TableData(name="events", columns=EVENT_COLUMNS, pk_columns=["id"], rows=[EVENT_ROW], row_count=1)

        await RelationalDeployer(adapter).deploy(_package([table]), DeploymentOptions(update_existing=True))

        changes = adapter.update.await_args.kwargs["data"]
        assert isinstance(changes["created_at"], datetime)
        assert changes["amount"] == Decimal("1.50")


# ============================================================================
# Existing records
# ============================================================================


class TestExistingRecords:
    """Verify the skip/update/error policy for rows already in the target."""

    def _setup(self, memory_adapter):
        adapter = memory_adapter(tables={"customers": [{"id": 1, "name": "Old"}]})
        package = _package([_table("customers", [{"id": 1, "name": "New"}, {"id": 2, "name": "Bob"}])])
        return adapter, package

    @pytest.mark.asyncio
    async def test_conflict_fails_without_policy(self, memory_adapter) -> None:
        """An existing row is an error when no policy is set."""
        adapter, package = self._setup(memory_adapter)

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "failed"
        assert "already exists" in record.error_log[0]
        adapter.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_existing(self, memory_adapter) -> None:
        """skip_existing leaves the target row untouched."""
        adapter, package = self._setup(memory_adapter)

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions(skip_existing=True))

        assert record.status == "completed"
        assert _mapping(record, "customers") == [(1, 1, "skipped"), (2, 2, "inserted")]
        assert adapter.store["customers"][0]["name"] == "Old"

    @pytest.mark.asyncio
    async def test_update_existing(self, memory_adapter) -> None:
        """update_existing overwrites non-key columns."""
        adapter, package = self._setup(memory_adapter)

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions(update_existing=True))

        assert _mapping(record, "customers") == [(1, 1, "updated"), (2, 2, "inserted")]
        assert adapter.store["customers"][0] == {"id": 1, "name": "New"}
        assert record.metadata["counts"]["customers"]["updated"] == 1

    def test_both_policies_rejected(self) -> None:
        """The two policies cannot be combined."""
        with pytest.raises(ValidationError):
            DeploymentOptions(skip_existing=True, update_existing=True)

    @pytest.mark.asyncio
    async def test_continue_on_error(self, memory_adapter) -> None:
        """Row failures are logged and the deploy still completes."""
        adapter, package = self._setup(memory_adapter)

        record = await RelationalDeployer(adapter).deploy(
            package, DeploymentOptions(continue_on_error=True)
        )

        assert record.status == "completed"
        assert record.metadata["counts"]["customers"] == {
            "inserted": 1,
            "updated": 0,
            "skipped": 0,
            "failed": 1,
        }
        assert "Row 1 of 'customers' failed" in record.error_log[0]

    @pytest.mark.asyncio
    async def test_failure_stops_later_tables(self, memory_adapter) -> None:
        """Without continue_on_error the first failing table ends the deploy."""
        adapter = memory_adapter(tables={"customers": [{"id": 1}]})
        package = _package(
            [_table("customers", [{"id": 1}]), _table("orders", [{"id": 10, "customer_id": 1}])],
            [_rel("orders", "customer_id", "customers")],
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "failed"
        assert "orders" not in record.pk_mapping_result
        assert "orders" not in adapter.store


# ============================================================================
# Validation and misuse
# ============================================================================


class TestValidation:
    """Verify dry runs and structural failures."""

    @pytest.mark.asyncio
    async def test_dry_run_touches_nothing(self, memory_adapter) -> None:
        """A dry run validates without calling the store."""
        adapter = memory_adapter()
        package = _package(
            [_table("customers", [{"id": 1}]), _table("orders", [{"id": 10, "customer_id": 1}])],
            [_rel("orders", "customer_id", "customers")],
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions(dry_run=True))

        assert record.status == "validated"
        assert record.metadata["table_order"] == ["customers", "orders"]
        adapter.insert.assert_not_awaited()
        adapter.select.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_reports_missing_reference(self, memory_adapter) -> None:
        """A relationship to an unpackaged table fails validation."""
        package = _package(
            [_table("orders", [{"id": 10, "customer_id": 1}])],
            [_rel("orders", "customer_id", "customers")],
        )

        record = await RelationalDeployer(memory_adapter()).deploy(package, DeploymentOptions(dry_run=True))

        assert record.status == "failed"
        assert "table 'customers' is not in the package" in record.error_log[0]

    @pytest.mark.asyncio
    async def test_reference_check_can_be_disabled(self, memory_adapter) -> None:
        """validate_references=False skips the reference check."""
        package = _package(
            [_table("orders", [{"id": 10, "customer_id": 1}])],
            [_rel("orders", "customer_id", "customers")],
        )

        record = await RelationalDeployer(memory_adapter()).deploy(
            package, DeploymentOptions(dry_run=True, validate_references=False)
        )

        assert record.status == "validated"

    @pytest.mark.asyncio
    async def test_cycle_fails(self, memory_adapter) -> None:
        """A dependency cycle fails the deploy before any write."""
        adapter = memory_adapter()
        package = _package(
            [_table("a", [{"id": 1, "b_id": 1}]), _table("b", [{"id": 1, "a_id": 1}])],
            [_rel("a", "b_id", "b"), _rel("b", "a_id", "a")],
        )

        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())

        assert record.status == "failed"
        assert record.error_log[0].startswith("Circular dependency detected")
        adapter.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_payload(self, memory_adapter) -> None:
        """A package without database data fails."""
        package = Package(name="p", version="1", kind="database")

        record = await RelationalDeployer(memory_adapter()).deploy(package, DeploymentOptions())

        assert record.status == "failed"
        assert record.error_log == ["Package has no database payload"]

    @pytest.mark.asyncio
    async def test_single_use(self, memory_adapter) -> None:
        """A deployer cannot be reused."""
        deployer = RelationalDeployer(memory_adapter())
        package = _package([_table("customers", [{"id": 1}])])
        await deployer.deploy(package, DeploymentOptions())

        with pytest.raises(RuntimeError, match="single-use"):
            await deployer.deploy(package, DeploymentOptions())


# ============================================================================
# Rollback
# ============================================================================


class TestRollback:
    """Verify rollback deletes inserted rows children first."""

    @pytest.mark.asyncio
    async def test_rollback_reverses_inserts(self, memory_adapter) -> None:
        """Inserted rows are deleted in reverse table order; skipped rows stay."""
        adapter = memory_adapter(tables={"customers": [{"id": 1, "name": "Old"}]})
        package = _package(
            [
                _table("customers", [{"id": 1, "name": "New"}, {"id": 2, "name": "Bob"}]),
                _table("orders", [{"id": 10, "customer_id": 2}]),
            ],
            [_rel("orders", "customer_id", "customers")],
        )
        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions(skip_existing=True))

        deleted = await RelationalDeployer(adapter).rollback(record)

        assert deleted == {"orders": 1, "customers": 1}
        tables = [c.args[0] for c in adapter.delete.await_args_list]
        assert tables == ["orders", "customers"]
        assert adapter.store["customers"] == [{"id": 1, "name": "Old"}]
        assert adapter.store["orders"] == []
        assert record.status == "rolled_back"
        assert record.metadata["rolled_back"] == deleted

    @pytest.mark.asyncio
    async def test_rollback_from_saved_record(self, memory_adapter) -> None:
        """A record reloaded from JSON still rolls back by new key."""
        adapter = memory_adapter(serial={"customers": "id"})
        package = _package([_table("customers", [{"id": 1}])], strategies={"customers": "auto_increment"})
        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())
        restored = DeploymentRecord.model_validate_json(record.model_dump_json())

        await RelationalDeployer(adapter).rollback(restored)

        adapter.delete.assert_awaited_once_with("customers", {"id": 101})
        assert adapter.store["customers"] == []

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_progress(self, memory_adapter) -> None:
        """A failing delete is logged on the record with the counts so far."""
        adapter = memory_adapter()
        package = _package([_table("customers", [{"id": 1}, {"id": 2}])])
        record = await RelationalDeployer(adapter).deploy(package, DeploymentOptions())
        adapter.delete.side_effect = [None, RuntimeError("lock timeout")]

        with pytest.raises(RuntimeError, match="lock timeout"):
            await RelationalDeployer(adapter).rollback(record)

        assert record.metadata["rolled_back"] == {"customers": 1}
        assert record.error_log == ["Rollback of 'customers' row 2 failed: lock timeout"]
        assert record.status == "completed"
