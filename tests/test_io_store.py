"""Tests for package files, checksums and the directory store."""

import json

import pytest

from db_promoter.deploy.models import DeploymentRecord, KeyMappingEntry
from db_promoter.errors import PackageImportError
from db_promoter.packaging.io import (
    export_package,
    import_package,
    package_checksum,
    read_package,
    validate_package_file,
    write_package,
)
from db_promoter.packaging.models import (
    CollectionData,
    DatabaseData,
    DocumentData,
    DocumentReference,
    Package,
    PKMapping,
    Relationship,
    TableData,
)
from db_promoter.packaging.store import PackageStore


def _database_package(name: str = "orders", version: str = "1.0.0") -> Package:
    return Package(
        name=name,
        version=version,
        kind="database",
        database_data=DatabaseData(
            tables=[
                TableData(name="customers", pk_columns=["id"], rows=[{"id": 1, "name": "Ada"}], row_count=1),
                TableData(
                    name="orders",
                    pk_columns=["id"],
                    rows=[{"id": 10, "customer_id": 1}],
                    row_count=1,
                ),
            ],
            pk_mappings={
                "customers": PKMapping(table_name="customers", pk_columns=["id"]),
                "orders": PKMapping(table_name="orders", pk_columns=["id"]),
            },
            relationships=[
                Relationship(
                    source_table="orders",
                    source_column="customer_id",
                    target_table="customers",
                    target_column="id",
                )
            ],
        ),
    )


# ============================================================================
# Export / import
# ============================================================================


class TestExportImport:
    """Verify JSON export and strict import."""

    def test_round_trip(self) -> None:
        """An exported package imports back equal."""
        package = _database_package()
        assert import_package(export_package(package)) == package

    def test_export_is_indented(self) -> None:
        """Export output is human-readable JSON."""
        text = export_package(_database_package())
        assert text.startswith("{\n")
        assert json.loads(text)["kind"] == "database"

    def test_unknown_field_rejected(self) -> None:
        """Import rejects fields the package structure does not define."""
        data = json.loads(export_package(_database_package()))
        data["surprise"] = True
        with pytest.raises(PackageImportError, match="Invalid package data"):
            import_package(json.dumps(data))

    def test_invalid_json_rejected(self) -> None:
        """Import rejects text that is not JSON."""
        with pytest.raises(PackageImportError):
            import_package("{not json")

    def test_checksum(self) -> None:
        """Checksums are stable SHA-256 hex digests of the bytes."""
        assert package_checksum("abc") == package_checksum(b"abc")
        assert package_checksum("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


class TestPackageFiles:
    """Verify writing, reading and validating package files."""

    def test_write_and_read(self, tmp_path) -> None:
        """write_package creates parents and read_package restores the package."""
        package = _database_package()
        path = write_package(package, tmp_path / "out" / "orders.json")
        assert path.exists()
        assert read_package(path) == package

    def test_read_missing(self, tmp_path) -> None:
        """Reading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            read_package(tmp_path / "missing.json")

    def test_valid_file(self, tmp_path) -> None:
        """A well-formed package validates cleanly."""
        path = write_package(_database_package(), tmp_path / "p.json")
        report = validate_package_file(path)
        assert report == {"valid": True, "errors": [], "warnings": []}

    def test_missing_file(self, tmp_path) -> None:
        """A missing file is reported, not raised."""
        report = validate_package_file(tmp_path / "nope.json")
        assert report["valid"] is False
        assert "not found" in report["errors"][0]

    def test_bad_json(self, tmp_path) -> None:
        """Non-JSON content is reported."""
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        report = validate_package_file(path)
        assert report["valid"] is False
        assert report["errors"][0].startswith("Invalid JSON")

    def test_no_payload(self, tmp_path) -> None:
        """A package without its payload is invalid."""
        path = write_package(Package(name="p", version="1", kind="database"), tmp_path / "p.json")
        report = validate_package_file(path)
        assert report["errors"] == ["Package of kind 'database' has no payload"]

    def test_row_count_mismatch(self, tmp_path) -> None:
        """A row count that disagrees with the rows is an error."""
        package = _database_package()
        package.database_data.tables[0].row_count = 5
        path = write_package(package, tmp_path / "p.json")
        report = validate_package_file(path)
        assert report["valid"] is False
        assert "customers: row_count 5 != 1 rows" in report["errors"]

    def test_relationship_outside_package_warns(self, tmp_path) -> None:
        """A relationship to an unpackaged table is a warning only."""
        package = Package(
            name="p",
            version="1",
            kind="database",
            database_data=DatabaseData(
                tables=[TableData(name="orders")],
                pk_mappings={"orders": PKMapping(table_name="orders")},
                relationships=[
                    Relationship(
                        source_table="orders",
                        source_column="customer_id",
                        target_table="customers",
                        target_column="id",
                    )
                ],
            ),
        )
        report = validate_package_file(write_package(package, tmp_path / "p.json"))
        assert report["valid"] is True
        assert "points outside the package" in report["warnings"][0]

    def test_missing_pk_mapping_warns(self, tmp_path) -> None:
        """A table without a key mapping is reported as a warning."""
        package = Package(
            name="p",
            version="1",
            kind="database",
            database_data=DatabaseData(tables=[TableData(name="notes")]),
        )
        report = validate_package_file(write_package(package, tmp_path / "p.json"))
        assert report["valid"] is True
        assert report["warnings"] == ["notes: no primary-key mapping (rows will be preserved)"]

    def test_dangling_document_reference(self, tmp_path) -> None:
        """A document reference to an unpackaged collection is an error."""
        package = Package(
            name="p",
            version="1",
            kind="document",
            document_data=DocumentData(
                collections=[CollectionData(name="Workflow")],
                references=[
                    DocumentReference(
                        source_collection="Workflow",
                        source_field="nodes.trancode_id",
                        target_collection="TranCode",
                        reference_type="array",
                    )
                ],
            ),
        )
        report = validate_package_file(write_package(package, tmp_path / "p.json"))
        assert report["valid"] is False
        assert "outside the package" in report["errors"][0]


# ============================================================================
# Store
# ============================================================================


class TestPackageStore:
    """Verify the directory-backed store."""

    def test_save_and_load(self, tmp_path) -> None:
        """Saved packages load back with checksum and size recorded."""
        store = PackageStore(tmp_path)
        package = _database_package()
        stored = store.save(package)
        content = (tmp_path / "packages" / f"{package.id}.json").read_bytes()
        assert stored.checksum == package_checksum(content)
        assert stored.size_bytes == len(content)
        assert store.load(package.id) == package

    def test_load_unknown(self, tmp_path) -> None:
        """Loading an unknown id raises KeyError."""
        with pytest.raises(KeyError):
            PackageStore(tmp_path).load("missing")

    def test_list_packages(self, tmp_path) -> None:
        """Packages are listed by name then version."""
        store = PackageStore(tmp_path)
        store.save(_database_package("orders", "2.0.0"))
        store.save(_database_package("accounts", "1.0.0"))
        store.save(_database_package("orders", "1.0.0"))
        listed = [(s.name, s.version) for s in store.list_packages()]
        assert listed == [("accounts", "1.0.0"), ("orders", "1.0.0"), ("orders", "2.0.0")]

    def test_list_empty_store(self, tmp_path) -> None:
        """An unused store lists nothing."""
        assert PackageStore(tmp_path / "fresh").list_packages() == []

    def test_record_round_trip(self, tmp_path) -> None:
        """Deployment records are saved and loaded by id."""
        store = PackageStore(tmp_path)
        record = DeploymentRecord(package_id="p1", package_name="orders", package_version="1")
        record.pk_mapping_result["orders"] = [KeyMappingEntry(old_key=1, new_key=101)]
        path = store.save_record(record)
        assert path.parent.name == "deployments"
        restored = store.load_record(record.id)
        assert restored.pk_mapping_result["orders"][0].new_key == 101

    def test_load_unknown_record(self, tmp_path) -> None:
        """Loading an unknown record raises KeyError."""
        with pytest.raises(KeyError):
            PackageStore(tmp_path).load_record("missing")
