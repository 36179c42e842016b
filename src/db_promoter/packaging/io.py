"""Package export/import and package files.

Export produces indented JSON; import accepts exactly that structure and
raises ``PackageImportError`` on anything else.  ``validate_package_file``
inspects a file on disk without touching any store.

Usage:
    from db_promoter.packaging.io import export_package, import_package

    text = export_package(package)
    assert import_package(text) == package

    write_package(package, "packages/orders-1.0.0.json")
    report = validate_package_file("packages/orders-1.0.0.json")
"""

import hashlib
import json
from pathlib import Path

from pydantic import ValidationError

from db_promoter.errors import PackageImportError
from db_promoter.packaging.models import Package


def export_package(package: Package) -> str:
    """Serialize *package* to indented JSON."""
    return package.model_dump_json(indent=2)


def import_package(data: str | bytes) -> Package:
    """Deserialize a package produced by ``export_package``.

    Raises:
        PackageImportError: If *data* is not JSON or does not match the
            package structure (unknown or mistyped fields included).
    """
    try:
        return Package.model_validate_json(data)
    except ValidationError as e:
        raise PackageImportError(f"Invalid package data: {e}") from e


def package_checksum(data: str | bytes) -> str:
    """SHA-256 hex digest of serialized package data."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def write_package(package: Package, output_path: str | Path) -> Path:
    """Write *package* as JSON, creating parent directories.

    Returns:
        Absolute path of the written file.
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_package(package), encoding="utf-8")
    return path.resolve()


def read_package(path: str | Path) -> Package:
    """Read a package file written by ``write_package``.

    Raises:
        FileNotFoundError: If the file does not exist.
        PackageImportError: If the content is not a valid package.
    """
    return import_package(Path(path).read_bytes())


def validate_package_file(path: str | Path) -> dict:
    """Validate a package file's format and internal consistency.

    Checks that the file is JSON, matches the package structure, carries
    the payload its kind declares, that recorded counts match the data,
    and that every relationship/reference points at a known entity.

    This function is **sync** -- it only reads a local file.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        and ``warnings`` (list[str]).

    Example:
        report = validate_package_file("packages/orders.json")
        if report["errors"]:
            raise ValueError("Package is invalid")
    """
    errors: list[str] = []
    warnings: list[str] = []

    try:
        raw = Path(path).read_bytes()
        json.loads(raw)
    except FileNotFoundError:
        errors.append(f"Package file not found: {path}")
        return {"valid": False, "errors": errors, "warnings": warnings}
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {e}")
        return {"valid": False, "errors": errors, "warnings": warnings}

    try:
        package = import_package(raw)
    except PackageImportError as e:
        errors.append(str(e))
        return {"valid": False, "errors": errors, "warnings": warnings}

    if package.payload is None:
        errors.append(f"Package of kind '{package.kind}' has no payload")

    if package.database_data is not None:
        data = package.database_data
        names = set(data.table_names)
        for table in data.tables:
            if table.row_count != len(table.rows):
                errors.append(
                    f"{table.name}: row_count {table.row_count} != {len(table.rows)} rows"
                )
            if table.name not in data.pk_mappings:
                warnings.append(f"{table.name}: no primary-key mapping (rows will be preserved)")
        for rel in data.relationships:
            if rel.target_table not in names:
                warnings.append(
                    f"Relationship {rel.source_table}.{rel.source_column} -> "
                    f"{rel.target_table} points outside the package"
                )

    if package.document_data is not None:
        data = package.document_data
        names = set(data.collection_names)
        for collection in data.collections:
            if collection.document_count != len(collection.documents):
                errors.append(
                    f"{collection.name}: document_count {collection.document_count} "
                    f"!= {len(collection.documents)} documents"
                )
        for ref in data.references:
            if ref.source_collection not in names or ref.target_collection not in names:
                errors.append(
                    f"Reference {ref.source_collection}.{ref.source_field} -> "
                    f"{ref.target_collection} names a collection outside the package"
                )

    return {"valid": not errors, "errors": errors, "warnings": warnings}
