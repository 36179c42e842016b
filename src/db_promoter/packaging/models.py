"""Pydantic models for the portable package artifact.

A ``Package`` is a self-contained snapshot of selected relational tables
or document collections plus the metadata a deployer needs to replay it
into another store without introspecting that store:

- Relational payload: ``DatabaseData`` -> ``TableData``, ``ColumnInfo``,
  ``ForeignKeyInfo``, ``PKMapping``, ``Relationship``
- Document payload: ``DocumentData`` -> ``CollectionData``, ``IndexInfo``,
  ``IDMapping``, ``DocumentReference``
- Request shape: ``PackageFilter``

Every model forbids unknown fields so that importing a serialized
package accepts exactly the structure that export produces.

Usage:
    from db_promoter.packaging.models import Package, PackageFilter

    package_filter = PackageFilter(tables=["orders"], include_related=True)
    package = Package.model_validate_json(raw_json)
"""

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

PackageKind = Literal["database", "document"]
PKStrategy = Literal["auto_increment", "sequence", "uuid", "preserve"]
IDStrategy = Literal["regenerate", "preserve", "skip"]
IDType = Literal["objectid", "uuid", "string", "int"]
ReferenceType = Literal["single", "array"]


class _PackageModel(BaseModel):
    """Base for package models: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


# ============================================================================
# Relational Payload
# ============================================================================


class ColumnInfo(_PackageModel):
    """Column definition captured from the source catalog.

    Example:
        >>> col = ColumnInfo(name="id", data_type="integer", is_primary_key=True)
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    max_length: int | None = None


class ForeignKeyInfo(_PackageModel):
    """Foreign-key column descriptor on a packaged table."""

    column_name: str
    referenced_table: str
    referenced_column: str
    constraint_name: str = ""
    on_delete: str | None = None
    on_update: str | None = None


class TableData(_PackageModel):
    """Rows and column metadata for one packaged table."""

    name: str
    schema_name: str = "public"
    columns: list[ColumnInfo] = Field(default_factory=list)
    pk_columns: list[str] = Field(default_factory=list)
    fk_columns: list[ForeignKeyInfo] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0

    @property
    def column_names(self) -> list[str]:
        """Column names in catalog order."""
        return [c.name for c in self.columns]


class PKMapping(_PackageModel):
    """Primary-key replay strategy for one table, decided at packaging time."""

    table_name: str
    pk_columns: list[str] = Field(default_factory=list)
    is_auto_increment: bool = False
    sequence_name: str | None = None
    strategy: PKStrategy = "preserve"


class Relationship(_PackageModel):
    """One edge of the foreign-key graph: source column -> target column."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    constraint_name: str = ""
    on_delete: str | None = None
    on_update: str | None = None


class DatabaseData(_PackageModel):
    """Relational payload of a package."""

    tables: list[TableData] = Field(default_factory=list)
    pk_mappings: dict[str, PKMapping] = Field(default_factory=dict)
    relationships: list[Relationship] = Field(default_factory=list)
    sequence_info: dict[str, int] = Field(default_factory=dict)
    dialect: str = "postgresql"
    schema_version: str = ""

    @model_validator(mode="after")
    def _relationship_sources_are_packaged(self) -> "DatabaseData":
        names = {t.name for t in self.tables}
        for rel in self.relationships:
            if rel.source_table not in names:
                raise ValueError(
                    f"Relationship source table '{rel.source_table}' "
                    f"is not part of the package"
                )
        return self

    @property
    def table_names(self) -> list[str]:
        """Table names in package order."""
        return [t.name for t in self.tables]

    def get_table(self, name: str) -> TableData | None:
        """Return the packaged table called *name*, or ``None``."""
        for table in self.tables:
            if table.name == name:
                return table
        return None


# ============================================================================
# Document Payload
# ============================================================================


class IndexInfo(_PackageModel):
    """Captured index definition; ``keys`` preserves key order."""

    name: str
    keys: dict[str, Any] = Field(default_factory=dict)
    unique: bool = False


class CollectionData(_PackageModel):
    """Documents and index metadata for one packaged collection."""

    name: str
    documents: list[dict[str, Any]] = Field(default_factory=list)
    document_count: int = 0
    id_field: str = "_id"
    indexes: list[IndexInfo] = Field(default_factory=list)


class IDMapping(_PackageModel):
    """Document-id replay strategy for one collection."""

    collection_name: str
    id_field: str = "_id"
    id_type: IDType = "objectid"
    strategy: IDStrategy = "regenerate"


class DocumentReference(_PackageModel):
    """One edge of the document reference graph."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    source_collection: str
    source_field: str
    target_collection: str
    target_id_field: str = "_id"
    reference_type: ReferenceType = "single"


class DocumentData(_PackageModel):
    """Document payload of a package."""

    collections: list[CollectionData] = Field(default_factory=list)
    id_mappings: dict[str, IDMapping] = Field(default_factory=dict)
    references: list[DocumentReference] = Field(default_factory=list)
    skip_ids: bool = False
    dialect: str = "mongodb"
    database_name: str = ""

    @property
    def collection_names(self) -> list[str]:
        """Collection names in package order."""
        return [c.name for c in self.collections]

    def get_collection(self, name: str) -> CollectionData | None:
        """Return the packaged collection called *name*, or ``None``."""
        for collection in self.collections:
            if collection.name == name:
                return collection
        return None


# ============================================================================
# Package
# ============================================================================


class Package(_PackageModel):
    """Versioned, portable snapshot of selected data.

    A package of kind ``database`` may only carry ``database_data`` and a
    package of kind ``document`` may only carry ``document_data``.  A
    package with no payload is representable (the deployers reject it).

    Example:
        >>> pkg = Package(name="customers", version="1.0.0", kind="database")
        >>> pkg.payload is None
        True
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str = ""
    version: str
    kind: PackageKind
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_by: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    database_data: DatabaseData | None = None
    document_data: DocumentData | None = None
    dependencies: list[str] = Field(default_factory=list)
    include_parent: bool = False

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "Package":
        if self.database_data is not None and self.document_data is not None:
            raise ValueError("A package cannot carry both database and document data")
        if self.kind == "database" and self.document_data is not None:
            raise ValueError("A database package cannot carry document data")
        if self.kind == "document" and self.database_data is not None:
            raise ValueError("A document package cannot carry database data")
        return self

    @property
    def payload(self) -> DatabaseData | DocumentData | None:
        """The populated payload for this package's kind."""
        if self.kind == "database":
            return self.database_data
        return self.document_data


# ============================================================================
# Request Shape
# ============================================================================


class PackageFilter(_PackageModel):
    """Selection for a packaging run.

    ``where`` holds a SQL WHERE fragment per table, or a JSON (MongoDB
    extended JSON) query per collection.  With ``max_depth == 0`` related
    tables are followed without limit only when ``allow_unbounded`` is set;
    otherwise only the requested tables are packaged.
    """

    tables: list[str] = Field(default_factory=list)
    collections: list[str] = Field(default_factory=list)
    where: dict[str, str] = Field(default_factory=dict)
    include_related: bool = False
    max_depth: int = Field(default=0, ge=0)
    allow_unbounded: bool = False
    exclude_columns: dict[str, list[str]] = Field(default_factory=dict)
    exclude_fields: dict[str, list[str]] = Field(default_factory=dict)
    skip_ids: bool = False
    pk_strategies: dict[str, PKStrategy] = Field(default_factory=dict)
    id_strategies: dict[str, IDStrategy] = Field(default_factory=dict)
