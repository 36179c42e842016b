"""Pydantic models for schema introspection and validation.

This module contains schema-domain models:
- Introspection models: ColumnSchema, ForeignKeySchema
- Validation models: ColumnDiff, SchemaValidationResult
- Connection result: ConnectionResult

Configuration models (DatabaseProfile, DatabaseConfig) live in
db_promoter.config.models.
"""

from pydantic import BaseModel, Field


# ============================================================================
# Validation Result Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A missing column detected during validation."""

    table: str
    column: str
    message: str = ""


class SchemaValidationResult(BaseModel):
    """Result of checking a package's tables against a target schema.

    Example:
        >>> result = SchemaValidationResult(valid=True)
        >>> result.error_count
        0
        >>> result.format_report()
        'Schema valid'
    """

    valid: bool
    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        """Count of critical errors (missing tables + missing columns)."""
        return len(self.missing_tables) + len(self.missing_columns)

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if self.valid:
            return "Schema valid"

        lines = ["Schema validation failed:"]

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        if self.missing_columns:
            lines.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            for diff in self.missing_columns:
                lines.append(f"    - {diff.table}.{diff.column}")

        return "\n".join(lines)


# ============================================================================
# Connection Result
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of connect_profile().

    Example:
        >>> result = ConnectionResult(success=True, profile_name="dev", provider="postgres")
        >>> result.success
        True
    """

    success: bool
    profile_name: str | None = None
    provider: str | None = None
    error: str | None = None


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None
    max_length: int | None = None
    is_identity: bool = False
    is_primary_key: bool = False


class ForeignKeySchema(BaseModel):
    """A foreign-key column and the column it references."""

    column_name: str
    referenced_table: str
    referenced_column: str
    constraint_name: str = ""
    on_delete: str | None = None
    on_update: str | None = None
