"""Catalog introspection and package schema checks.

Usage:
    from db_promoter.schema import SchemaIntrospector, validate_schema
"""

from db_promoter.schema.comparator import expected_columns_for, validate_schema
from db_promoter.schema.introspector import SchemaIntrospector
from db_promoter.schema.models import (
    ColumnDiff,
    ColumnSchema,
    ConnectionResult,
    ForeignKeySchema,
    SchemaValidationResult,
)

__all__ = [
    "validate_schema",
    "expected_columns_for",
    "SchemaIntrospector",
    "SchemaValidationResult",
    "ColumnDiff",
    "ConnectionResult",
    "ColumnSchema",
    "ForeignKeySchema",
]
