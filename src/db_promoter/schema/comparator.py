"""Package-vs-target schema comparison using set operations.

Checks that every table and column a relational package will write
exists in the target database.  Pure logic -- no I/O.

Usage:
    from db_promoter.schema.comparator import expected_columns_for, validate_schema
    from db_promoter.schema.introspector import SchemaIntrospector

    async with SchemaIntrospector(database_url) as introspector:
        actual_columns = await introspector.get_column_names()

    result = validate_schema(actual_columns, expected_columns_for(package))
    if not result.valid:
        print(result.format_report())
"""

from db_promoter.packaging.models import Package
from db_promoter.schema.models import ColumnDiff, SchemaValidationResult


def expected_columns_for(package: Package) -> dict[str, set[str]]:
    """Columns a relational package writes, per table.

    Only columns that occur in packaged rows count (excluded columns are
    absent from rows and need not exist in the target).

    Returns:
        Dict mapping table name to set of column names; empty for a
        package without a database payload.
    """
    if package.database_data is None:
        return {}
    expected: dict[str, set[str]] = {}
    for table in package.database_data.tables:
        columns: set[str] = set()
        for row in table.rows:
            columns.update(row.keys())
        expected[table.name] = columns or set(table.column_names)
    return expected


def validate_schema(
    actual_columns: dict[str, set[str]],
    expected_columns: dict[str, set[str]],
) -> SchemaValidationResult:
    """Validate actual database schema against expected columns.

    Args:
        actual_columns: Dict mapping table name to set of column names,
            as returned by ``introspector.get_column_names()``.
        expected_columns: Dict mapping table name to set of expected column
            names, usually from ``expected_columns_for(package)``.

    Returns:
        ``SchemaValidationResult``; ``valid`` is ``True`` when no table or
        column is missing.

    Examples:
        >>> validate_schema({"users": {"id", "name"}}, {"users": {"id"}}).valid
        True
        >>> result = validate_schema({"users": {"id"}}, {"users": {"id", "name"}})
        >>> result.missing_columns[0].column
        'name'
    """
    actual_tables: set[str] = set(actual_columns.keys())
    expected_tables: set[str] = set(expected_columns.keys())

    missing_tables: list[str] = sorted(expected_tables - actual_tables)

    missing_columns: list[ColumnDiff] = []
    for table_name in sorted(expected_tables & actual_tables):
        missing_cols = expected_columns[table_name] - actual_columns[table_name]
        for col_name in sorted(missing_cols):
            missing_columns.append(
                ColumnDiff(
                    table=table_name,
                    column=col_name,
                    message=f"Column '{col_name}' missing from table '{table_name}'",
                )
            )

    return SchemaValidationResult(
        valid=not missing_tables and not missing_columns,
        missing_tables=missing_tables,
        missing_columns=missing_columns,
    )
