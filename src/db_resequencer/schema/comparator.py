"""Schema comparison using set operations.

Checks that every table and column the resequencer will touch exists, and
that every foreign key referencing a sequenced table is declared as one of
its dependents.  Pure logic -- no I/O, no database connections.

Usage:
    from db_resequencer.schema.comparator import expected_columns_for, validate_schema
    from db_resequencer.schema.introspector import introspector_for

    async with introspector_for(database_url) as introspector:
        actual_columns = await introspector.get_column_names()

    result = validate_schema(actual_columns, expected_columns_for(config.tables.values()))
    if not result.valid:
        print(result.format_report())
"""

from collections.abc import Iterable

from db_resequencer.resequence.models import Dependent, SequencedTable
from db_resequencer.schema.models import ColumnDiff, SchemaValidationResult


def expected_columns_for(tables: Iterable[SequencedTable]) -> dict[str, set[str]]:
    """Derive the columns resequencing needs from the configured tables.

    Each sequenced table needs its primary key and ordering key; each
    dependent table needs its foreign key column.

    Example:
        >>> stores = SequencedTable(
        ...     name="stores",
        ...     ordering_key="name",
        ...     dependents=[Dependent(table="users", column="store_id")],
        ... )
        >>> sorted(expected_columns_for([stores])["stores"])
        ['id', 'name']
    """
    expected: dict[str, set[str]] = {}
    for seq_table in tables:
        expected.setdefault(seq_table.name, set()).update(
            {seq_table.pk, seq_table.ordering_key}
        )
        for dependent in seq_table.dependents:
            expected.setdefault(dependent.table, set()).add(dependent.column)
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
            names, usually from ``expected_columns_for()``.

    Returns:
        ``SchemaValidationResult`` with ``valid`` True if no table or
        column is missing.  Tables the database has beyond those expected
        are ignored.

    Examples:
        >>> result = validate_schema({"stores": {"id"}}, {"stores": {"id", "name"}})
        >>> result.valid
        False
        >>> result.missing_columns[0].column
        'name'

        >>> validate_schema({"stores": {"id"}}, {}).valid
        True
    """
    actual_tables: set[str] = set(actual_columns.keys())
    expected_tables: set[str] = set(expected_columns.keys())

    # Tables in expected but not in actual
    missing_tables: list[str] = sorted(expected_tables - actual_tables)

    # Columns missing from tables that exist in both actual and expected
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


def find_undeclared_dependents(
    seq_table: SequencedTable, discovered: list[Dependent]
) -> list[str]:
    """Foreign keys referencing *seq_table* that its config does not list.

    Example:
        >>> stores = SequencedTable(name="stores", ordering_key="name")
        >>> find_undeclared_dependents(stores, [Dependent(table="users", column="store_id")])
        ['users.store_id']
    """
    declared = {d.key for d in seq_table.dependents}
    return sorted({d.key for d in discovered} - declared)
