"""Schema introspection and validation.

Provides schema comparison (``validate_schema``, ``expected_columns_for``,
``find_undeclared_dependents``) and live database introspection
(``SchemaIntrospector``, ``SqliteIntrospector``, ``introspector_for``).

Usage:
    from db_resequencer.schema import introspector_for, validate_schema
"""

from db_resequencer.schema.comparator import (
    expected_columns_for,
    find_undeclared_dependents,
    validate_schema,
)
from db_resequencer.schema.introspector import (
    SchemaIntrospector,
    SqliteIntrospector,
    introspector_for,
)
from db_resequencer.schema.models import (
    ColumnDiff,
    ConnectionResult,
    SchemaValidationResult,
)

__all__ = [
    "validate_schema",
    "expected_columns_for",
    "find_undeclared_dependents",
    "SchemaIntrospector",
    "SqliteIntrospector",
    "introspector_for",
    "SchemaValidationResult",
    "ColumnDiff",
    "ConnectionResult",
]
