"""Shared SQLAlchemy plumbing for the SQL-backed adapters.

Provides ``SqlAlchemyAdapter``, the common async implementation of the
``DatabaseClient`` protocol on top of an SQLAlchemy ``AsyncEngine``, and
``SqlTransaction``, the matching ``Transaction`` handle.  Backends
subclass both to supply engine creation, table locking, and foreign key
suspension.

Statements are built as ``text()`` with named parameters.  Table and
column names are interpolated as given -- callers validate identifiers.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.elements import TextClause


# ------------------------------------------------------------------
# Statement builders
# ------------------------------------------------------------------


def _where(filters: dict[str, Any] | None, prefix: str) -> tuple[str, dict[str, Any]]:
    """Build a `` WHERE a = :p_0 AND ...`` clause and its parameters."""
    params: dict[str, Any] = {}
    if not filters:
        return "", params

    conditions: list[str] = []
    for i, (k, v) in enumerate(filters.items()):
        param_name = f"{prefix}_{i}"
        conditions.append(f"{k} = :{param_name}")
        params[param_name] = v
    return " WHERE " + " AND ".join(conditions), params


def build_select(
    table: str,
    columns: str,
    filters: dict[str, Any] | None = None,
    order_by: str | None = None,
) -> tuple[TextClause, dict[str, Any]]:
    """Build a SELECT statement with optional filters and ordering."""
    where_clause, params = _where(filters, "p")
    order_clause = f" ORDER BY {order_by}" if order_by else ""
    query = text(f"SELECT {columns} FROM {table}{where_clause}{order_clause}")
    return query, params


def build_insert(
    table: str,
    data: dict,
    jsonb_columns: frozenset[str] = frozenset(),
    returning: bool = True,
) -> tuple[TextClause, dict[str, Any]]:
    """Build an INSERT statement.

    Filters out metadata fields (starting with ``_``).  JSONB columns get
    ``CAST(:param AS jsonb)`` and dict/list values are serialized to JSON.
    """
    clean_data = {k: v for k, v in data.items() if not k.startswith("_")}
    columns = list(clean_data.keys())

    placeholders: list[str] = []
    for col in columns:
        if col in jsonb_columns:
            placeholders.append(f"CAST(:{col} AS jsonb)")
        else:
            placeholders.append(f":{col}")

    returning_clause = " RETURNING *" if returning else ""
    query = text(
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(placeholders)}){returning_clause}"
    )

    params: dict[str, Any] = {}
    for col, val in clean_data.items():
        if isinstance(val, dict):
            params[col] = json.dumps(val)
        elif isinstance(val, list) and col in jsonb_columns:
            params[col] = json.dumps(val)
        else:
            params[col] = val
    return query, params


def build_update(
    table: str,
    data: dict,
    filters: dict[str, Any],
    jsonb_columns: frozenset[str] = frozenset(),
) -> tuple[TextClause, dict[str, Any]]:
    """Build an ``UPDATE ... RETURNING *`` statement."""
    set_parts: list[str] = []
    params: dict[str, Any] = {}

    for i, (k, v) in enumerate(data.items()):
        param_name = f"set_{i}"
        if k in jsonb_columns:
            set_parts.append(f"{k} = CAST(:{param_name} AS jsonb)")
        else:
            set_parts.append(f"{k} = :{param_name}")

        if isinstance(v, dict):
            params[param_name] = json.dumps(v)
        elif isinstance(v, list) and k in jsonb_columns:
            params[param_name] = json.dumps(v)
        else:
            params[param_name] = v

    where_clause, where_params = _where(filters, "where")
    params.update(where_params)

    query = text(
        f"UPDATE {table} SET {', '.join(set_parts)}{where_clause} RETURNING *"
    )
    return query, params


def build_delete(
    table: str, filters: dict[str, Any] | None = None
) -> tuple[TextClause, dict[str, Any]]:
    """Build a DELETE statement.  No filters deletes every row."""
    where_clause, params = _where(filters, "p")
    return text(f"DELETE FROM {table}{where_clause}"), params


def _rows_as_dicts(result: Result) -> list[dict]:
    col_names = list(result.keys())
    return [dict(zip(col_names, row)) for row in result.fetchall()]


# ------------------------------------------------------------------
# Serialization helpers
# ------------------------------------------------------------------


def serialize_value(value: Any) -> Any:
    """Serialize result values to JSON-compatible types.

    Converts UUID to string and datetime to ISO format.
    """
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize_row(row: dict) -> dict:
    """Serialize all values in a row dict."""
    return {k: serialize_value(v) for k, v in row.items()}


# ------------------------------------------------------------------
# Transaction handle
# ------------------------------------------------------------------


class SqlTransaction:
    """``Transaction`` handle bound to one open ``AsyncConnection``.

    The owning adapter begins and ends the transaction; this class only
    issues statements on the connection.  Locking and foreign key
    suspension are no-ops here and are overridden per backend.
    """

    def __init__(
        self,
        conn: AsyncConnection,
        jsonb_columns: frozenset[str] = frozenset(),
    ) -> None:
        self._conn = conn
        self._jsonb_columns = jsonb_columns

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows, returning raw driver values."""
        query, params = build_select(table, columns, filters, order_by)
        result = await self._conn.execute(query, params)
        return _rows_as_dicts(result)

    async def insert(self, table: str, data: dict) -> None:
        """Insert a row without reading it back."""
        query, params = build_insert(
            table, data, self._jsonb_columns, returning=False
        )
        await self._conn.execute(query, params)

    async def delete(self, table: str, filters: dict[str, Any] | None = None) -> int:
        """Delete matching rows (every row when *filters* is ``None``)."""
        query, params = build_delete(table, filters)
        result = await self._conn.execute(query, params)
        return result.rowcount

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute raw SQL and return the affected row count."""
        result = await self._conn.execute(text(sql), params or {})
        return result.rowcount

    async def lock_tables(self, tables: list[str]) -> None:
        """No table-level locking by default."""
        return None

    async def suspend_foreign_keys(self) -> None:
        """No foreign key suspension by default."""
        return None

    async def restore_foreign_keys(self) -> None:
        """No foreign key suspension by default."""
        return None


# ------------------------------------------------------------------
# Adapter
# ------------------------------------------------------------------


class SqlAlchemyAdapter:
    """Async ``DatabaseClient`` implementation over an SQLAlchemy engine.

    Subclasses set ``dialect`` and ``transaction_class`` and create the
    engine in their constructor.

    Args:
        engine: Configured ``AsyncEngine``.
        jsonb_columns: Optional list of column names that should receive
            JSONB serialization (``CAST(:param AS jsonb)``).
    """

    dialect: str = "sql"
    transaction_class: type[SqlTransaction] = SqlTransaction

    def __init__(
        self,
        engine: AsyncEngine,
        jsonb_columns: list[str] | None = None,
    ) -> None:
        self._jsonb_columns: frozenset[str] = frozenset(jsonb_columns or [])
        self._engine: AsyncEngine = engine

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table using raw SQL."""
        query, params = build_select(table, columns, filters, order_by)

        async with self._engine.connect() as conn:
            result = await conn.execute(query, params)
            return [serialize_row(row) for row in _rows_as_dicts(result)]

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row and return created row with all fields.

        Uses ``engine.begin()`` for automatic commit on success, rollback on
        error.
        """
        query, params = build_insert(table, data, self._jsonb_columns)

        async with self._engine.begin() as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()
            col_names = list(result.keys())
            return serialize_row(dict(zip(col_names, row)))

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows and return first updated row."""
        query, params = build_update(table, data, filters, self._jsonb_columns)

        async with self._engine.begin() as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()
            if row is None:
                raise ValueError(f"No rows matched filters: {filters}")
            col_names = list(result.keys())
            return serialize_row(dict(zip(col_names, row)))

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows from table."""
        query, params = build_delete(table, filters)

        async with self._engine.begin() as conn:
            await conn.execute(query, params)

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement in its own transaction."""
        async with self._engine.begin() as conn:
            await conn.execute(text(sql), params or {})

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlTransaction]:
        """Open a transaction and yield its handle.

        Commits when the block exits normally; rolls back on any
        exception, including ``asyncio.CancelledError``.
        """
        async with self._engine.connect() as conn:
            await self._prepare_write(conn)
            try:
                async with conn.begin():
                    yield self._new_transaction(conn)
            finally:
                await self._finish_write(conn)

    def _new_transaction(self, conn: AsyncConnection) -> SqlTransaction:
        return self.transaction_class(conn, self._jsonb_columns)

    async def _prepare_write(self, conn: AsyncConnection) -> None:
        """Hook run on the connection before ``transaction()`` begins."""
        return None

    async def _finish_write(self, conn: AsyncConnection) -> None:
        """Hook run on the connection after ``transaction()`` ends."""
        return None

    async def close(self) -> None:
        """Close the async engine and dispose of the connection pool."""
        if self._engine:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Connection Test
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Test database connection health by running ``SELECT 1``.

        Raises:
            Exception: If the database connection fails.
        """
        async with self._engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1
