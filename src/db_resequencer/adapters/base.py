"""Database client protocol definitions.

Defines the ``DatabaseClient`` Protocol that all adapters must implement
and the ``Transaction`` Protocol for the handle yielded by
``DatabaseClient.transaction()``.  All methods are ``async def`` -- the
library is async-first.

Usage:
    from db_resequencer.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("stores", "id, name", order_by="name")
        async with client.transaction() as tx:
            await tx.lock_tables(["stores"])
            await tx.execute("UPDATE stores SET name = :n WHERE id = :i", {"n": "A", "i": 1})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class Transaction(Protocol):
    """Handle for one atomic unit of work.

    Obtained from ``DatabaseClient.transaction()``.  Everything executed
    through the handle commits together when the ``async with`` block
    exits normally and rolls back when it exits with any exception
    (including task cancellation).

    Rows returned by ``select`` hold raw driver values so they can be
    written back with ``insert`` unchanged.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows inside the transaction."""
        ...

    async def insert(self, table: str, data: dict) -> None:
        """Insert one row, including an explicit primary key if given."""
        ...

    async def delete(self, table: str, filters: dict[str, Any] | None = None) -> int:
        """Delete rows matching *filters* (all rows when ``None``).

        Returns:
            Number of rows deleted.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> int:
        """Execute a raw SQL statement with named parameters.

        Returns:
            Number of rows affected (``-1`` when the driver cannot tell).
        """
        ...

    async def lock_tables(self, tables: list[str]) -> None:
        """Exclusively lock *tables* against concurrent writers until commit."""
        ...

    async def suspend_foreign_keys(self) -> None:
        """Stop enforcing foreign keys for the rest of the transaction."""
        ...

    async def restore_foreign_keys(self) -> None:
        """Resume foreign key enforcement before commit."""
        ...


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    This Protocol ensures type safety and consistent behavior across
    different database backends (PostgreSQL, SQLite, Supabase).

    All methods are async -- callers must ``await`` every operation.

    Attributes:
        dialect: Backend name (``"postgresql"``, ``"sqlite"`` or
            ``"supabase"``).  Used to pick backend-specific behavior such
            as the sequence reset strategy.
    """

    dialect: str

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional comma-separated columns to sort by ascending
                (e.g., ``"name, id"``).

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "stores",
                "id, name",
                filters={"group_id": 2},
                order_by="name, id",
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Args:
            table: Table name.
            data: Dict of field=value pairs to insert.

        Returns:
            Dict representing the created row (includes id, timestamps, etc.).

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Args:
            table: Table name.
            data: Dict of field=value pairs to update.
            filters: Dict of field=value filters (all must match via AND).

        Returns:
            Dict representing the updated row.

        Raises:
            Exception: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows from table.

        Args:
            table: Table name.
            filters: Dict of field=value filters (all must match via AND).
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement in its own transaction.

        Not all adapters support raw SQL -- those that don't should raise
        ``NotImplementedError``.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.

        Raises:
            NotImplementedError: If the adapter does not support raw SQL.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open an atomic unit of work.

        Usage:
            async with client.transaction() as tx:
                await tx.delete("stores")

        Raises:
            NotImplementedError: If the backend has no transactions.
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
