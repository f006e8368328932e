"""Async SQLite database adapter.

Provides ``AsyncSqliteAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``aiosqlite`` driver.

The driver's own transaction handling is switched off so that SQLAlchemy
emits ``BEGIN`` itself: reads use a deferred ``BEGIN``, while
``transaction()`` uses ``BEGIN IMMEDIATE`` to take the database write
lock up front.

Usage:
    from db_resequencer.adapters.sqlite import AsyncSqliteAdapter

    adapter = AsyncSqliteAdapter("sqlite:///./backoffice.db")
    rows = await adapter.select("stores", "id, name", order_by="name, id")
    await adapter.close()
"""

from collections import Counter
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from db_resequencer.adapters.sql import SqlAlchemyAdapter, SqlTransaction
from db_resequencer.errors import StorageError

# Execution option carrying the BEGIN statement for the next transaction
_BEGIN_OPTION = "sqlite_begin_statement"


def normalize_sqlite_url(database_url: str) -> str:
    """Normalize an SQLite URL to the ``sqlite+aiosqlite://`` scheme.

    Example:
        >>> normalize_sqlite_url("sqlite:///./app.db")
        'sqlite+aiosqlite:///./app.db'
    """
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url[len("sqlite://"):]
    return database_url


def _set_foreign_keys(sync_conn, enabled: bool) -> None:
    # Runs on the DBAPI connection, outside any SQLAlchemy transaction
    cursor = sync_conn.connection.dbapi_connection.cursor()
    cursor.execute(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}")
    cursor.close()


class SqliteTransaction(SqlTransaction):
    """SQLite transaction handle.

    ``BEGIN IMMEDIATE`` already holds the database-wide write lock, so
    ``lock_tables`` has nothing to add.  ``PRAGMA foreign_keys`` cannot
    change inside a transaction, so the adapter switches it off before
    ``BEGIN``.  ``suspend_foreign_keys`` records the violations already
    present and ``restore_foreign_keys`` runs ``PRAGMA foreign_key_check``
    again before commit, failing only on violations the transaction added.
    """

    check_foreign_keys = True

    def __init__(
        self,
        conn: AsyncConnection,
        jsonb_columns: frozenset[str] = frozenset(),
    ) -> None:
        super().__init__(conn, jsonb_columns)
        self._baseline: Counter = Counter()

    async def _violations(self) -> Counter:
        # foreign_key_check rows: (table, rowid, parent, fkid)
        result = await self._conn.execute(text("PRAGMA foreign_key_check"))
        return Counter((row[0], row[2], row[3]) for row in result.fetchall())

    async def suspend_foreign_keys(self) -> None:
        if self.check_foreign_keys:
            self._baseline = await self._violations()

    async def restore_foreign_keys(self) -> None:
        if not self.check_foreign_keys:
            return
        added = await self._violations() - self._baseline
        if added:
            tables = sorted({child for child, _, _ in added})
            raise StorageError(
                f"{sum(added.values())} foreign key violation(s) in {', '.join(tables)}"
            )


class AsyncSqliteAdapter(SqlAlchemyAdapter):
    """Async SQLite implementation of the ``DatabaseClient`` protocol.

    Args:
        database_url: SQLite URL (``sqlite:///path.db`` or
            ``sqlite+aiosqlite:///path.db``).  Use a file path; each pooled
            connection to ``:memory:`` would see its own empty database.
        foreign_keys: Enable ``PRAGMA foreign_keys`` on every connection.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Example:
        adapter = AsyncSqliteAdapter("sqlite:///./backoffice.db")
        async with adapter.transaction() as tx:
            await tx.delete("stores", {"id": 3})
        await adapter.close()
    """

    dialect = "sqlite"
    transaction_class = SqliteTransaction

    def __init__(
        self,
        database_url: str,
        foreign_keys: bool = True,
        **engine_kwargs: Any,
    ) -> None:
        engine = create_async_engine(normalize_sqlite_url(database_url), **engine_kwargs)
        self._foreign_keys = foreign_keys

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Stop the driver from emitting BEGIN; SQLAlchemy does it below
            dbapi_connection.isolation_level = None
            if foreign_keys:
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys = ON")
                cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql(conn.get_execution_options().get(_BEGIN_OPTION, "BEGIN"))

        super().__init__(engine)

    def _new_transaction(self, conn: AsyncConnection) -> SqliteTransaction:
        tx = SqliteTransaction(conn, self._jsonb_columns)
        tx.check_foreign_keys = self._foreign_keys
        return tx

    async def _prepare_write(self, conn: AsyncConnection) -> None:
        if self._foreign_keys:
            # Also keeps ON DELETE actions from firing during the rewrite
            await conn.run_sync(_set_foreign_keys, False)
        await conn.execution_options(**{_BEGIN_OPTION: "BEGIN IMMEDIATE"})

    async def _finish_write(self, conn: AsyncConnection) -> None:
        if self._foreign_keys:
            await conn.run_sync(_set_foreign_keys, True)
