"""Live schema introspection: table columns and foreign key dependents.

Two introspectors share one async interface:

- ``SchemaIntrospector``: PostgreSQL via ``information_schema`` (psycopg
  ``AsyncConnection``).
- ``SqliteIntrospector``: SQLite via ``sqlite_master`` and ``PRAGMA``
  (aiosqlite).

``introspector_for(url)`` picks one from the URL scheme.

Usage:
    from db_resequencer.schema.introspector import introspector_for

    async with introspector_for(database_url) as introspector:
        columns = await introspector.get_column_names()
        dependents = await introspector.get_dependents("stores")
"""

import aiosqlite
import psycopg
from psycopg import AsyncConnection
from sqlalchemy.engine import make_url

from db_resequencer.resequence.models import Dependent


def _to_psycopg_url(database_url: str) -> str:
    # psycopg takes plain libpq URLs, without a SQLAlchemy driver suffix
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql://" + database_url[len(prefix):]
    return database_url


class SchemaIntrospector:
    """Introspects a PostgreSQL schema.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            columns = await introspector.get_column_names()
            dependents = await introspector.get_dependents("stores", "id")
    """

    # Tables excluded when the caller passes no ``excluded_tables``
    EXCLUDED_TABLES_DEFAULT = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(
        self,
        database_url: str,
        excluded_tables: set[str] | None = None,
        connect_timeout: int = 10,
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            excluded_tables: Table names to skip (default:
                ``EXCLUDED_TABLES_DEFAULT``)
            connect_timeout: Connection timeout in seconds
        """
        self._database_url = _to_psycopg_url(database_url)
        self._excluded_tables = (
            set(self.EXCLUDED_TABLES_DEFAULT) if excluded_tables is None else excluded_tables
        )
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Open the connection."""
        self._conn = await psycopg.AsyncConnection.connect(
            self._database_url, connect_timeout=self._connect_timeout
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    async def test_connection(self) -> bool:
        """Run ``SELECT 1``; True when the database answers."""
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute("SELECT 1")
            row = await cur.fetchone()
            return row is not None and row[0] == 1

    async def get_column_names(self, schema_name: str = "public") -> dict[str, set[str]]:
        """Get column names for all tables.

        Returns:
            Dict mapping table name to set of column names
        """
        conn = self._require_connection()
        result: dict[str, set[str]] = {}

        for table_name in await self._get_tables(schema_name):
            if table_name in self._excluded_tables:
                continue

            query = """
                SELECT column_name
                FROM information_schema.columns
                WHERE table_schema = %s
                  AND table_name = %s
            """
            async with conn.cursor() as cur:
                await cur.execute(query, (schema_name, table_name))
                result[table_name] = {row[0] for row in await cur.fetchall()}

        return result

    async def get_dependents(
        self, table: str, pk: str = "id", schema_name: str = "public"
    ) -> list[Dependent]:
        """Find every foreign key column referencing ``table.pk``.

        Example:
            >>> await introspector.get_dependents("stores")
            [Dependent(table='sales', column='store_id'), Dependent(table='users', column='store_id')]
        """
        conn = self._require_connection()
        query = """
            SELECT DISTINCT kcu.table_name, kcu.column_name
            FROM information_schema.referential_constraints rc
            JOIN information_schema.key_column_usage kcu
                ON rc.constraint_name = kcu.constraint_name
                AND rc.constraint_schema = kcu.constraint_schema
            JOIN information_schema.key_column_usage pku
                ON rc.unique_constraint_name = pku.constraint_name
                AND rc.unique_constraint_schema = pku.constraint_schema
                AND pku.ordinal_position = kcu.position_in_unique_constraint
            WHERE pku.table_schema = %s
              AND pku.table_name = %s
              AND pku.column_name = %s
            ORDER BY kcu.table_name, kcu.column_name
        """
        async with conn.cursor() as cur:
            await cur.execute(query, (schema_name, table, pk))
            return [
                Dependent(table=row[0], column=row[1])
                for row in await cur.fetchall()
                if row[0] not in self._excluded_tables
            ]

    async def _get_tables(self, schema_name: str) -> list[str]:
        """Get all table names in schema."""
        conn = self._require_connection()
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        async with conn.cursor() as cur:
            await cur.execute(query, (schema_name,))
            return [row[0] for row in await cur.fetchall()]


class SqliteIntrospector:
    """Introspects an SQLite database file.

    Same interface as ``SchemaIntrospector``; ``schema_name`` arguments are
    accepted and ignored.
    """

    EXCLUDED_TABLES_DEFAULT: set[str] = set()

    def __init__(
        self,
        database_url: str,
        excluded_tables: set[str] | None = None,
        connect_timeout: int = 10,
    ):
        self._database = make_url(database_url).database or ":memory:"
        self._excluded_tables = (
            set(self.EXCLUDED_TABLES_DEFAULT) if excluded_tables is None else excluded_tables
        )
        self._connect_timeout = connect_timeout
        self._conn: aiosqlite.Connection | None = None

    async def __aenter__(self) -> "SqliteIntrospector":
        self._conn = await aiosqlite.connect(self._database, timeout=self._connect_timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    async def test_connection(self) -> bool:
        conn = self._require_connection()
        async with conn.execute("SELECT 1") as cur:
            row = await cur.fetchone()
            return row is not None and row[0] == 1

    async def get_column_names(self, schema_name: str = "main") -> dict[str, set[str]]:
        conn = self._require_connection()
        result: dict[str, set[str]] = {}
        for table_name in await self._get_tables():
            if table_name in self._excluded_tables:
                continue
            # PRAGMA takes no bound parameters; names come from sqlite_master
            async with conn.execute(f'PRAGMA table_info("{table_name}")') as cur:
                result[table_name] = {row[1] for row in await cur.fetchall()}
        return result

    async def get_dependents(
        self, table: str, pk: str = "id", schema_name: str = "main"
    ) -> list[Dependent]:
        conn = self._require_connection()
        dependents: list[Dependent] = []
        for table_name in await self._get_tables():
            if table_name in self._excluded_tables:
                continue
            async with conn.execute(f'PRAGMA foreign_key_list("{table_name}")') as cur:
                for row in await cur.fetchall():
                    # (id, seq, table, from, to, on_update, on_delete, match)
                    ref_table, from_col, to_col = row[2], row[3], row[4]
                    # A bare REFERENCES t points at t's primary key
                    if ref_table == table and (to_col or pk) == pk:
                        dependent = Dependent(table=table_name, column=from_col)
                        if dependent not in dependents:
                            dependents.append(dependent)
        return dependents

    async def _get_tables(self) -> list[str]:
        conn = self._require_connection()
        query = """
            SELECT name FROM sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """
        async with conn.execute(query) as cur:
            return [row[0] for row in await cur.fetchall()]


def introspector_for(
    database_url: str,
    excluded_tables: set[str] | None = None,
    connect_timeout: int = 10,
) -> SchemaIntrospector | SqliteIntrospector:
    """Return the introspector matching *database_url*'s scheme.

    Example:
        >>> type(introspector_for("sqlite:///./app.db")).__name__
        'SqliteIntrospector'
    """
    if database_url.startswith("sqlite"):
        return SqliteIntrospector(database_url, excluded_tables, connect_timeout)
    return SchemaIntrospector(database_url, excluded_tables, connect_timeout)
