"""Database adapters package.

Provides the ``DatabaseClient`` and ``Transaction`` Protocols and concrete
async adapter implementations for PostgreSQL, SQLite and (optionally)
Supabase.

``AsyncSupabaseAdapter`` is only available when the ``supabase`` extra
is installed.  A missing ``supabase`` dependency does not prevent
importing the rest of the package.

Usage:
    from db_resequencer.adapters import AsyncPostgresAdapter, AsyncSqliteAdapter

    # With supabase extra installed:
    from db_resequencer.adapters import AsyncSupabaseAdapter
"""

from db_resequencer.adapters.base import DatabaseClient, Transaction
from db_resequencer.adapters.postgres import AsyncPostgresAdapter
from db_resequencer.adapters.sqlite import AsyncSqliteAdapter

__all__ = [
    "DatabaseClient",
    "Transaction",
    "AsyncPostgresAdapter",
    "AsyncSqliteAdapter",
]

try:
    from db_resequencer.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
