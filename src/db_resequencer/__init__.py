"""db-resequencer: keep integer primary keys contiguous by a canonical order.

Checks whether a table's primary keys run 1..N when rows are ordered by an
ordering key, and atomically renumbers them (rewriting every dependent
foreign key) when they do not.  Works over async PostgreSQL and SQLite
adapters, with multi-profile configuration and a CLI.

Usage:
    from db_resequencer import IdIntegrityService, Dependent, get_adapter

    adapter = await get_adapter(profile_name="local")
    service = IdIntegrityService(adapter)
    report = await service.check_integrity("stores", "name")
    if not report.is_integrity_ok:
        await service.fix_ids(
            "stores", "name", [Dependent(table="users", column="store_id")]
        )
"""

__version__ = "0.1.0"

# Adapters
from db_resequencer.adapters.base import DatabaseClient, Transaction
from db_resequencer.adapters.postgres import AsyncPostgresAdapter
from db_resequencer.adapters.sqlite import AsyncSqliteAdapter

# Config
from db_resequencer.config.loader import load_db_config
from db_resequencer.config.models import DatabaseConfig, DatabaseProfile

# Errors
from db_resequencer.errors import (
    CounterResetError,
    ResequenceError,
    ResequenceStage,
    StorageError,
)

# Factory
from db_resequencer.factory import (
    ProfileNotFoundError,
    connect_and_validate,
    get_adapter,
    resolve_url,
)

# Integrity checks and resequencing
from db_resequencer.resequence import (
    Dependent,
    IdIntegrityService,
    IntegrityIssue,
    IntegrityReport,
    ResequenceResult,
    SequencedTable,
    check_integrity,
    resequence,
    reset_counter,
)

# Schema (comparator)
from db_resequencer.schema.comparator import validate_schema

__all__ = [
    # Adapters
    "DatabaseClient",
    "Transaction",
    "AsyncPostgresAdapter",
    "AsyncSqliteAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "StorageError",
    "ResequenceError",
    "ResequenceStage",
    "CounterResetError",
    # Factory
    "get_adapter",
    "connect_and_validate",
    "ProfileNotFoundError",
    "resolve_url",
    # Integrity checks and resequencing
    "IdIntegrityService",
    "check_integrity",
    "resequence",
    "reset_counter",
    "Dependent",
    "SequencedTable",
    "IntegrityIssue",
    "IntegrityReport",
    "ResequenceResult",
    # Schema
    "validate_schema",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from db_resequencer.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
