"""Database adapter factory.

Supports two configuration modes:
1. Profile mode (db.toml + .db-profile): Multi-database profiles with schema validation
2. Legacy mode ({prefix}DATABASE_URL env var): Single database connection

The adapter class follows the profile's ``provider`` (``postgres``,
``sqlite``, ``supabase``); a bare URL picks it from the scheme.
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from db_resequencer.adapters import AsyncPostgresAdapter, AsyncSqliteAdapter, DatabaseClient
from db_resequencer.config.loader import load_db_config
from db_resequencer.config.models import DatabaseConfig, DatabaseProfile
from db_resequencer.schema.comparator import (
    expected_columns_for,
    find_undeclared_dependents,
    validate_schema,
)
from db_resequencer.schema.introspector import introspector_for
from db_resequencer.schema.models import ConnectionResult

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after successful schema validation.
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. {env_prefix}DB_PROFILE env var (for initial connect or CI/CD)
    2. .db-profile file (validated profile from previous connect)
    3. Raise ProfileNotFoundError

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}DB_PROFILE=<name> db-resequencer connect\n"
        "Or: db-resequencer connect --profile <name>"
    )


def get_active_profile(
    env_prefix: str = "", config: DatabaseConfig | None = None
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile configured
        KeyError: If profile not found in db.toml
    """
    profile_name = get_active_profile_name(env_prefix)
    if config is None:
        config = load_db_config()

    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


# ============================================================================
# URL Resolution and Adapter Construction
# ============================================================================


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    The password is URL-quoted so that ``@`` or ``/`` cannot break the URL.
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def provider_for_url(url: str) -> str:
    """Guess the provider from a URL scheme.

    Example:
        >>> provider_for_url("sqlite:///./backoffice.db")
        'sqlite'
    """
    if url.startswith("sqlite"):
        return "sqlite"
    return "postgres"


def _build_adapter(
    provider: str,
    url: str,
    api_key: str | None = None,
    jsonb_columns: list[str] | None = None,
) -> DatabaseClient:
    if provider == "sqlite":
        return AsyncSqliteAdapter(database_url=url)
    if provider == "supabase":
        try:
            from db_resequencer.adapters.supabase import AsyncSupabaseAdapter
        except ImportError as e:
            raise ImportError(
                "Supabase profiles need the supabase extra: "
                "pip install 'db-resequencer[supabase]'"
            ) from e
        if not api_key:
            raise ValueError("Supabase profile requires api_key or SUPABASE_KEY")
        return AsyncSupabaseAdapter(url=url, key=api_key)
    return AsyncPostgresAdapter(database_url=url, jsonb_columns=jsonb_columns)


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    jsonb_columns: list[str] | None = None,
) -> DatabaseClient:
    """Create a database adapter.  No caching: each call builds a new one.

    Resolution order:
    1. *database_url* (adapter chosen by URL scheme)
    2. *profile_name*, or the active profile (env var / lock file)
    3. Legacy mode: ``{env_prefix}DATABASE_URL`` env var

    Args:
        profile_name: Profile name from db.toml.
        env_prefix: Prefix for ``DB_PROFILE``, ``DATABASE_URL`` and
            ``SUPABASE_KEY`` env vars (e.g. ``"APP_"``).
        database_url: Explicit connection URL; bypasses profiles.
        jsonb_columns: JSONB column names for the PostgreSQL adapter.

    Raises:
        ProfileNotFoundError: If no database configuration found
        KeyError: If the named profile is not in db.toml

    Example:
        >>> adapter = await get_adapter(profile_name="local")
        >>> rows = await adapter.select("stores", "id, name")
    """
    if database_url:
        return _build_adapter(
            provider_for_url(database_url), database_url, jsonb_columns=jsonb_columns
        )

    config_path = Path.cwd() / "db.toml"
    if profile_name is not None or config_path.exists():
        try:
            if profile_name is None:
                profile_name, profile = get_active_profile(env_prefix)
            else:
                config = load_db_config()
                if profile_name not in config.profiles:
                    raise KeyError(
                        f"Profile '{profile_name}' not found in db.toml.\n"
                        f"Available profiles: {', '.join(config.profiles.keys())}"
                    )
                profile = config.profiles[profile_name]
        except ProfileNotFoundError:
            # Fall through to legacy mode
            pass
        else:
            logger.debug("Using profile '%s' (%s)", profile_name, profile.provider)
            api_key = profile.api_key or os.environ.get(f"{env_prefix}SUPABASE_KEY")
            return _build_adapter(
                profile.provider, resolve_url(profile), api_key, jsonb_columns
            )

    legacy_url = os.environ.get(f"{env_prefix}DATABASE_URL")
    if legacy_url:
        return _build_adapter(
            provider_for_url(legacy_url), legacy_url, jsonb_columns=jsonb_columns
        )

    raise ProfileNotFoundError(
        "No database configuration found.\n"
        "Either:\n"
        f"  1. Create db.toml and run: {env_prefix}DB_PROFILE=<name> db-resequencer connect\n"
        f"  2. Set {env_prefix}DATABASE_URL"
    )


# ============================================================================
# Connection and Validation
# ============================================================================


async def connect_and_validate(
    profile_name: str | None = None,
    expected_columns: dict[str, set[str]] | None = None,
    env_prefix: str = "",
    validate_only: bool = False,
) -> ConnectionResult:
    """Connect to database and validate schema.

    Call this once to validate and persist the profile selection.
    Subsequent ``get_adapter()`` calls use the validated profile.

    Args:
        profile_name: Profile name from db.toml.  If None, uses
            ``{env_prefix}DB_PROFILE`` or the existing .db-profile lock file.
        expected_columns: Columns to require.  Defaults to those derived
            from the ``[tables]`` section of db.toml.
        env_prefix: Prefix for the profile env var.
        validate_only: If True, only validate without writing the lock file.

    Returns:
        ConnectionResult with success status and validation report

    Example:
        >>> result = await connect_and_validate("local")
        >>> if result.success:
        ...     print(f"Connected to {result.profile_name}")
    """
    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix)
        except ProfileNotFoundError as e:
            return ConnectionResult(success=False, error=str(e))

    try:
        config = load_db_config()
    except (FileNotFoundError, ValueError) as e:
        return ConnectionResult(success=False, error=str(e))

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )
    profile = config.profiles[profile_name]

    if profile.provider == "supabase":
        # No catalog access through the REST API; trust the profile
        if not validate_only:
            write_profile_lock(profile_name)
        return ConnectionResult(success=True, profile_name=profile_name)

    if expected_columns is None:
        expected_columns = expected_columns_for(config.tables.values())

    url = resolve_url(profile)
    undeclared: list[str] = []
    try:
        async with introspector_for(url) as introspector:
            actual_columns = await introspector.get_column_names()
            for seq_table in config.tables.values():
                if seq_table.name not in actual_columns:
                    continue
                discovered = await introspector.get_dependents(seq_table.name, seq_table.pk)
                undeclared.extend(find_undeclared_dependents(seq_table, discovered))
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )

    validation = validate_schema(actual_columns, expected_columns)
    validation.undeclared_dependents = undeclared
    for key in undeclared:
        logger.warning("Foreign key %s is not listed as a dependent", key)

    if not validation.valid:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            schema_valid=False,
            schema_report=validation,
            error=f"Schema validation failed: {validation.error_count} errors",
        )

    if not validate_only:
        write_profile_lock(profile_name)

    return ConnectionResult(
        success=True,
        profile_name=profile_name,
        schema_valid=True,
        schema_report=validation,
    )
