"""Load db.toml into ``DatabaseConfig``."""

import tomllib
from pathlib import Path

from db_resequencer.config.models import DatabaseConfig, DatabaseProfile
from db_resequencer.resequence.models import Dependent, SequencedTable


def _parse_dependent(entry: dict | str) -> Dependent:
    # Accepts {table = "users", column = "store_id"} or "users.store_id"
    if isinstance(entry, str):
        return Dependent.parse(entry)
    return Dependent(**entry)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ``db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with all profiles and sequenced tables

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example:
        >>> config = load_db_config(Path("db.toml"))
        >>> config.tables["stores"].ordering_key
        'name'
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Copy db.toml.example to db.toml and configure your profiles."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    # Parse sequenced tables
    tables = {}
    for name, table_data in data.get("tables", {}).items():
        table_data = dict(table_data)
        dependents = [
            _parse_dependent(d) for d in table_data.pop("dependents", [])
        ]
        tables[name] = SequencedTable(name=name, dependents=dependents, **table_data)

    schema_settings = data.get("schema", {})

    return DatabaseConfig(
        profiles=profiles,
        tables=tables,
        validate_on_connect=schema_settings.get("validate_on_connect", True),
    )
