"""Pydantic models for db.toml configuration.

``DatabaseProfile`` describes one connection, ``DatabaseConfig`` holds all
profiles plus the tables whose primary keys are kept in sequence.
"""

from pydantic import BaseModel, Field

from db_resequencer.resequence.models import SequencedTable


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # postgres, sqlite or supabase
    api_key: str | None = None  # Supabase only


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    tables: dict[str, SequencedTable] = Field(default_factory=dict)
    validate_on_connect: bool = True
