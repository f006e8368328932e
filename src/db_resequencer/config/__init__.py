"""Configuration management: profiles, sequenced tables, and TOML loading.

Usage:
    >>> from db_resequencer.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_resequencer.config.loader import load_db_config
from db_resequencer.config.models import DatabaseConfig, DatabaseProfile

__all__ = ["load_db_config", "DatabaseConfig", "DatabaseProfile"]
