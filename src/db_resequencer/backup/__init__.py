"""Pre-resequence backups as JSON files.

Usage:
    from db_resequencer.backup import backup_tables, validate_backup
"""

from db_resequencer.backup.snapshot import backup_tables, validate_backup

__all__ = ["backup_tables", "validate_backup"]
