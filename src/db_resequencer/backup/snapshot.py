"""Pre-resequence JSON snapshot of the tables a fix rewrites.

``backup_tables`` has the resequencer's ``backup_fn`` signature and can
be passed straight through:

    result = await service.fix_ids("stores", "name", dependents, backup_fn=backup_tables)
    report = validate_backup(result.backup_path, ["stores", "users"])

File layout::

    {
      "metadata": {"created_at": ..., "backup_type": "pre-resequence",
                   "version": "1.1", "tables": [...], "<table>_count": N},
      "<table>": [row, ...]
    }
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from db_resequencer.adapters.base import DatabaseClient

BACKUP_VERSION = "1.1"


def _default_path(table: str) -> Path:
    directory = Path.cwd() / "backups"
    directory.mkdir(exist_ok=True)
    stamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
    return directory / f"backup-{table}-{stamp}.json"


async def backup_tables(
    adapter: DatabaseClient,
    tables: list[str],
    output_path: str | None = None,
    metadata: dict | None = None,
) -> str:
    """Dump every row of *tables*, in order, to one JSON file.

    Args:
        adapter: Source of the rows.
        tables: Sequenced table first, then its dependents.
        output_path: Target file; default is
            ``./backups/backup-<first table>-<timestamp>.json``.
        metadata: Extra keys for the ``metadata`` section.

    Returns:
        The path written.
    """
    path = Path(output_path) if output_path else _default_path(tables[0])

    snapshot: dict[str, Any] = {
        "metadata": {
            "created_at": datetime.now().isoformat(),
            "backup_type": "pre-resequence",
            "version": BACKUP_VERSION,
            "tables": list(tables),
            **(metadata or {}),
        },
    }
    for table in tables:
        rows = await adapter.select(table, columns="*")
        snapshot[table] = rows
        snapshot["metadata"][f"{table}_count"] = len(rows)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot, indent=2, default=str))
    return str(path)


def validate_backup(backup_path: str, tables: list[str]) -> dict:
    """Check a snapshot file before relying on it.

    No database access; the file alone is inspected.

    Returns:
        ``{"valid": bool, "errors": [...], "warnings": [...]}``.  Missing
        metadata fields are warnings; a missing table, a version mismatch
        or a row count that disagrees with ``<table>_count`` are errors.
    """
    errors: list[str] = []
    warnings: list[str] = []

    def _report() -> dict:
        return {"valid": not errors, "errors": errors, "warnings": warnings}

    try:
        snapshot = json.loads(Path(backup_path).read_text())
    except FileNotFoundError:
        errors.append(f"Backup file not found: {backup_path}")
        return _report()
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {e}")
        return _report()

    errors.extend(
        f"Missing required key: {key}"
        for key in ["metadata", *tables]
        if key not in snapshot
    )
    if errors:
        return _report()

    meta = snapshot["metadata"]
    warnings.extend(
        f"Missing metadata field: {field}"
        for field in ("created_at", "backup_type", "version")
        if field not in meta
    )
    if meta.get("version") != BACKUP_VERSION:
        errors.append(
            f"Unsupported backup version '{meta.get('version')}' "
            f"(expected '{BACKUP_VERSION}')"
        )

    for table in tables:
        rows = snapshot[table]
        if not isinstance(rows, list):
            errors.append(f"{table}: expected a list of rows")
            continue
        count = meta.get(f"{table}_count")
        if count is not None and count != len(rows):
            errors.append(f"{table}: metadata count {count} != {len(rows)} rows")

    return _report()
