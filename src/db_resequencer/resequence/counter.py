"""Auto-increment counter reset after resequencing.

After renumbering, the backend's counter may still point past the old
maximum id.  ``reset_counter`` sets it to the new maximum so the next
natural insert receives ``max_id + 1``.

The mechanism differs per backend and is injected as a
``SequenceResetStrategy``:

- ``PostgresSequenceReset``: ``setval()`` on the column's owned sequence.
- ``SqliteSequenceReset``: the table's row in ``sqlite_sequence``
  (AUTOINCREMENT tables only; rowid tables recompute on their own).
- ``NoopSequenceReset``: backends that manage ids themselves.

Usage:
    from db_resequencer.resequence.counter import reset_counter

    applied = await reset_counter(adapter, "stores", max_assigned_id=3)
"""

import logging
from typing import TYPE_CHECKING, Protocol

from db_resequencer.errors import CounterResetError
from db_resequencer.resequence.models import validate_identifier

if TYPE_CHECKING:
    from db_resequencer.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)


class SequenceResetStrategy(Protocol):
    """Backend-specific way to realign an auto-increment counter."""

    async def reset(
        self, adapter: "DatabaseClient", table: str, max_id: int, pk: str
    ) -> bool:
        """Set the counter so the next generated id is ``max_id + 1``.

        Returns:
            True if a counter was changed, False if there was none to change.
        """
        ...


class PostgresSequenceReset:
    """Reset the sequence owned by ``table.pk`` (SERIAL / IDENTITY)."""

    async def reset(
        self, adapter: "DatabaseClient", table: str, max_id: int, pk: str
    ) -> bool:
        if max_id > 0:
            sql = "SELECT setval(pg_get_serial_sequence(:table, :pk), :value, true)"
            params = {"table": table, "pk": pk, "value": max_id}
        else:
            # Empty table: next nextval() returns 1
            sql = "SELECT setval(pg_get_serial_sequence(:table, :pk), 1, false)"
            params = {"table": table, "pk": pk}
        await adapter.execute(sql, params)
        return True


class SqliteSequenceReset:
    """Reset ``sqlite_sequence`` for AUTOINCREMENT tables."""

    async def reset(
        self, adapter: "DatabaseClient", table: str, max_id: int, pk: str
    ) -> bool:
        rows = await adapter.select(
            "sqlite_master",
            "name",
            filters={"type": "table", "name": "sqlite_sequence"},
        )
        if not rows:
            # No AUTOINCREMENT table in this database; rowids follow max(id)
            return False
        if not await adapter.select("sqlite_sequence", "seq", filters={"name": table}):
            # Not an AUTOINCREMENT table
            return False
        await adapter.execute(
            "UPDATE sqlite_sequence SET seq = :seq WHERE name = :table",
            {"seq": max_id, "table": table},
        )
        return True


class NoopSequenceReset:
    """For backends whose ids are managed externally."""

    async def reset(
        self, adapter: "DatabaseClient", table: str, max_id: int, pk: str
    ) -> bool:
        return False


_STRATEGIES: dict[str, type] = {
    "postgresql": PostgresSequenceReset,
    "sqlite": SqliteSequenceReset,
}


def sequence_reset_for(adapter: "DatabaseClient") -> SequenceResetStrategy:
    """Pick the reset strategy matching ``adapter.dialect``.

    Unknown dialects (including ``"supabase"``) get ``NoopSequenceReset``.
    """
    dialect = getattr(adapter, "dialect", "")
    return _STRATEGIES.get(dialect, NoopSequenceReset)()


async def reset_counter(
    adapter: "DatabaseClient",
    table: str,
    max_assigned_id: int,
    pk: str = "id",
    strategy: SequenceResetStrategy | None = None,
) -> bool:
    """Realign *table*'s auto-increment counter to *max_assigned_id*.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        table: Table whose counter to reset.
        max_assigned_id: Highest primary key now in the table.
        pk: Primary key column.
        strategy: Reset mechanism.  Defaults to ``sequence_reset_for(adapter)``.

    Returns:
        True if a counter was changed, False if the backend had none.

    Raises:
        CounterResetError: If the reset statement fails.
    """
    validate_identifier(table)
    validate_identifier(pk)
    if strategy is None:
        strategy = sequence_reset_for(adapter)

    try:
        applied = await strategy.reset(adapter, table, max_assigned_id, pk)
    except Exception as e:
        raise CounterResetError(
            f"Failed to reset counter for '{table}' to {max_assigned_id}: {e}"
        ) from e

    if applied:
        logger.info("%s: counter reset to %d", table, max_assigned_id)
    else:
        logger.debug("%s: no counter to reset", table)
    return applied
