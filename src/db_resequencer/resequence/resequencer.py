"""Resequencer -- renumber a table's primary keys to 1..N by ordering key.

Every step runs inside one transaction obtained from
``DatabaseClient.transaction()``:

1. lock the table and its dependents, suspend foreign key enforcement
2. snapshot all rows in authoritative order and build the plan
3. delete every row
4. reinsert each row with ``pk = rank``
5. rewrite each dependent foreign key column in a single statement
6. restore foreign key enforcement and commit

Any failure rolls the whole transaction back and surfaces as
``ResequenceError`` naming the stage.  The auto-increment counter is
reset after commit; a failure there is only a warning.

Usage:
    from db_resequencer.resequence.models import Dependent
    from db_resequencer.resequence.resequencer import resequence

    result = await resequence(
        adapter,
        "stores",
        "name",
        dependents=[Dependent(table="users", column="store_id")],
    )
    print(result.id_map)  # {5: 1, 10: 2, 15: 3}
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from db_resequencer.errors import CounterResetError, ResequenceError, ResequenceStage
from db_resequencer.resequence.checker import order_clause
from db_resequencer.resequence.counter import SequenceResetStrategy, reset_counter
from db_resequencer.resequence.models import (
    Dependent,
    ResequencePlan,
    ResequenceResult,
    validate_identifier,
)

if TYPE_CHECKING:
    from db_resequencer.adapters.base import DatabaseClient, Transaction

logger = logging.getLogger(__name__)

BackupFn = Callable[["DatabaseClient", list[str]], Awaitable[str]]


@dataclass
class ResequenceProgress:
    """Stage reached by a running resequence, readable from outside.

    Lets a caller that cancels the run (timeout) report where it stopped.
    """

    stage: ResequenceStage = ResequenceStage.SNAPSHOT


# ------------------------------------------------------------------
# Plan construction (pure)
# ------------------------------------------------------------------


def build_plan(rows: list[dict], pk: str) -> ResequencePlan:
    """Map every row's current primary key to its 1-based rank.

    *rows* must already be in authoritative order.

    Example:
        >>> plan = build_plan([{"id": 5}, {"id": 10}, {"id": 15}], "id")
        >>> plan.id_map
        {5: 1, 10: 2, 15: 3}
    """
    id_map = {row[pk]: rank for rank, row in enumerate(rows, start=1)}
    return ResequencePlan(rows=list(rows), id_map=id_map)


def remap_statement(dependent: Dependent, changed: dict[Any, int]) -> tuple[str, dict]:
    """Build one UPDATE that moves every changed foreign key at once.

    A single ``CASE`` statement means ids that trade places (1 <-> 2)
    never pass through each other.

    Example:
        >>> sql, params = remap_statement(Dependent(table="users", column="store_id"), {5: 1})
        >>> sql
        'UPDATE users SET store_id = CASE store_id WHEN :old_0 THEN CAST(:new_0 AS BIGINT) END WHERE store_id IN (:in_0)'
    """
    col = dependent.column
    whens: list[str] = []
    in_list: list[str] = []
    params: dict[str, Any] = {}
    for i, (old_id, new_id) in enumerate(changed.items()):
        # PostgreSQL would type bare THEN parameters as text
        whens.append(f"WHEN :old_{i} THEN CAST(:new_{i} AS BIGINT)")
        in_list.append(f":in_{i}")
        params[f"old_{i}"] = old_id
        params[f"new_{i}"] = new_id
        params[f"in_{i}"] = old_id

    sql = (
        f"UPDATE {dependent.table} SET {col} = CASE {col} {' '.join(whens)} END "
        f"WHERE {col} IN ({', '.join(in_list)})"
    )
    return sql, params


# ------------------------------------------------------------------
# Transaction body
# ------------------------------------------------------------------


async def _apply_plan(
    tx: "Transaction",
    table: str,
    pk: str,
    plan: ResequencePlan,
    dependents: list[Dependent],
    progress: ResequenceProgress,
) -> dict[str, int]:
    """Delete, reinsert and remap inside an open transaction."""
    progress.stage = ResequenceStage.DELETE
    deleted = await tx.delete(table)
    logger.info("%s: deleted %d rows", table, deleted)

    progress.stage = ResequenceStage.REINSERT
    for new_id, row in enumerate(plan.rows, start=1):
        await tx.insert(table, {**row, pk: new_id})
        if row[pk] != new_id:
            logger.debug("%s: id %s -> %d", table, row[pk], new_id)
    logger.info("%s: reinserted %d rows", table, len(plan.rows))

    progress.stage = ResequenceStage.DEPENDENT_UPDATE
    changed = plan.changed
    updated: dict[str, int] = {}
    for dependent in dependents:
        sql, params = remap_statement(dependent, changed)
        updated[dependent.key] = await tx.execute(sql, params)
        logger.info("%s: remapped %d references", dependent.key, updated[dependent.key])

    await tx.restore_foreign_keys()
    return updated


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------


async def resequence(
    adapter: "DatabaseClient",
    table: str,
    ordering_key: str,
    dependents: list[Dependent] | None = None,
    pk: str = "id",
    sequence_reset: SequenceResetStrategy | None = None,
    backup_fn: BackupFn | None = None,
    dry_run: bool = False,
    progress: ResequenceProgress | None = None,
) -> ResequenceResult:
    """Renumber *table*'s primary keys to 1..N ordered by *ordering_key*.

    A quick read outside any transaction short-circuits empty and already
    contiguous tables without opening one.  Otherwise the row order is
    re-derived inside the transaction under lock, so a stale check result
    is never trusted.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
            Must support ``transaction()``.
        table: Table to renumber.
        ordering_key: Column defining canonical order (ties by *pk*).
        dependents: Foreign key columns referencing ``table.pk``.  Every
            one is rewritten before commit.
        pk: Integer surrogate primary key column.
        sequence_reset: Counter reset mechanism.  Defaults to the one
            matching ``adapter.dialect``.
        backup_fn: Optional async callback run before the transaction.
            Signature: ``backup_fn(adapter, tables) -> backup_path``.
        dry_run: If True, compute the plan and return without writing.
        progress: Optional tracker updated with the stage in progress.

    Returns:
        ``ResequenceResult`` describing the run.

    Raises:
        ValueError: If a name is not a plain SQL identifier.
        ResequenceError: If any stage fails; nothing was changed.
        RuntimeError: If the adapter does not support transactions.

    Example:
        result = await resequence(adapter, "stores", "name", dependents)
        if result.warning:
            print(result.warning)
    """
    dependents = list(dependents or [])
    validate_identifier(table)
    validate_identifier(ordering_key)
    validate_identifier(pk)
    if progress is None:
        progress = ResequenceProgress()

    result = ResequenceResult(table=table, dry_run=dry_run)
    order_by = order_clause(ordering_key, pk)
    columns = pk if ordering_key == pk else f"{pk}, {ordering_key}"

    # Pre-check outside the transaction
    progress.stage = ResequenceStage.SNAPSHOT
    try:
        keys = await adapter.select(table, columns, order_by=order_by)
    except Exception as e:
        raise ResequenceError(ResequenceStage.SNAPSHOT, table, str(e)) from e

    preview = build_plan(keys, pk)
    result.total_rows = len(keys)
    if not preview.has_changes:
        logger.info("%s: no rows to renumber (%d rows)", table, len(keys))
        result.success = True
        result.skipped = True
        return result

    if dry_run:
        result.success = True
        result.rows_renumbered = len(preview.changed)
        result.id_map = preview.changed
        return result

    if backup_fn is not None:
        tables = [table] + [d.table for d in dependents]
        try:
            result.backup_path = await backup_fn(adapter, list(dict.fromkeys(tables)))
        except Exception as e:
            raise ResequenceError(
                ResequenceStage.SNAPSHOT, table, f"backup failed: {e}"
            ) from e
        logger.info("%s: backup written to %s", table, result.backup_path)

    plan: ResequencePlan | None = None
    try:
        async with adapter.transaction() as tx:
            await tx.lock_tables([table] + [d.table for d in dependents])
            await tx.suspend_foreign_keys()

            rows = await tx.select(table, "*", order_by=order_by)
            plan = build_plan(rows, pk)
            if plan.has_changes:
                result.dependents_updated = await _apply_plan(
                    tx, table, pk, plan, dependents, progress
                )
            progress.stage = ResequenceStage.COMMIT
    except NotImplementedError as e:
        raise RuntimeError("Transactions not supported for this adapter type") from e
    except asyncio.CancelledError:
        logger.warning(
            "%s: resequencing cancelled at stage %s, rolled back",
            table, progress.stage.value,
        )
        raise
    except Exception as e:
        logger.error(
            "%s: resequencing failed at stage %s, rolled back: %s",
            table, progress.stage.value, e,
        )
        raise ResequenceError(progress.stage, table, str(e)) from e

    result.success = True
    result.total_rows = len(plan.rows)
    if not plan.has_changes:
        # Someone else fixed it between the pre-check and the lock
        logger.info("%s: already contiguous under lock, nothing written", table)
        result.skipped = True
        return result

    result.id_map = plan.changed
    result.rows_renumbered = len(result.id_map)
    logger.info("%s: renumbered %d rows", table, result.rows_renumbered)

    try:
        result.counter_reset = await reset_counter(
            adapter, table, plan.max_id, pk=pk, strategy=sequence_reset
        )
    except CounterResetError as e:
        logger.warning("%s: %s; verify the next generated id", table, e)
        result.warning = (
            f"{e}. The next auto-generated id may collide and should be verified."
        )

    return result
