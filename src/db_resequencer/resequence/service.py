"""IdIntegrityService -- check and fix entry points bound to one adapter.

Wraps ``check_integrity`` and ``resequence`` with:

- a per-table lock so two fixes of the same table in one process never
  interleave (different tables may run in parallel)
- an optional timeout; an expired fix is cancelled, its transaction
  rolls back, and ``ResequenceError`` names the stage it reached

Usage:
    from db_resequencer.resequence.service import IdIntegrityService

    service = IdIntegrityService(adapter)
    report = await service.check_integrity("stores", "name")
    if not report.is_integrity_ok:
        result = await service.fix_ids("stores", "name", dependents, timeout=30)
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from db_resequencer.errors import ResequenceError, StorageError
from db_resequencer.resequence.checker import check_integrity
from db_resequencer.resequence.counter import SequenceResetStrategy
from db_resequencer.resequence.models import (
    Dependent,
    IntegrityReport,
    ResequenceResult,
    SequencedTable,
)
from db_resequencer.resequence.resequencer import (
    BackupFn,
    ResequenceProgress,
    resequence,
)

if TYPE_CHECKING:
    from db_resequencer.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)


class IdIntegrityService:
    """Integrity checks and resequencing against one ``DatabaseClient``.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        sequence_reset: Counter reset mechanism.  Defaults to the one
            matching ``adapter.dialect``.
    """

    def __init__(
        self,
        adapter: "DatabaseClient",
        sequence_reset: SequenceResetStrategy | None = None,
    ) -> None:
        self._adapter = adapter
        self._sequence_reset = sequence_reset
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, table: str) -> asyncio.Lock:
        lock = self._locks.get(table)
        if lock is None:
            lock = self._locks[table] = asyncio.Lock()
        return lock

    async def check_integrity(
        self,
        table: str,
        ordering_key: str,
        pk: str = "id",
        timeout: float | None = None,
    ) -> IntegrityReport:
        """Check *table* without taking the fix lock.

        Raises:
            StorageError: If the read fails or does not finish in *timeout*
                seconds.
        """
        try:
            return await asyncio.wait_for(
                check_integrity(self._adapter, table, ordering_key, pk),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageError(
                f"Integrity check of '{table}' timed out after {timeout}s"
            ) from e

    async def check_tables(
        self, tables: list[SequencedTable]
    ) -> dict[str, IntegrityReport]:
        """Check several configured tables, one after another."""
        reports: dict[str, IntegrityReport] = {}
        for seq_table in tables:
            reports[seq_table.name] = await self.check_integrity(
                seq_table.name, seq_table.ordering_key, seq_table.pk
            )
        return reports

    async def fix_ids(
        self,
        table: str,
        ordering_key: str,
        dependents: list[Dependent] | None = None,
        pk: str = "id",
        timeout: float | None = None,
        backup_fn: BackupFn | None = None,
        dry_run: bool = False,
    ) -> ResequenceResult:
        """Resequence *table* under its per-table lock.

        Time spent waiting for the lock does not count toward *timeout*.

        Raises:
            ResequenceError: If a stage fails or *timeout* expires.  In both
                cases the transaction rolled back and nothing changed.
            RuntimeError: If the adapter does not support transactions.
        """
        async with self._lock_for(table):
            progress = ResequenceProgress()
            try:
                return await asyncio.wait_for(
                    resequence(
                        self._adapter,
                        table,
                        ordering_key,
                        dependents=dependents,
                        pk=pk,
                        sequence_reset=self._sequence_reset,
                        backup_fn=backup_fn,
                        dry_run=dry_run,
                        progress=progress,
                    ),
                    timeout,
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    "%s: timed out after %ss at stage %s",
                    table, timeout, progress.stage.value,
                )
                raise ResequenceError(
                    progress.stage, table, f"timed out after {timeout}s"
                ) from e

    async def fix_table(
        self,
        seq_table: SequencedTable,
        timeout: float | None = None,
        backup_fn: BackupFn | None = None,
        dry_run: bool = False,
    ) -> ResequenceResult:
        """``fix_ids`` for a configured ``SequencedTable``."""
        return await self.fix_ids(
            seq_table.name,
            seq_table.ordering_key,
            dependents=seq_table.dependents,
            pk=seq_table.pk,
            timeout=timeout,
            backup_fn=backup_fn,
            dry_run=dry_run,
        )
