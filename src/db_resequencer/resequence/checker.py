"""Integrity checker -- are a table's primary keys 1..N by ordering key?

Read-only.  Takes no locks beyond the backend's consistent read.

Usage:
    from db_resequencer.resequence.checker import check_integrity

    report = await check_integrity(adapter, "stores", "name")
    if not report.is_integrity_ok:
        print(report.format_report())
"""

import logging
from typing import TYPE_CHECKING

from db_resequencer.errors import StorageError
from db_resequencer.resequence.models import (
    IntegrityIssue,
    IntegrityReport,
    validate_identifier,
)

if TYPE_CHECKING:
    from db_resequencer.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)


def order_clause(ordering_key: str, pk: str) -> str:
    """ORDER BY columns: the ordering key, ties broken by primary key."""
    if ordering_key == pk:
        return pk
    return f"{ordering_key}, {pk}"


def find_issues(rows: list[dict], ordering_key: str, pk: str) -> list[IntegrityIssue]:
    """Compare each row's primary key with its 1-based rank.

    Pure logic -- *rows* must already be in authoritative order.

    Example:
        >>> rows = [{"id": 5, "name": "A"}, {"id": 2, "name": "B"}]
        >>> [i.expected_id for i in find_issues(rows, "name", "id")]
        [1]
    """
    issues: list[IntegrityIssue] = []
    for expected_id, row in enumerate(rows, start=1):
        if row[pk] != expected_id:
            issues.append(
                IntegrityIssue(
                    current_id=row[pk],
                    expected_id=expected_id,
                    ordering_value=row.get(ordering_key),
                )
            )
    return issues


async def check_integrity(
    adapter: "DatabaseClient",
    table: str,
    ordering_key: str,
    pk: str = "id",
) -> IntegrityReport:
    """Check whether *table*'s primary keys are contiguous under *ordering_key*.

    Reads ``pk`` and ``ordering_key`` for every row ordered by
    ``ordering_key`` (ties by ``pk``) and reports each row whose key is
    not its 1-based rank.  An empty table is vacuously fine.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        table: Table to check.
        ordering_key: Column defining canonical order (e.g. ``"name"``).
        pk: Integer surrogate primary key column.

    Returns:
        ``IntegrityReport`` with ``total_rows`` and ordered ``issues``.

    Raises:
        ValueError: If a name is not a plain SQL identifier.
        StorageError: If the read fails (connection lost, table missing).

    Example:
        report = await check_integrity(adapter, "stores", "name")
        # stores: 3 of 3 rows out of sequence (ordered by 'name'): ...
    """
    validate_identifier(table)
    validate_identifier(ordering_key)
    validate_identifier(pk)

    columns = pk if ordering_key == pk else f"{pk}, {ordering_key}"
    try:
        rows = await adapter.select(
            table, columns, order_by=order_clause(ordering_key, pk)
        )
    except Exception as e:
        raise StorageError(f"Failed to read '{table}': {e}") from e

    report = IntegrityReport(
        table=table,
        ordering_key=ordering_key,
        total_rows=len(rows),
        issues=find_issues(rows, ordering_key, pk),
    )

    if report.is_integrity_ok:
        logger.info("%s: integrity OK (%d rows)", table, report.total_rows)
    else:
        logger.info(
            "%s: %d of %d rows out of sequence",
            table, len(report.issues), report.total_rows,
        )
        for issue in report.issues:
            logger.debug(
                "%s: id %s expected %d (%s)",
                table, issue.current_id, issue.expected_id, issue.ordering_value,
            )

    return report
