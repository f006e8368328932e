"""Models for integrity checks and resequencing.

- Table description: ``Dependent``, ``SequencedTable``
- Check result: ``IntegrityIssue``, ``IntegrityReport``
- Plan (pure data, no I/O): ``ResequencePlan``
- Run result: ``ResequenceResult``

Usage:
    from db_resequencer.resequence.models import Dependent, SequencedTable

    stores = SequencedTable(
        name="stores",
        ordering_key="name",
        dependents=[
            Dependent(table="users", column="store_id"),
            Dependent(table="sales", column="store_id"),
        ],
    )
"""

import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: str) -> str:
    """Return *name* if it is a plain SQL identifier.

    Table and column names are interpolated into SQL text, so anything
    beyond letters, digits and underscores is rejected.

    Raises:
        ValueError: If *name* is not a plain identifier.

    Example:
        >>> validate_identifier("store_id")
        'store_id'
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


# ============================================================================
# Table description
# ============================================================================


class Dependent(BaseModel):
    """A foreign key column referencing a sequenced table's primary key."""

    table: str
    column: str

    @field_validator("table", "column")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        return validate_identifier(value)

    @property
    def key(self) -> str:
        """``"table.column"`` label used in results and reports."""
        return f"{self.table}.{self.column}"

    @classmethod
    def parse(cls, value: str) -> "Dependent":
        """Parse a ``"table.column"`` string.

        Example:
            >>> Dependent.parse("users.store_id").column
            'store_id'
        """
        table, sep, column = value.strip().partition(".")
        if not sep:
            raise ValueError(f"Dependent must be 'table.column', got {value!r}")
        return cls(table=table, column=column)


class SequencedTable(BaseModel):
    """A table whose integer primary key should run 1..N by ``ordering_key``."""

    name: str
    ordering_key: str
    pk: str = "id"
    dependents: list[Dependent] = Field(default_factory=list)

    @field_validator("name", "ordering_key", "pk")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        return validate_identifier(value)


# ============================================================================
# Integrity report
# ============================================================================


class IntegrityIssue(BaseModel):
    """A row whose primary key differs from its rank under the ordering key."""

    current_id: Any
    expected_id: int
    ordering_value: Any = None


class IntegrityReport(BaseModel):
    """Result of an integrity check.

    Example:
        >>> report = IntegrityReport(table="stores", ordering_key="name")
        >>> report.is_integrity_ok
        True
        >>> report.format_report()
        "stores: integrity OK (0 rows ordered by 'name')"
    """

    table: str
    ordering_key: str
    total_rows: int = 0
    issues: list[IntegrityIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_integrity_ok(self) -> bool:
        """True when every row's primary key equals its rank."""
        return len(self.issues) == 0

    def format_report(self) -> str:
        """Format the report as human-readable text."""
        if self.is_integrity_ok:
            return (
                f"{self.table}: integrity OK "
                f"({self.total_rows} rows ordered by '{self.ordering_key}')"
            )

        lines = [
            f"{self.table}: {len(self.issues)} of {self.total_rows} rows "
            f"out of sequence (ordered by '{self.ordering_key}'):"
        ]
        for issue in self.issues:
            lines.append(
                f"    - id {issue.current_id} -> {issue.expected_id} "
                f"({issue.ordering_value})"
            )
        return "\n".join(lines)


# ============================================================================
# Plan
# ============================================================================


@dataclass
class ResequencePlan:
    """Mapping of old to new primary keys for one table.

    Computed over the full row set so that the end state is contiguous
    even when several rows move at once (ids 5, 10, 15 -> 1, 2, 3).

    Attributes:
        rows: Snapshot rows in authoritative order (rank 1 first).
        id_map: ``old_id -> new_id`` for every row.
    """

    rows: list[dict] = field(default_factory=list)
    id_map: dict[Any, int] = field(default_factory=dict)

    @property
    def changed(self) -> dict[Any, int]:
        """Only the pairs whose id actually moves."""
        return {old: new for old, new in self.id_map.items() if old != new}

    @property
    def has_changes(self) -> bool:
        """True if at least one row needs a new id."""
        return any(old != new for old, new in self.id_map.items())

    @property
    def max_id(self) -> int:
        """Highest id assigned by the plan (0 for an empty table)."""
        return len(self.rows)


# ============================================================================
# Run result
# ============================================================================


class ResequenceResult(BaseModel):
    """Result of a resequencing run.

    Attributes:
        success: True if the table ended up contiguous (or already was).
        table: Table that was resequenced.
        skipped: True if nothing needed renumbering and no writes happened.
        dry_run: True if the plan was computed but not applied.
        total_rows: Rows in the table.
        rows_renumbered: Rows whose primary key changed.
        id_map: Changed ``old_id -> new_id`` pairs.
        dependents_updated: Rows rewritten per ``"table.column"``.
        counter_reset: True if the auto-increment counter was realigned.
        warning: Non-fatal problem (counter reset failure).
        backup_path: Pre-run backup file, if one was written.
    """

    success: bool = False
    table: str = ""
    skipped: bool = False
    dry_run: bool = False
    total_rows: int = 0
    rows_renumbered: int = 0
    id_map: dict[Any, int] = Field(default_factory=dict)
    dependents_updated: dict[str, int] = Field(default_factory=dict)
    counter_reset: bool = False
    warning: str | None = None
    backup_path: str | None = None
