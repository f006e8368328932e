"""Error taxonomy for integrity checks and resequencing.

- ``StorageError``: the row store could not be read or written.
- ``ResequenceError``: renumbering failed at a known stage; the
  transaction has been rolled back.
- ``CounterResetError``: the auto-increment counter could not be
  realigned.  Non-fatal to the renumbering itself.

Usage:
    from db_resequencer.errors import ResequenceError, StorageError

    try:
        await service.fix_ids("stores", "name", dependents)
    except ResequenceError as e:
        print(f"Resequencing failed at stage {e.stage.value}")
"""

from enum import Enum


class ResequenceStage(str, Enum):
    """Steps of a resequencing run, in execution order."""

    SNAPSHOT = "snapshot"
    DELETE = "delete"
    REINSERT = "reinsert"
    DEPENDENT_UPDATE = "dependent-update"
    COMMIT = "commit"


# Stages at or after which rows have been touched inside the transaction
_MUTATING_STAGES = {
    ResequenceStage.DELETE,
    ResequenceStage.REINSERT,
    ResequenceStage.DEPENDENT_UPDATE,
    ResequenceStage.COMMIT,
}


class StorageError(Exception):
    """Raised when a read or write against the row store fails."""

    pass


class ResequenceError(Exception):
    """Raised when resequencing fails; the transaction was rolled back.

    Attributes:
        stage: The ``ResequenceStage`` that was running when the failure
            occurred.
        table: Table being resequenced.
    """

    def __init__(self, stage: ResequenceStage, table: str, message: str = "") -> None:
        self.stage = ResequenceStage(stage)
        self.table = table
        detail = f": {message}" if message else ""
        super().__init__(
            f"Resequencing '{table}' failed at stage '{self.stage.value}'{detail}"
        )

    @property
    def changes_attempted(self) -> bool:
        """True if the failure happened after rows started changing.

        The rollback still leaves the data as it was before the run; this
        only tells callers not to retry blindly without re-checking.
        """
        return self.stage in _MUTATING_STAGES


class CounterResetError(Exception):
    """Raised when the auto-increment counter could not be realigned."""

    pass
