"""Primary key integrity checks and resequencing.

Usage:
    from db_resequencer.resequence import IdIntegrityService, Dependent

    service = IdIntegrityService(adapter)
    report = await service.check_integrity("stores", "name")
"""

from db_resequencer.resequence.checker import check_integrity
from db_resequencer.resequence.counter import (
    NoopSequenceReset,
    PostgresSequenceReset,
    SequenceResetStrategy,
    SqliteSequenceReset,
    reset_counter,
)
from db_resequencer.resequence.models import (
    Dependent,
    IntegrityIssue,
    IntegrityReport,
    ResequencePlan,
    ResequenceResult,
    SequencedTable,
)
from db_resequencer.resequence.resequencer import build_plan, resequence
from db_resequencer.resequence.service import IdIntegrityService

__all__ = [
    "check_integrity",
    "resequence",
    "build_plan",
    "reset_counter",
    "IdIntegrityService",
    "SequenceResetStrategy",
    "PostgresSequenceReset",
    "SqliteSequenceReset",
    "NoopSequenceReset",
    "Dependent",
    "SequencedTable",
    "IntegrityIssue",
    "IntegrityReport",
    "ResequencePlan",
    "ResequenceResult",
]
