"""End-to-end integrity checks and resequencing against real SQLite files.

Exercises AsyncSqliteAdapter (aiosqlite) through the public entry points:
the agencies 5/10/15 scenario, empty tables, idempotence, rollback on
failure, swapped ids, and the AUTOINCREMENT counter.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from db_resequencer.adapters.sqlite import AsyncSqliteAdapter, SqliteTransaction
from db_resequencer.errors import ResequenceError, ResequenceStage
from db_resequencer.resequence.checker import check_integrity
from db_resequencer.resequence.models import Dependent
from db_resequencer.resequence.resequencer import resequence
from db_resequencer.resequence.service import IdIntegrityService

from sqlite_helpers import fetch, run_script, seed

DEPENDENTS = [
    Dependent(table="users", column="agency_id"),
    Dependent(table="sales", column="agency_id"),
]


# ============================================================================
# Integrity check
# ============================================================================


class TestCheckIntegrity:
    """check_integrity() over a real table."""

    async def test_reports_every_misplaced_row(self, agencies_db, sqlite_adapter):
        """Ids 5/10/15 ordered by name are reported as 1/2/3."""
        report = await check_integrity(sqlite_adapter, "agencies", "name")

        assert report.is_integrity_ok is False
        assert report.total_rows == 3
        assert [(i.current_id, i.expected_id, i.ordering_value) for i in report.issues] == [
            (5, 1, "Agency A"),
            (10, 2, "Agency B"),
            (15, 3, "Agency C"),
        ]

    async def test_empty_table_is_ok(self, db_path, sqlite_adapter):
        """Zero rows is vacuously in sequence."""
        seed(db_path, agencies=[])

        report = await check_integrity(sqlite_adapter, "agencies", "name")

        assert report.is_integrity_ok is True
        assert report.total_rows == 0
        assert report.issues == []

    async def test_contiguous_table_is_ok(self, db_path, sqlite_adapter):
        """Rows already 1..N in name order produce no issues."""
        seed(db_path, agencies=[(1, "Agency A"), (2, "Agency B")])

        report = await check_integrity(sqlite_adapter, "agencies", "name")

        assert report.is_integrity_ok is True

    async def test_ties_broken_by_primary_key(self, db_path, sqlite_adapter):
        """Equal ordering values keep their relative primary key order."""
        seed(db_path, agencies=[(1, "Same"), (2, "Same"), (3, "Earlier")])

        report = await check_integrity(sqlite_adapter, "agencies", "name")

        assert [(i.current_id, i.expected_id) for i in report.issues] == [
            (3, 1),
            (1, 2),
            (2, 3),
        ]


# ============================================================================
# Resequencing
# ============================================================================


class TestResequenceScenario:
    """The agencies 5/10/15 scenario, end to end."""

    async def test_renumbers_and_remaps_dependents(self, agencies_db, sqlite_adapter):
        """Agencies become 1/2/3 and every reference follows."""
        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert result.success is True
        assert result.id_map == {5: 1, 10: 2, 15: 3}
        assert result.dependents_updated == {"users.agency_id": 3, "sales.agency_id": 2}

        assert fetch(agencies_db, "SELECT id, name FROM agencies ORDER BY id") == [
            (1, "Agency A"),
            (2, "Agency B"),
            (3, "Agency C"),
        ]
        assert fetch(agencies_db, "SELECT username, agency_id FROM users ORDER BY id") == [
            ("alice", 1),
            ("bob", 2),
            ("carol", 3),
            ("dave", None),
        ]
        assert fetch(agencies_db, "SELECT id, agency_id FROM sales ORDER BY id") == [
            (1, 3),
            (2, 1),
        ]

    async def test_non_key_columns_preserved(self, agencies_db, sqlite_adapter):
        """Columns other than the primary key survive the rewrite untouched."""
        before = fetch(agencies_db, "SELECT name, created_at FROM agencies ORDER BY name")

        await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        after = fetch(agencies_db, "SELECT name, created_at FROM agencies ORDER BY name")
        assert after == before

    async def test_no_foreign_key_violations_after(self, agencies_db, sqlite_adapter):
        """PRAGMA foreign_key_check is clean after the run."""
        await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert fetch(agencies_db, "PRAGMA foreign_key_check") == []

    async def test_check_is_ok_after_fix(self, agencies_db, sqlite_adapter):
        """A check right after a fix reports no issues."""
        await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        report = await check_integrity(sqlite_adapter, "agencies", "name")
        assert report.is_integrity_ok is True
        assert report.total_rows == 3

    async def test_second_run_is_noop(self, agencies_db, sqlite_adapter):
        """Resequencing an already contiguous table writes nothing."""
        await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)
        snapshot = fetch(agencies_db, "SELECT * FROM users ORDER BY id")

        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert result.success is True
        assert result.skipped is True
        assert result.id_map == {}
        assert fetch(agencies_db, "SELECT * FROM users ORDER BY id") == snapshot

    async def test_swapped_ids(self, db_path, sqlite_adapter):
        """Two rows trading ids keep their references straight."""
        seed(
            db_path,
            agencies=[(1, "Agency B"), (2, "Agency A")],
            users=[(1, "alice", 2), (2, "bob", 1)],
        )

        result = await resequence(
            sqlite_adapter, "agencies", "name", [Dependent(table="users", column="agency_id")]
        )

        assert result.id_map == {2: 1, 1: 2}
        assert fetch(db_path, "SELECT id, name FROM agencies ORDER BY id") == [
            (1, "Agency A"),
            (2, "Agency B"),
        ]
        # alice belonged to Agency A, bob to Agency B
        assert fetch(db_path, "SELECT username, agency_id FROM users ORDER BY id") == [
            ("alice", 1),
            ("bob", 2),
        ]

    async def test_cascade_children_survive(self, agencies_db, sqlite_adapter):
        """ON DELETE CASCADE does not fire while rows are rewritten."""
        await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert fetch(agencies_db, "SELECT COUNT(*) FROM users") == [(4,)]


class TestEmptyTable:
    """Zero-row tables are a successful no-op."""

    async def test_resequence_empty_table(self, db_path, sqlite_adapter):
        seed(db_path, agencies=[])

        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert result.success is True
        assert result.skipped is True
        assert result.total_rows == 0
        assert result.counter_reset is False


class TestCounterReset:
    """AUTOINCREMENT counter follows the new maximum."""

    async def test_next_insert_gets_max_plus_one(self, agencies_db, sqlite_adapter):
        """After renumbering to 1..3 the next agency gets id 4, not 16."""
        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)
        assert result.counter_reset is True
        assert fetch(agencies_db, "SELECT seq FROM sqlite_sequence WHERE name = 'agencies'") == [(3,)]

        row = await sqlite_adapter.insert("agencies", {"name": "Agency D"})

        assert row["id"] == 4

    async def test_plain_rowid_table_reports_no_reset(self, agencies_db, sqlite_adapter):
        """sqlite_sequence exists for other tables but has no row for this one."""
        run_script(
            agencies_db,
            """
            CREATE TABLE regions (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
            INSERT INTO regions (id, name) VALUES (4, 'North'), (9, 'South');
            """,
        )

        result = await resequence(sqlite_adapter, "regions", "name")

        assert result.success is True
        assert result.counter_reset is False
        assert fetch(agencies_db, "SELECT id, name FROM regions ORDER BY id") == [
            (1, "North"),
            (2, "South"),
        ]
        assert fetch(agencies_db, "SELECT name FROM sqlite_sequence WHERE name = 'regions'") == []


# ============================================================================
# Atomicity
# ============================================================================


class TestRollback:
    """Any failure leaves the database exactly as it was."""

    def _state(self, db_path: Path) -> tuple:
        return (
            fetch(db_path, "SELECT * FROM agencies ORDER BY id"),
            fetch(db_path, "SELECT * FROM users ORDER BY id"),
            fetch(db_path, "SELECT * FROM sales ORDER BY id"),
        )

    async def test_failure_during_reinsert(self, agencies_db, sqlite_adapter):
        """A write error mid-reinsert rolls back the delete as well."""
        before = self._state(agencies_db)

        with patch.object(
            SqliteTransaction, "insert", side_effect=OSError("disk I/O error")
        ):
            with pytest.raises(ResequenceError) as exc_info:
                await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert exc_info.value.stage == ResequenceStage.REINSERT
        assert self._state(agencies_db) == before

    async def test_failure_during_dependent_update(self, agencies_db, sqlite_adapter):
        """A broken dependent column rolls back the renumbered rows."""
        before = self._state(agencies_db)
        broken = [Dependent(table="users", column="no_such_column")]

        with pytest.raises(ResequenceError) as exc_info:
            await resequence(sqlite_adapter, "agencies", "name", broken)

        assert exc_info.value.stage == ResequenceStage.DEPENDENT_UPDATE
        assert self._state(agencies_db) == before

    async def test_undeclared_dependent_is_refused(self, agencies_db, sqlite_adapter):
        """Leaving out sales.agency_id would dangle references, so nothing commits."""
        before = self._state(agencies_db)

        with pytest.raises(ResequenceError, match="foreign key violation"):
            await resequence(
                sqlite_adapter, "agencies", "name", [Dependent(table="users", column="agency_id")]
            )

        assert self._state(agencies_db) == before

    async def test_unrelated_broken_reference_does_not_block(self, agencies_db, sqlite_adapter):
        """A dangling reference between other tables was there before and stays."""
        run_script(
            agencies_db,
            """
            CREATE TABLE regions (id INTEGER PRIMARY KEY);
            CREATE TABLE region_offices (
                id INTEGER PRIMARY KEY,
                region_id INTEGER REFERENCES regions(id)
            );
            INSERT INTO region_offices (id, region_id) VALUES (1, 99);
            """,
        )

        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert result.success is True
        assert result.id_map == {5: 1, 10: 2, 15: 3}
        assert fetch(agencies_db, "SELECT id, region_id FROM region_offices") == [(1, 99)]
        assert fetch(agencies_db, "PRAGMA foreign_key_check") == [("region_offices", 1, "regions", 0)]

    async def test_existing_dangling_dependent_left_alone(self, agencies_db, sqlite_adapter):
        """A user already pointing at a missing agency keeps that value."""
        run_script(agencies_db, "INSERT INTO users (id, username, agency_id) VALUES (5, 'erin', 99);")

        result = await resequence(sqlite_adapter, "agencies", "name", DEPENDENTS)

        assert result.success is True
        assert fetch(agencies_db, "SELECT agency_id FROM users WHERE id = 5") == [(99,)]
        assert fetch(agencies_db, "SELECT username, agency_id FROM users WHERE id < 5 ORDER BY id") == [
            ("alice", 1),
            ("bob", 2),
            ("carol", 3),
            ("dave", None),
        ]

    async def test_foreign_keys_enabled_after_failure(self, agencies_db, sqlite_adapter):
        """The connection gets PRAGMA foreign_keys back after a rollback."""
        with pytest.raises(ResequenceError):
            await resequence(
                sqlite_adapter, "agencies", "name", [Dependent(table="users", column="nope")]
            )

        rows = await sqlite_adapter.select("pragma_foreign_keys", "foreign_keys")
        assert rows == [{"foreign_keys": 1}]


# ============================================================================
# Service
# ============================================================================


class TestServiceEndToEnd:
    """IdIntegrityService against a real file."""

    async def test_check_then_fix(self, agencies_db, sqlite_adapter):
        service = IdIntegrityService(sqlite_adapter)

        report = await service.check_integrity("agencies", "name")
        assert not report.is_integrity_ok

        result = await service.fix_ids("agencies", "name", DEPENDENTS, timeout=30)
        assert result.rows_renumbered == 3

        report = await service.check_integrity("agencies", "name")
        assert report.is_integrity_ok

    async def test_foreign_keys_off_adapter(self, agencies_db):
        """An adapter without FK enforcement still remaps dependents."""
        adapter = AsyncSqliteAdapter(f"sqlite:///{agencies_db}", foreign_keys=False)
        try:
            result = await IdIntegrityService(adapter).fix_ids("agencies", "name", DEPENDENTS)
        finally:
            await adapter.close()

        assert result.success
        assert fetch(agencies_db, "SELECT agency_id FROM sales ORDER BY id") == [(3,), (1,)]
