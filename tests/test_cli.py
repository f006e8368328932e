"""Tests for the db-resequencer CLI."""

import argparse
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from db_resequencer.cli import (
    _parse_dependents,
    _resolve_tables,
    build_parser,
    cmd_check,
    cmd_fix,
    cmd_profiles,
    cmd_status,
)
from db_resequencer.config.models import DatabaseConfig, DatabaseProfile
from db_resequencer.errors import ResequenceError, ResequenceStage
from db_resequencer.resequence.models import Dependent, ResequenceResult, SequencedTable

from sqlite_helpers import fetch

CLI = "db_resequencer.cli"

DB_TOML = """
[profiles.local]
url = "sqlite:///{db}"
provider = "sqlite"
description = "Local file"

[tables.agencies]
ordering_key = "name"
dependents = ["users.agency_id", "sales.agency_id"]
"""


def _config() -> DatabaseConfig:
    return DatabaseConfig(
        profiles={"local": DatabaseProfile(url="sqlite:///x.db", provider="sqlite")},
        tables={
            "agencies": SequencedTable(
                name="agencies",
                ordering_key="name",
                dependents=[Dependent(table="users", column="agency_id")],
            )
        },
    )


@pytest.fixture
def project_dir(tmp_path: Path, agencies_db: Path, monkeypatch) -> Path:
    """A working directory with db.toml pointing at the seeded database."""
    (tmp_path / "db.toml").write_text(DB_TOML.format(db=agencies_db))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DB_PROFILE", "local")
    return tmp_path


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------


class TestParser:
    def test_fix_arguments(self):
        args = build_parser().parse_args([
            "--env-prefix", "APP_", "-vv",
            "fix", "agencies",
            "--ordering-key", "name",
            "--dependents", "users.agency_id",
            "--backup", "--confirm", "--timeout", "2.5",
        ])
        assert args.command == "fix"
        assert args.env_prefix == "APP_"
        assert args.verbose == 2
        assert args.table == "agencies"
        assert args.backup is True
        assert args.confirm is True
        assert args.dry_run is False
        assert args.timeout == 2.5
        assert args.func is cmd_fix

    def test_check_defaults(self):
        args = build_parser().parse_args(["check"])
        assert args.tables == []
        assert args.ordering_key is None
        assert args.func is cmd_check

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestResolveTables:
    def test_configured_table(self):
        (table,) = _resolve_tables(["agencies"], None, _config())
        assert table.ordering_key == "name"
        assert table.dependents[0].key == "users.agency_id"

    def test_ordering_key_overrides(self):
        (table,) = _resolve_tables(["agencies"], "created_at", _config())
        assert table.ordering_key == "created_at"
        assert table.dependents

    def test_unconfigured_needs_ordering_key(self):
        with pytest.raises(ValueError, match="--ordering-key"):
            _resolve_tables(["products"], None, _config())
        (table,) = _resolve_tables(["products"], "sku", None)
        assert table == SequencedTable(name="products", ordering_key="sku")

    def test_all_configured(self):
        assert [t.name for t in _resolve_tables([], None, _config())] == ["agencies"]

    def test_nothing_to_resolve(self):
        with pytest.raises(ValueError, match="No tables"):
            _resolve_tables([], None, None)


def test_parse_dependents():
    assert _parse_dependents("users.agency_id, sales.agency_id,") == [
        Dependent(table="users", column="agency_id"),
        Dependent(table="sales", column="agency_id"),
    ]


# ------------------------------------------------------------------
# Local-only commands
# ------------------------------------------------------------------


class TestStatusAndProfiles:
    def test_status_without_profile(self):
        with patch(f"{CLI}.read_profile_lock", return_value=None):
            assert cmd_status(argparse.Namespace()) == 0

    def test_status_with_profile(self):
        with patch(f"{CLI}.read_profile_lock", return_value="local"), \
             patch(f"{CLI}.load_db_config", return_value=_config()):
            assert cmd_status(argparse.Namespace()) == 0

    def test_profiles_missing_config(self):
        with patch(f"{CLI}.load_db_config", side_effect=FileNotFoundError("db.toml")):
            assert cmd_profiles(argparse.Namespace()) == 1

    def test_profiles_lists(self, capsys):
        with patch(f"{CLI}.read_profile_lock", return_value="local"), \
             patch(f"{CLI}.load_db_config", return_value=_config()):
            assert cmd_profiles(argparse.Namespace()) == 0
        assert "local" in capsys.readouterr().out


# ------------------------------------------------------------------
# check / fix against a real SQLite file
# ------------------------------------------------------------------


class TestCheckCommand:
    def test_misaligned_exits_1(self, project_dir: Path, capsys):
        args = build_parser().parse_args(["check"])
        assert cmd_check(args) == 1
        assert "3 of 3 rows out of sequence" in capsys.readouterr().out

    def test_unknown_table(self, project_dir: Path):
        args = build_parser().parse_args(["check", "products"])
        assert cmd_check(args) == 1


class TestFixCommand:
    def test_without_confirm_is_dry_run(self, project_dir: Path, agencies_db: Path, capsys):
        args = build_parser().parse_args(["fix", "agencies"])

        assert cmd_fix(args) == 0

        assert "--confirm" in capsys.readouterr().out
        assert fetch(agencies_db, "SELECT id FROM agencies ORDER BY id") == [(5,), (10,), (15,)]

    def test_confirm_applies(self, project_dir: Path, agencies_db: Path):
        args = build_parser().parse_args(["fix", "agencies", "--confirm"])

        assert cmd_fix(args) == 0

        assert fetch(agencies_db, "SELECT id FROM agencies ORDER BY id") == [(1,), (2,), (3,)]
        assert fetch(agencies_db, "SELECT agency_id FROM sales ORDER BY id") == [(3,), (1,)]
        check = build_parser().parse_args(["check"])
        assert cmd_check(check) == 0

    def test_backup_written(self, project_dir: Path):
        args = build_parser().parse_args(["fix", "agencies", "--confirm", "--backup"])

        assert cmd_fix(args) == 0

        assert len(list((project_dir / "backups").glob("backup-agencies-*.json"))) == 1

    def test_failure_exits_1(self, project_dir: Path, capsys):
        service = MagicMock()
        service.fix_table = AsyncMock(
            side_effect=ResequenceError(ResequenceStage.DELETE, "agencies", "locked")
        )
        args = build_parser().parse_args(["fix", "agencies", "--confirm"])

        with patch(f"{CLI}.IdIntegrityService", return_value=service):
            assert cmd_fix(args) == 1

        assert "No changes were committed" in capsys.readouterr().out

    def test_explicit_dependents_replace_config(self, project_dir: Path):
        service = MagicMock()
        service.fix_table = AsyncMock(
            return_value=ResequenceResult(success=True, table="agencies", skipped=True)
        )
        args = build_parser().parse_args(
            ["fix", "agencies", "--dependents", "users.agency_id", "--dry-run"]
        )

        with patch(f"{CLI}.IdIntegrityService", return_value=service):
            assert cmd_fix(args) == 0

        seq_table = service.fix_table.await_args.args[0]
        assert seq_table.dependents == [Dependent(table="users", column="agency_id")]
        assert service.fix_table.await_args.kwargs["dry_run"] is True
