"""Shared fixtures: real SQLite database files for end-to-end tests."""

from pathlib import Path

import pytest

from db_resequencer.adapters.sqlite import AsyncSqliteAdapter

from sqlite_helpers import seed


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "backoffice.db"


@pytest.fixture
def agencies_db(db_path: Path) -> Path:
    """Agencies with ids 5/10/15 and users/sales pointing at them."""
    seed(
        db_path,
        agencies=[(5, "Agency A"), (10, "Agency B"), (15, "Agency C")],
        users=[(1, "alice", 5), (2, "bob", 10), (3, "carol", 15), (4, "dave", None)],
        sales=[(1, 15, 120.0), (2, 5, 80.5)],
    )
    return db_path


@pytest.fixture
async def sqlite_adapter(db_path: Path):
    adapter = AsyncSqliteAdapter(f"sqlite:///{db_path}")
    yield adapter
    await adapter.close()
