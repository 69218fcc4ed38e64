"""
Test configuration: ensures repo root is in sys.path + determinism guards.

This allows tests to import from top-level packages (command_center, api, cli).
Enforces determinism by blocking access to the live database: tests use the
in-memory store or a SQLite file under tmp_path.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import command_center.*, api.*, cli
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from command_center import config  # noqa: E402
from command_center.aggregation import AggregationEngine, InMemoryStore  # noqa: E402
from tests.fixtures import build_source  # noqa: E402

# =============================================================================
# DETERMINISM GUARD: Block live database access
# =============================================================================

LIVE_DB_ABSOLUTE = (REPO_ROOT / config.DB_PATH).resolve()

_original_sqlite_connect = sqlite3.connect


def _guarded_sqlite_connect(database, *args, **kwargs):
    """Intercept sqlite3.connect to block live DB access."""
    db_str = str(database)
    if db_str != ":memory:" and Path(db_str).resolve() == LIVE_DB_ABSOLUTE:
        raise RuntimeError(
            f"DETERMINISM VIOLATION: Test attempted to access live DB at {database}.\n"
            "Tests must use InMemoryStore or SQLiteStore(tmp_path / 'test.db')."
        )
    return _original_sqlite_connect(database, *args, **kwargs)


@pytest.fixture(autouse=True)
def guard_live_db_access(monkeypatch):
    """Automatically guard all tests against live DB access."""
    monkeypatch.setattr(sqlite3, "connect", _guarded_sqlite_connect)


# =============================================================================
# SHARED FIXTURES
# =============================================================================


@pytest.fixture
def source():
    """Pinned source with golden scores for sub-1."""
    return build_source()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def engine(source, store):
    """Engine over the pinned source and an empty in-memory store."""
    return AggregationEngine.from_source(source, store)
