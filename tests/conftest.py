"""Shared fixtures — module-scoped DB template eliminates per-test init_db overhead."""

import shutil

import pytest

from slidegraph.storage.sqlite_store import SqliteStore
from tests.helpers import FakeSearcher


@pytest.fixture(scope="module")
def _module_db_path(tmp_path_factory):
    """Create one fully-initialized DB per test module as a template."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    s = SqliteStore(db_path)
    s.init_db()
    s._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    s.close()
    return db_path


@pytest.fixture
def db_path(tmp_path, _module_db_path):
    """Copy the template DB into a per-test tmp dir (fast file copy, no init_db)."""
    path = tmp_path / "test.db"
    shutil.copy2(_module_db_path, path)
    return path


@pytest.fixture
def store(db_path):
    """Per-test SqliteStore backed by a pre-initialized DB copy."""
    s = SqliteStore(db_path)
    yield s
    s.close()


@pytest.fixture
def searcher():
    """Searcher that records queries and returns canned text."""
    return FakeSearcher()
