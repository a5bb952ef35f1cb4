"""
Fixtures for the concurrency tests.

The in-memory backend shares one connection between sessions, so tests that
need two independent writers run against a file-backed SQLite database.
"""

import pytest

from domos_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from domos_kernel.db.immutability import register_immutability_listeners


@pytest.fixture
def file_factory(tmp_path):
    """A file-backed SQLite database, so that sessions use separate connections."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'race.db'}")
    create_tables()
    register_immutability_listeners()
    yield get_session_factory()
    reset_engine()
