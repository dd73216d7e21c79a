"""Shared fixtures for the test suite."""

import tempfile
from pathlib import Path

import pytest

from banesco_scraper.config import load_selectors
from banesco_scraper.session.sqlite_store import SessionStore


@pytest.fixture
def selectors():
    """Packaged selectors.yaml."""
    return load_selectors()


@pytest.fixture
async def session_store():
    """Create a temporary session store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = str(Path(tmpdir) / "sessions.db")
        store = SessionStore(db_path=db_path)
        await store.initialize()
        yield store
        await store.close()
