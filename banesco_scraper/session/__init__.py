"""Session persistence for Banesco Online.

This module provides the SQLite-based session store with a 24 hour TTL and
hashed owner keys.
"""

from banesco_scraper.session.sqlite_store import SessionStore, owner_hash

__all__ = ["SessionStore", "owner_hash"]
