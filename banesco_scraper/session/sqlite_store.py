"""SQLite-backed store for Banesco session artifacts.

This module provides a SessionStore class that handles:
- Persisting cookies, page storage and the last URL after a login
- Restoring them into a fresh browser page within a 24 hour TTL
- Keying every record by a SHA-256 hash of the user name
"""

import asyncio
import hashlib
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from banesco_scraper.models import SessionRecord
from banesco_scraper.parsing import contains_any

logger = structlog.get_logger(__name__)

DEFAULT_TTL = timedelta(hours=24)

DEFAULT_MARKERS: dict[str, list[str]] = {
    "banking_area_url": ["index.aspx", "default.aspx"],
    "brand": ["banesco"],
    "login_form": ["txtusuario", "login.aspx"],
}


def owner_hash(identity: str) -> str:
    """One-way identifier for a user name."""
    return hashlib.sha256(identity.strip().encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """SQLite-based session store with TTL.

    One row per owner hash; saving again overwrites the previous record.

    Attributes:
        db_path: Path to the SQLite database file.
        ttl: Maximum age of a record that may be restored.
    """

    def __init__(
        self,
        db_path: str,
        ttl: timedelta = DEFAULT_TTL,
        markers: dict[str, list[str]] | None = None,
        navigation_timeout_ms: int = 10000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize SessionStore.

        Args:
            db_path: Path to SQLite database file.
            ttl: Session time to live (default: 24 hours).
            markers: Page markers for the authenticated-area heuristic.
            navigation_timeout_ms: Timeout for restore navigations.
            clock: Returns the current UTC time.
        """
        self.db_path = db_path
        self.ttl = ttl
        self.markers = {**DEFAULT_MARKERS, **(markers or {})}
        self.navigation_timeout_ms = navigation_timeout_ms
        self._clock = clock
        self._lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the sessions table."""
        async with self._lock:
            if self._db is not None:
                return

            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    owner_hash TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_created_at ON sessions(created_at)"
            )
            await self._db.commit()

            logger.info("session_store_initialized", db_path=self.db_path)

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    async def put(self, record: SessionRecord) -> None:
        """Write a record, replacing any previous one for the same owner."""
        db = await self._connection()
        async with self._lock:
            await db.execute(
                """
                INSERT OR REPLACE INTO sessions (owner_hash, data, created_at)
                VALUES (?, ?, ?)
                """,
                (
                    record.owner_hash,
                    record.model_dump_json(),
                    record.created_at.isoformat(),
                ),
            )
            await db.commit()

        logger.debug("session_record_written", owner=record.owner_hash[:12])

    async def load(self, identity: str) -> SessionRecord | None:
        """Read the stored record for an identity without applying it."""
        db = await self._connection()
        async with self._lock:
            cursor = await db.execute(
                "SELECT data FROM sessions WHERE owner_hash = ?",
                (owner_hash(identity),),
            )
            row = await cursor.fetchone()

        if not row:
            return None
        return SessionRecord.model_validate_json(row["data"])

    async def save(self, surface: Any, identity: str) -> bool:
        """Capture the authenticated state of a page.

        Args:
            surface: PageSurface of the authenticated page.
            identity: User name the session belongs to.

        Returns:
            True if the record was written.
        """
        try:
            local_storage, session_storage = await surface.get_storage()
            record = SessionRecord(
                owner_hash=owner_hash(identity),
                cookies=await surface.get_cookies(),
                local_storage=local_storage,
                session_storage=session_storage,
                last_url=await surface.current_url(),
                created_at=self._clock(),
                user_agent=await surface.user_agent(),
            )
            await self.put(record)
        except Exception as e:
            logger.warning("session_save_failed", error=str(e))
            return False

        logger.info(
            "session_saved",
            cookies=len(record.cookies),
            local_storage=len(record.local_storage),
            session_storage=len(record.session_storage),
            url=record.last_url,
        )
        return True

    async def restore(self, surface: Any, identity: str) -> bool:
        """Apply a stored session to a fresh page.

        Expired records are deleted and never applied.

        Returns:
            True if a live record was applied to the page.
        """
        try:
            record = await self.load(identity)
        except Exception as e:
            logger.warning("session_load_failed", error=str(e))
            return False

        if record is None:
            logger.debug("session_not_found")
            return False

        if record.is_expired(self._clock(), self.ttl):
            logger.info("session_expired", age_seconds=int(record.age(self._clock()).total_seconds()))
            await self.clear(identity)
            return False

        try:
            await surface.set_cookies(record.cookies)
            await surface.navigate(record.last_url, self.navigation_timeout_ms)
            await surface.set_storage(record.local_storage, record.session_storage)
            await surface.navigate(record.last_url, self.navigation_timeout_ms)
        except Exception as e:
            logger.warning("session_restore_failed", error=str(e))
            return False

        logger.info("session_restored", url=record.last_url)
        return True

    async def is_valid(self, surface: Any) -> bool:
        """Check whether a page looks like the authenticated banking area.

        The URL must point into the banking area and the page must carry
        the brand marker without any login form marker.
        """
        try:
            url = await surface.current_url()
            content = await surface.content()
        except Exception as e:
            logger.warning("session_validation_error", error=str(e))
            return False

        in_banking_area = contains_any(url, self.markers["banking_area_url"])
        branded = contains_any(content, self.markers["brand"])
        login_form = contains_any(content, self.markers["login_form"]) or contains_any(
            url, self.markers["login_form"]
        )

        is_valid = in_banking_area and branded and not login_form
        logger.info("session_validity_checked", is_valid=is_valid, url=url)
        return is_valid

    async def clear(self, identity: str) -> None:
        """Delete the stored session of an identity."""
        db = await self._connection()
        async with self._lock:
            await db.execute(
                "DELETE FROM sessions WHERE owner_hash = ?", (owner_hash(identity),)
            )
            await db.commit()

        logger.info("session_cleared")

    async def clear_all(self) -> int:
        """Delete every stored session.

        Returns:
            Number of records deleted.
        """
        db = await self._connection()
        async with self._lock:
            cursor = await db.execute("DELETE FROM sessions RETURNING owner_hash")
            count = len(await cursor.fetchall())
            await db.commit()

        logger.info("all_sessions_cleared", deleted_count=count)
        return count

    async def list_sessions(self) -> list[dict[str, Any]]:
        """Describe stored sessions without exposing cookies or identities.

        Returns:
            One dictionary per record with a shortened owner hash, creation
            time, age in seconds, expiry flag and last URL.
        """
        db = await self._connection()
        async with self._lock:
            cursor = await db.execute(
                "SELECT data FROM sessions ORDER BY created_at DESC"
            )
            rows = await cursor.fetchall()

        now = self._clock()
        sessions = []
        for row in rows:
            record = SessionRecord.model_validate_json(row["data"])
            sessions.append(
                {
                    "owner": record.owner_hash[:12],
                    "created_at": record.created_at.isoformat(),
                    "age_seconds": int(record.age(now).total_seconds()),
                    "expired": record.is_expired(now, self.ttl),
                    "last_url": record.last_url,
                }
            )
        return sessions

    async def cleanup_expired(self) -> int:
        """Remove all expired records.

        Returns:
            Number of records deleted.
        """
        db = await self._connection()
        cutoff = (self._clock() - self.ttl).isoformat()

        async with self._lock:
            cursor = await db.execute(
                "DELETE FROM sessions WHERE created_at < ? RETURNING owner_hash",
                (cutoff,),
            )
            count = len(await cursor.fetchall())
            await db.commit()

        logger.info("session_cleanup_completed", deleted_count=count)
        return count

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("session_store_closed")
