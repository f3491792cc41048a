"""Database storage for lesefluss.

This module provides async SQLite operations for subscriptions and entries.
Database location: ~/.lesefluss/lesefluss.db (or LESEFLUSS_DB_PATH env var)
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union

import aiosqlite

from lesefluss.config import get_config
from lesefluss.errors import ConflictError
from lesefluss.models.schemas import (
    Entry,
    EntryStatus,
    NewEntry,
    Subscription,
    SubscriptionStatus,
)


def _get_db_path() -> Path:
    """Get the database path, respecting LESEFLUSS_DB_PATH env var for testing."""
    env_path = os.environ.get("LESEFLUSS_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path(get_config().database_path)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string, so text order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f") + "+00:00"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        feed_url=row["feed_url"],
        title=row["title"],
        status=SubscriptionStatus(row["status"]),
        last_sync_at=parse_timestamp(row["last_sync_at"]),
        sync_error=row["sync_error"],
        image_url=row["image_url"],
    )


def _row_to_entry(row) -> Entry:
    return Entry(
        id=row["id"],
        subscription_id=row["subscription_id"],
        guid_hash=row["guid_hash"],
        title=row["title"],
        content_html=row["content_html"],
        published_at=parse_timestamp(row["published_at"]),
        link=row["link"],
        status=EntryStatus(row["status"]),
        starred=bool(row["starred"]),
        archived=bool(row["archived"]),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteEntryStore:
    """Subscription and entry persistence on a single aiosqlite connection."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    @classmethod
    async def connect(cls, path: Union[str, Path]) -> "SqliteEntryStore":
        """Open (and initialize) a store at ``path``; ":memory:" is accepted."""
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path))
        db.row_factory = aiosqlite.Row
        store = cls(db)
        await store.init_database()
        return store

    async def init_database(self) -> None:
        """Initialize database tables if they don't exist."""
        db = self.db

        await db.execute("PRAGMA foreign_keys = ON")

        await db.execute("""
            CREATE TABLE IF NOT EXISTS subscriptions (
                id INTEGER PRIMARY KEY,
                feed_url TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                last_sync_at TEXT,
                sync_error TEXT,
                image_url TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY,
                subscription_id INTEGER NOT NULL,
                guid_hash TEXT NOT NULL,
                title TEXT NOT NULL,
                content_html TEXT NOT NULL DEFAULT '',
                published_at TEXT NOT NULL,
                link TEXT,
                status TEXT NOT NULL DEFAULT 'unread',
                starred BOOLEAN NOT NULL DEFAULT FALSE,
                archived BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (subscription_id, guid_hash),
                FOREIGN KEY (subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE
            )
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_entries_subscription_published
            ON entries(subscription_id, published_at)
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_entries_status ON entries(status)
        """)

        await db.commit()

    async def close(self) -> None:
        await self.db.close()

    # Subscriptions

    async def add_subscription(
        self,
        feed_url: str,
        title: str,
        image_url: Optional[str] = None,
    ) -> Subscription:
        """Add a new subscription.

        Args:
            feed_url: RSS/Atom feed URL
            title: Display title
            image_url: Optional source image

        Returns:
            The created Subscription

        Raises:
            ValueError: If a subscription for the same feed URL already exists
        """
        try:
            cursor = await self.db.execute(
                """
                INSERT INTO subscriptions (feed_url, title, image_url)
                VALUES (?, ?, ?)
                """,
                (feed_url, title, image_url),
            )
            await self.db.commit()
        except aiosqlite.IntegrityError as e:
            raise ValueError(f"Subscription for '{feed_url}' already exists") from e

        return Subscription(
            id=cursor.lastrowid,
            feed_url=feed_url,
            title=title,
            image_url=image_url,
        )

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
        )
        row = await cursor.fetchone()
        return _row_to_subscription(row) if row else None

    async def list_subscriptions(
        self, status: Optional[SubscriptionStatus] = None
    ) -> List[Subscription]:
        """List subscriptions ordered by title, optionally filtered by status."""
        if status is None:
            cursor = await self.db.execute("SELECT * FROM subscriptions ORDER BY title, id")
        else:
            cursor = await self.db.execute(
                "SELECT * FROM subscriptions WHERE status = ? ORDER BY title, id",
                (SubscriptionStatus(status).value,),
            )
        return [_row_to_subscription(row) async for row in cursor]

    async def list_subscription_summaries(self) -> List[dict]:
        """List all subscriptions with entry counts.

        Returns:
            List of dicts with subscription info and entry counts
        """
        cursor = await self.db.execute("""
            SELECT s.*,
                   COUNT(e.id) as total_entries,
                   SUM(CASE WHEN e.status = 'unread' THEN 1 ELSE 0 END) as unread_entries
            FROM subscriptions s
            LEFT JOIN entries e ON s.id = e.subscription_id
            GROUP BY s.id
            ORDER BY s.title, s.id
        """)

        summaries = []
        async for row in cursor:
            summaries.append({
                "id": row["id"],
                "feed_url": row["feed_url"],
                "title": row["title"],
                "status": row["status"],
                "last_sync_at": row["last_sync_at"],
                "sync_error": row["sync_error"],
                "image_url": row["image_url"],
                "total_entries": row["total_entries"],
                "unread_entries": row["unread_entries"] or 0,
            })
        return summaries

    async def set_subscription_status(
        self, subscription_id: int, status: SubscriptionStatus
    ) -> Optional[Subscription]:
        await self.db.execute(
            "UPDATE subscriptions SET status = ? WHERE id = ?",
            (SubscriptionStatus(status).value, subscription_id),
        )
        await self.db.commit()
        return await self.get_subscription(subscription_id)

    async def remove_subscription(self, subscription_id: int) -> Tuple[bool, int]:
        """Remove a subscription and all its entries.

        Args:
            subscription_id: ID of the subscription to remove

        Returns:
            Tuple of (success, entry_count_deleted)
        """
        if await self.get_subscription(subscription_id) is None:
            return (False, 0)

        cursor = await self.db.execute(
            "SELECT COUNT(*) as count FROM entries WHERE subscription_id = ?",
            (subscription_id,),
        )
        count_row = await cursor.fetchone()
        entry_count = count_row["count"]

        await self.db.execute("DELETE FROM entries WHERE subscription_id = ?", (subscription_id,))
        await self.db.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
        await self.db.commit()

        return (True, entry_count)

    async def update_subscription_sync_result(
        self,
        subscription_id: int,
        last_sync_at: datetime,
        sync_error: Optional[str],
    ) -> None:
        """Record the outcome of a sync attempt.

        Args:
            subscription_id: ID of the subscription
            last_sync_at: When the attempt finished
            sync_error: Error message, or None to clear a previous error
        """
        await self.db.execute(
            "UPDATE subscriptions SET last_sync_at = ?, sync_error = ? WHERE id = ?",
            (format_timestamp(last_sync_at), sync_error, subscription_id),
        )
        await self.db.commit()

    # Entries

    async def exists_by_guid_hash(self, subscription_id: int, guid_hash: str) -> bool:
        cursor = await self.db.execute(
            "SELECT 1 FROM entries WHERE subscription_id = ? AND guid_hash = ?",
            (subscription_id, guid_hash),
        )
        return await cursor.fetchone() is not None

    async def insert_entry(self, entry: NewEntry) -> Entry:
        """Insert a new entry.

        Args:
            entry: Entry payload

        Returns:
            The stored Entry with its assigned id

        Raises:
            ConflictError: If (subscription_id, guid_hash) already exists
        """
        try:
            cursor = await self.db.execute(
                """
                INSERT INTO entries (
                    subscription_id, guid_hash, title, content_html,
                    published_at, link, status, starred, archived
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.subscription_id,
                    entry.guid_hash,
                    entry.title,
                    entry.content_html,
                    format_timestamp(entry.published_at),
                    entry.link,
                    EntryStatus(entry.status).value,
                    entry.starred,
                    entry.archived,
                ),
            )
            await self.db.commit()
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError(entry.subscription_id, entry.guid_hash) from e
            raise

        return Entry(
            id=cursor.lastrowid,
            subscription_id=entry.subscription_id,
            guid_hash=entry.guid_hash,
            title=entry.title,
            content_html=entry.content_html,
            published_at=entry.published_at,
            link=entry.link,
            status=EntryStatus(entry.status),
            starred=entry.starred,
            archived=entry.archived,
        )

    async def max_published_at(self, subscription_id: int) -> Optional[datetime]:
        cursor = await self.db.execute(
            "SELECT MAX(published_at) as latest FROM entries WHERE subscription_id = ?",
            (subscription_id,),
        )
        row = await cursor.fetchone()
        return parse_timestamp(row["latest"]) if row else None

    async def get_entry(self, entry_id: int) -> Optional[Entry]:
        cursor = await self.db.execute("SELECT * FROM entries WHERE id = ?", (entry_id,))
        row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    async def list_entries(
        self,
        subscription_id: Optional[int] = None,
        include_read: bool = False,
        limit: int = 50,
        since: Optional[datetime] = None,
        before: Optional[datetime] = None,
        days: Optional[int] = None,
        starred: Optional[bool] = None,
        include_archived: bool = False,
        search: Optional[str] = None,
    ) -> List[Entry]:
        """List entries with optional filters for subscription, status and date range.

        Args:
            subscription_id: Optional subscription to filter by
            include_read: Whether to include read entries (default: False)
            limit: Maximum number of entries to return (default: 50)
            since: Only return entries published after this datetime
            before: Only return entries published before this datetime
            days: Shorthand for "last N days" - overrides `since` if provided
            starred: Only starred (True) or unstarred (False) entries; None for both
            include_archived: Whether to include archived entries (default: False)
            search: Case-insensitive substring the title must contain

        Returns:
            List of Entry objects, newest first
        """
        # Handle `days` shorthand - converts to `since`
        if days is not None:
            since = datetime.now(timezone.utc) - timedelta(days=days)

        query = "SELECT * FROM entries WHERE 1 = 1"
        params: List = []

        if not include_archived:
            query += " AND archived = 0"

        if subscription_id is not None:
            query += " AND subscription_id = ?"
            params.append(subscription_id)

        if not include_read:
            query += " AND status = ?"
            params.append(EntryStatus.UNREAD.value)

        if since:
            query += " AND published_at >= ?"
            params.append(format_timestamp(since))

        if before:
            query += " AND published_at < ?"
            params.append(format_timestamp(before))

        if starred is not None:
            query += " AND starred = ?"
            params.append(1 if starred else 0)

        if search:
            query += " AND title LIKE ? ESCAPE '\\'"
            params.append("%" + _escape_like(search) + "%")

        query += " ORDER BY published_at DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = await self.db.execute(query, params)
        return [_row_to_entry(row) async for row in cursor]

    async def set_entry_status(self, entry_id: int, status: EntryStatus) -> Optional[Entry]:
        """Mark an entry read or unread.

        Returns:
            Updated Entry if found, None otherwise
        """
        await self.db.execute(
            "UPDATE entries SET status = ? WHERE id = ?",
            (EntryStatus(status).value, entry_id),
        )
        await self.db.commit()
        return await self.get_entry(entry_id)

    async def set_entry_starred(self, entry_id: int, starred: bool) -> Optional[Entry]:
        """Star or unstar an entry.

        Returns:
            Updated Entry if found, None otherwise
        """
        await self.db.execute(
            "UPDATE entries SET starred = ? WHERE id = ?",
            (1 if starred else 0, entry_id),
        )
        await self.db.commit()
        return await self.get_entry(entry_id)

    async def set_entry_archived(self, entry_id: int, archived: bool) -> Optional[Entry]:
        """Archive an entry, hiding it from default listings, or restore it.

        Returns:
            Updated Entry if found, None otherwise
        """
        await self.db.execute(
            "UPDATE entries SET archived = ? WHERE id = ?",
            (1 if archived else 0, entry_id),
        )
        await self.db.commit()
        return await self.get_entry(entry_id)

    async def mark_all_read(self, subscription_id: Optional[int] = None) -> int:
        """Mark every unread entry read, optionally for one subscription.

        Returns:
            Number of entries changed
        """
        query = "UPDATE entries SET status = ? WHERE status = ?"
        params: List = [EntryStatus.READ.value, EntryStatus.UNREAD.value]
        if subscription_id is not None:
            query += " AND subscription_id = ?"
            params.append(subscription_id)

        cursor = await self.db.execute(query, params)
        await self.db.commit()
        return cursor.rowcount


# Singleton store
_store: Optional[SqliteEntryStore] = None


async def get_store() -> SqliteEntryStore:
    """Get or create the process-wide store.

    Returns:
        Initialized SqliteEntryStore
    """
    global _store

    if _store is None:
        _store = await SqliteEntryStore.connect(_get_db_path())

    return _store


async def close_store() -> None:
    """Close the process-wide store."""
    global _store

    if _store is not None:
        await _store.close()
        _store = None
