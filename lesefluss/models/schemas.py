"""Data models for lesefluss.

This module defines the core data structures for feeds, subscriptions and
entries, plus the result types reported by a sync run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class EntryStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"


class SyncMode(str, Enum):
    """Which parsed items a sync run considers.

    FULL considers every item, NEWER only items published after the newest
    stored entry, LATEST only the single newest item.
    """

    FULL = "full"
    NEWER = "newer"
    LATEST = "latest"


@dataclass
class FetchedFeed:
    """Raw feed document as returned by the fetcher."""

    url: str
    content: str
    content_type: Optional[str] = None


@dataclass
class FeedItem:
    """A single item of a parsed feed, normalized across RSS and Atom.

    ``guid_supplied`` and ``date_supplied`` record whether the id and the
    publication date came from the feed or were synthesized by the parser.
    """

    guid: str
    title: str
    content_html: str
    published_at: datetime
    link: Optional[str] = None
    author: Optional[str] = None
    guid_supplied: bool = True
    date_supplied: bool = True


@dataclass
class ParsedFeed:
    """Dialect-neutral result of parsing one feed document."""

    title: str
    items: List[FeedItem]
    last_updated: datetime
    description: Optional[str] = None
    link: Optional[str] = None


@dataclass
class Subscription:
    """A newsletter feed the user follows."""

    id: int
    feed_url: str
    title: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class NewEntry:
    """Insert payload for an entry; the store assigns the id."""

    subscription_id: int
    guid_hash: str
    title: str
    content_html: str
    published_at: datetime
    link: Optional[str] = None
    status: EntryStatus = EntryStatus.UNREAD
    starred: bool = False
    archived: bool = False


@dataclass
class Entry:
    """A stored newsletter issue."""

    id: int
    subscription_id: int
    guid_hash: str
    title: str
    content_html: str
    published_at: datetime
    link: Optional[str]
    status: EntryStatus
    starred: bool
    archived: bool


@dataclass
class SyncResult:
    """Outcome of syncing one subscription."""

    subscription_id: int
    title: str
    inserted: int = 0
    skipped: int = 0
    total_items: int = 0
    error: Optional[str] = None
    item_errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "subscription": self.title,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "total_items": self.total_items,
            "error": self.error,
            "item_errors": list(self.item_errors),
        }


@dataclass
class BatchSyncResult:
    """Outcome of syncing several subscriptions in one batch."""

    results: List[SyncResult] = field(default_factory=list)

    @property
    def total_inserted(self) -> int:
        return sum(r.inserted for r in self.results)

    @property
    def failed(self) -> List[SyncResult]:
        return [r for r in self.results if not r.ok]

    def to_dict(self) -> dict:
        return {
            "subscriptions_processed": len(self.results),
            "total_inserted": self.total_inserted,
            "failed": len(self.failed),
            "results": [r.to_dict() for r in self.results],
        }
