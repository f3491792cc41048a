"""Display-time permalink resolution.

When a stored entry has no link, the live feed is fetched again and the
entry is matched by title, falling back to the nearest publication date.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import feedparser

from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import FetchedFeed
from lesefluss.services.feed_fetcher import fetch_feed
from lesefluss.services.feed_parser import parse_date

_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: Optional[str]) -> str:
    """Lowercase and collapse whitespace for title comparison."""
    return _WHITESPACE.sub(" ", (title or "").lower()).strip()


@dataclass
class LiveEntry:
    title: str
    link: Optional[str]
    published_at: Optional[datetime]


class LinkCache:
    """Memo of resolved links, keyed by feed URL, title and date.

    One instance is created at startup and handed to the resolver. Entries
    are never expired; links of published issues do not change.
    """

    def __init__(self):
        self._links: Dict[Tuple[str, str, str], str] = {}

    @staticmethod
    def key(feed_url: str, title: Optional[str], published_at: Optional[str]) -> Tuple[str, str, str]:
        return (feed_url, normalize_title(title), published_at or "")

    def get(self, key: Tuple[str, str, str]) -> Optional[str]:
        return self._links.get(key)

    def put(self, key: Tuple[str, str, str], link: str) -> None:
        self._links[key] = link

    def clear(self) -> None:
        self._links.clear()

    def __len__(self) -> int:
        return len(self._links)


def _entry_link(entry) -> Optional[str]:
    """Prefer a text/html link when the entry has several."""
    for link in entry.get("links", []):
        if (link.get("type") or "").lower() == "text/html" and link.get("href"):
            return link["href"]
    return entry.get("link") or None


def _entry_date(entry) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def live_entries(document: str) -> List[LiveEntry]:
    """Flatten a feed document into (title, link, date) records using feedparser."""
    feed = feedparser.parse(document)
    return [
        LiveEntry(
            title=entry.get("title", ""),
            link=_entry_link(entry),
            published_at=_entry_date(entry),
        )
        for entry in feed.entries
    ]


def match_entry(
    entries: List[LiveEntry],
    title: Optional[str] = None,
    published_at: Optional[datetime] = None,
) -> Optional[LiveEntry]:
    """Pick the live entry that corresponds to a stored one.

    Title equality, then prefix, then substring (all normalized); if no title
    matches, the entry published closest to ``published_at``.
    """
    wanted = normalize_title(title)
    if wanted:
        titles = [(normalize_title(e.title), e) for e in entries]
        for matches in (
            lambda t: t == wanted,
            lambda t: t.startswith(wanted),
            lambda t: wanted in t,
        ):
            for normalized, entry in titles:
                if matches(normalized):
                    return entry

    if published_at is not None:
        dated = [e for e in entries if e.published_at is not None]
        if dated:
            return min(dated, key=lambda e: abs((e.published_at - published_at).total_seconds()))

    return None


class LinkResolver:
    """Resolves a missing permalink against the live feed."""

    def __init__(
        self,
        cache: LinkCache,
        fetch: Callable[[str], Awaitable[FetchedFeed]] = fetch_feed,
    ):
        self.cache = cache
        self._fetch = fetch

    async def resolve(
        self,
        feed_url: str,
        title: Optional[str] = None,
        published_at: Optional[str] = None,
    ) -> Optional[str]:
        """Find the link of an entry in the live feed.

        Args:
            feed_url: Subscription feed URL
            title: Stored entry title
            published_at: Stored entry publication date (ISO or RFC 2822)

        Returns:
            The matched entry's link, or None if nothing matched

        Raises:
            FetchError: If the live feed cannot be fetched
        """
        logger = UnifiedLogger.get_logger(__name__)

        key = LinkCache.key(feed_url, title, published_at)
        cached = self.cache.get(key)
        if cached:
            return cached

        fetched = await self._fetch(feed_url)
        entries = live_entries(fetched.content)
        match = match_entry(entries, title, parse_date(published_at or ""))

        if match is None or not match.link:
            logger.info(f"No link found in {feed_url} for '{title}'")
            return None

        self.cache.put(key, match.link)
        logger.info(f"Resolved link for '{title}': {match.link}")
        return match.link
