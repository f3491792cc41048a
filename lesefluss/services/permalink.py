"""Permalink resolution at sync time.

Newsletter-to-feed bridges publish each issue under
``/feeds/{feed_id}/entries/{entry_id}.html`` on the host that serves the
feed. When an item carries no link of its own, that convention lets us
rebuild one from the feed URL plus an entry id found in the item.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from lesefluss.models.schemas import FeedItem

_FEED_ID = re.compile(r"/feeds/([^./]+)(?:\.xml)?$")
_ENTRY_ID = re.compile(r"/entries/([A-Za-z0-9_-]+)\.html")
_HREF = re.compile(r"""href\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_GUID_TAIL = re.compile(r"([^:]+)$")


def derive_feed_id(feed_url: Optional[str]) -> Optional[str]:
    """Extract the bridge feed id from a feed URL path, if it follows the convention."""
    if not feed_url:
        return None
    match = _FEED_ID.search(urlparse(feed_url).path)
    return match.group(1) if match else None


def derive_entry_id(item: FeedItem) -> Optional[str]:
    """Find the bridge entry id for an item.

    Looks at the item link, then at links embedded in the content, then at
    the trailing ``:``-separated segment of a feed-supplied guid.
    """
    candidates = [item.link or ""]
    candidates.extend(_HREF.findall(item.content_html or ""))
    for candidate in candidates:
        match = _ENTRY_ID.search(candidate)
        if match:
            return match.group(1)

    if item.guid_supplied and item.guid:
        match = _GUID_TAIL.search(item.guid.strip())
        if match:
            return match.group(1)
    return None


def resolve_permalink(feed_url: str, item: FeedItem) -> Optional[str]:
    """Best-effort external URL for an item.

    Args:
        feed_url: URL of the subscription's feed
        item: Parsed feed item

    Returns:
        The item's own link, a link derived from the bridge URL convention,
        or None when neither is available
    """
    if item.link and item.link.strip():
        return item.link.strip()

    feed_id = derive_feed_id(feed_url)
    entry_id = derive_entry_id(item)
    if not feed_id or not entry_id:
        return None

    parsed = urlparse(feed_url)
    return f"{parsed.scheme}://{parsed.netloc}/feeds/{feed_id}/entries/{entry_id}.html"
