"""Feed validation service.

This module checks that a URL serves an RSS/Atom feed before it is added as
a subscription, and extracts the metadata shown when adding it.
"""

from typing import Optional
from urllib.parse import urlparse

import feedparser
import httpx

from lesefluss.config import get_config
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.services.feed_fetcher import FEED_ACCEPT

VALIDATION_TIMEOUT = 8.0


def _invalid() -> dict:
    return {"ok": False, "title": "", "type": "unknown"}


def _feed_type(version: str) -> str:
    if version.startswith("atom"):
        return "atom"
    if version.startswith("rss"):
        return "rss"
    return "unknown"


def _feed_image(meta) -> Optional[str]:
    image = meta.get("image") or {}
    return image.get("href") or image.get("url") or meta.get("icon") or meta.get("logo")


def describe_feed(document: str) -> dict:
    """Extract validation metadata from a feed document.

    Args:
        document: Raw feed text

    Returns:
        Dict with ok, title, type, imageUrl, siteUrl and itemCount
    """
    feed = feedparser.parse(document)

    # Parse errors with no usable content
    if feed.bozo and not feed.entries and not feed.feed.get("title"):
        return _invalid()

    feed_type = _feed_type(feed.get("version", ""))
    if feed_type == "unknown" and not feed.entries:
        return _invalid()

    meta = feed.feed
    site_url = meta.get("link") or None
    image_url = _feed_image(meta)

    # Fall back to the site's favicon
    if not image_url and site_url:
        parsed = urlparse(site_url)
        if parsed.scheme and parsed.netloc:
            image_url = f"{parsed.scheme}://{parsed.netloc}/favicon.ico"

    return {
        "ok": True,
        "title": meta.get("title", ""),
        "type": feed_type,
        "imageUrl": image_url,
        "siteUrl": site_url,
        "itemCount": len(feed.entries),
    }


async def validate_feed_url(url: str, timeout: float = VALIDATION_TIMEOUT) -> dict:
    """Validate that a URL returns a valid RSS/Atom feed.

    Network failures and non-200 responses are reported as ``ok: False``
    rather than raised, so a subscription can still be added without
    metadata.

    Args:
        url: Feed URL to validate
        timeout: Request timeout in seconds

    Returns:
        Dict as returned by describe_feed
    """
    logger = UnifiedLogger.get_logger(__name__)
    config = get_config()

    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": config.user_agent, "Accept": FEED_ACCEPT},
        ) as client:
            response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Feed validation request failed for {url}: {e}")
        return _invalid()

    if response.status_code != 200:
        logger.info(f"Feed validation for {url} got HTTP {response.status_code}")
        return _invalid()

    result = describe_feed(response.text)
    logger.info(f"Validated {url}: ok={result['ok']} type={result['type']}")
    return result
