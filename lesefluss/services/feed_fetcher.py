"""Feed fetcher service.

This module retrieves raw feed documents over HTTP with retry and backoff.
"""

import asyncio
from typing import Optional

import httpx

from lesefluss.config import get_config
from lesefluss.errors import FetchError
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import FetchedFeed

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"


async def fetch_feed(
    url: str,
    *,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    backoff_base: Optional[float] = None,
    user_agent: Optional[str] = None,
) -> FetchedFeed:
    """Fetch a feed document, retrying transient failures.

    HTTP 429 is retried with exponential backoff (``backoff_base * 2**attempt``),
    network errors and timeouts with linear backoff (``backoff_base * attempt``).
    Any other non-2xx status fails immediately.

    Args:
        url: Feed URL (http or https)
        timeout: Per-request timeout in seconds
        max_attempts: Total number of attempts before giving up
        backoff_base: Base delay in seconds
        user_agent: User-Agent header value

    Returns:
        FetchedFeed with the document text and content type

    Raises:
        FetchError: If the feed cannot be retrieved
    """
    config = get_config()
    timeout = config.fetch_timeout if timeout is None else timeout
    max_attempts = config.fetch_max_attempts if max_attempts is None else max_attempts
    backoff_base = config.fetch_backoff_base if backoff_base is None else backoff_base
    user_agent = user_agent or config.user_agent

    logger = UnifiedLogger.get_logger(__name__)

    if not url.startswith(("http://", "https://")):
        raise FetchError(f"Unsupported feed URL: {url}", url=url)

    headers = {
        "User-Agent": user_agent,
        "Accept": FEED_ACCEPT,
        "Cache-Control": "no-cache",
    }

    last_error = "Max retries exceeded"
    last_status = None

    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers=headers,
    ) as client:
        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.get(url)
            except httpx.InvalidURL as e:
                raise FetchError(f"Invalid feed URL: {e}", url=url) from e
            except httpx.TransportError as e:
                last_error = f"Network error: {e}"
                if attempt == max_attempts:
                    break
                wait = backoff_base * attempt
                logger.info(f"Fetch attempt {attempt} for {url} failed ({e}), retrying in {wait}s")
                await asyncio.sleep(wait)
                continue
            except httpx.HTTPError as e:
                raise FetchError(f"HTTP error: {e}", url=url) from e

            if 200 <= response.status_code < 300:
                logger.info(f"Fetched feed {url}, length: {len(response.text)}")
                return FetchedFeed(
                    url=url,
                    content=response.text,
                    content_type=response.headers.get("content-type"),
                )

            last_status = response.status_code
            last_error = f"HTTP {response.status_code}: {response.reason_phrase}"

            if response.status_code == 429 and attempt < max_attempts:
                wait = backoff_base * (2 ** attempt)
                logger.info(f"Rate limited by {url}, waiting {wait}s before retry {attempt + 1}")
                await asyncio.sleep(wait)
                continue

            break

    logger.warning(f"Failed to fetch feed {url}: {last_error}")
    raise FetchError(last_error, status=last_status, url=url)
