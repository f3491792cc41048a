"""Subscription sync.

One sync run for a subscription goes fetch -> parse -> cutoff -> select ->
insert -> finalize. Fetch and parse failures end that subscription's run;
insert failures are recorded per item and the run continues. Batches are
processed one subscription at a time with a pause in between so a shared
upstream host is not hit by every subscription at once.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional

from lesefluss.config import get_config
from lesefluss.errors import ConflictError, FetchError, ParseError
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import (
    BatchSyncResult,
    FeedItem,
    FetchedFeed,
    NewEntry,
    ParsedFeed,
    Subscription,
    SubscriptionStatus,
    SyncMode,
    SyncResult,
)
from lesefluss.services.feed_fetcher import fetch_feed
from lesefluss.services.feed_parser import parse_feed_document
from lesefluss.services.guid import entry_guid_hash
from lesefluss.services.permalink import resolve_permalink
from lesefluss.storage.base import EntryStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def select_candidates(
    items: Iterable[FeedItem],
    mode: SyncMode,
    cutoff: Optional[datetime] = None,
) -> List[FeedItem]:
    """Choose which parsed items a sync run should try to insert.

    Args:
        items: Parsed feed items in any order
        mode: FULL (every item), NEWER (after cutoff, oldest first) or
            LATEST (the single newest item)
        cutoff: Newest stored publication date, used by NEWER only

    Returns:
        Candidate items in insertion order
    """
    items = list(items)
    mode = SyncMode(mode)

    if mode is SyncMode.FULL:
        return items

    if mode is SyncMode.LATEST:
        if not items:
            return []
        return [max(items, key=lambda item: item.published_at)]

    ordered = sorted(items, key=lambda item: item.published_at)
    if cutoff is None:
        return ordered
    return [item for item in ordered if item.published_at > cutoff]


class SyncOrchestrator:
    """Runs the sync pipeline against an EntryStore."""

    def __init__(
        self,
        store: EntryStore,
        *,
        fetch: Callable[[str], Awaitable[FetchedFeed]] = fetch_feed,
        parse: Callable[..., ParsedFeed] = parse_feed_document,
        delay_seconds: Optional[float] = None,
        max_items: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = get_config()
        self.store = store
        self._fetch = fetch
        self._parse = parse
        self.delay_seconds = config.sync_delay_seconds if delay_seconds is None else delay_seconds
        self.max_items = config.max_items_per_feed if max_items is None else max_items
        self._clock = clock
        self._sleep = sleep

    async def sync_subscription(
        self,
        subscription: Subscription,
        mode: SyncMode = SyncMode.FULL,
    ) -> SyncResult:
        """Sync one subscription.

        Args:
            subscription: Subscription to sync
            mode: Candidate selection mode

        Returns:
            SyncResult with insert/skip counts and any error
        """
        logger = UnifiedLogger.get_logger(__name__)
        mode = SyncMode(mode)
        result = SyncResult(subscription_id=subscription.id, title=subscription.title)

        try:
            fetched = await self._fetch(subscription.feed_url)
            parsed = self._parse(fetched.content, max_items=self.max_items, now=self._clock())
        except (FetchError, ParseError) as e:
            result.error = str(e)
            logger.warning(f"Sync failed for '{subscription.title}': {e}")
            await self._finalize(subscription, result)
            return result
        except Exception as e:
            result.error = f"Unexpected error: {e}"
            logger.error(f"Sync failed for '{subscription.title}': {type(e).__name__}: {e}")
            await self._finalize(subscription, result)
            return result

        result.total_items = len(parsed.items)

        try:
            await self._store_items(subscription, parsed.items, mode, result)
        except Exception as e:
            result.error = f"Unexpected error: {e}"
            logger.error(f"Storing entries failed for '{subscription.title}': {type(e).__name__}: {e}")

        await self._finalize(subscription, result)
        logger.info(
            f"Synced '{subscription.title}': {result.inserted} inserted, {result.skipped} skipped"
        )
        return result

    async def _store_items(
        self,
        subscription: Subscription,
        items: List[FeedItem],
        mode: SyncMode,
        result: SyncResult,
    ) -> None:
        logger = UnifiedLogger.get_logger(__name__)

        cutoff = None
        if mode is SyncMode.NEWER:
            cutoff = await self.store.max_published_at(subscription.id)

        candidates = select_candidates(items, mode, cutoff)
        logger.info(
            f"Syncing '{subscription.title}' ({mode.value}): "
            f"{len(candidates)} of {len(items)} items are candidates"
        )

        attempted = 0
        for item in candidates:
            guid_hash = entry_guid_hash(item)

            if await self.store.exists_by_guid_hash(subscription.id, guid_hash):
                result.skipped += 1
                continue

            attempted += 1
            entry = NewEntry(
                subscription_id=subscription.id,
                guid_hash=guid_hash,
                title=item.title,
                content_html=item.content_html,
                published_at=item.published_at,
                link=resolve_permalink(subscription.feed_url, item),
            )

            try:
                await self.store.insert_entry(entry)
                result.inserted += 1
            except ConflictError:
                # Inserted by a concurrent run since the existence check
                result.skipped += 1
            except Exception as e:
                message = f"{item.title}: {e}"
                result.item_errors.append(message)
                logger.warning(f"Failed to insert entry for '{subscription.title}': {message}")

        if attempted and len(result.item_errors) == attempted:
            result.error = f"All {attempted} inserts failed: {result.item_errors[0]}"

    async def _finalize(self, subscription: Subscription, result: SyncResult) -> None:
        await self.store.update_subscription_sync_result(
            subscription.id, self._clock(), result.error
        )

    async def sync_all(
        self,
        mode: SyncMode = SyncMode.NEWER,
        subscriptions: Optional[List[Subscription]] = None,
    ) -> BatchSyncResult:
        """Sync several subscriptions one after another.

        Args:
            mode: Candidate selection mode for every subscription
            subscriptions: Subscriptions to sync; defaults to every active
                subscription in the store (which must then provide
                ``list_subscriptions``)

        Returns:
            BatchSyncResult with one SyncResult per subscription
        """
        logger = UnifiedLogger.get_logger(__name__)

        if subscriptions is None:
            subscriptions = await self.store.list_subscriptions(SubscriptionStatus.ACTIVE)

        batch = BatchSyncResult()
        for index, subscription in enumerate(subscriptions):
            if index > 0 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

            try:
                result = await self.sync_subscription(subscription, mode)
            except Exception as e:
                logger.warning(f"Sync aborted for '{subscription.title}': {e}")
                result = SyncResult(
                    subscription_id=subscription.id,
                    title=subscription.title,
                    error=str(e),
                )
            batch.results.append(result)

        logger.info(
            f"Batch sync done: {len(batch.results)} subscriptions, "
            f"{batch.total_inserted} inserted, {len(batch.failed)} failed"
        )
        return batch
