"""Lesefluss MCP tools.

This module provides MCP tools for managing newsletter subscriptions,
syncing their feeds and reading entries.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List

from mcp.server.fastmcp import Context

from lesefluss.errors import FetchError
from lesefluss.html.render import render_entry_html
from lesefluss.html.sanitizer import extract_text
from lesefluss.html.transformer import TransformOptions
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import Entry, EntryStatus, SubscriptionStatus, SyncMode
from lesefluss.runtime import AppServices
from lesefluss.services.feed_validation import validate_feed_url


def _entry_summary(entry: Entry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "subscription_id": entry.subscription_id,
        "title": entry.title,
        "link": entry.link,
        "published_at": entry.published_at.isoformat(),
        "status": entry.status.value,
        "starred": entry.starred,
        "archived": entry.archived,
    }


def _subscription_summary(subscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "feed_url": subscription.feed_url,
        "title": subscription.title,
        "status": subscription.status.value,
        "last_sync_at": subscription.last_sync_at.isoformat() if subscription.last_sync_at else None,
        "sync_error": subscription.sync_error,
        "image_url": subscription.image_url,
    }


def create_entry_tools(services: AppServices) -> List[Callable]:
    """Build the MCP tool functions bound to ``services``.

    Args:
        services: Collaborators created at server startup

    Returns:
        List of async tool functions for registration
    """

    async def add_subscription(
        feed_url: str,
        title: str = "",
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Subscribe to a newsletter feed.

        The feed is validated first; its title and image are used when no
        title is given. A feed that cannot be validated is still added, so
        newsletters whose feed is empty until the first issue arrives work.

        Args:
            feed_url: RSS/Atom feed URL (will be normalized to https:// if no scheme)
            title: Display title (empty string to use the feed's own title)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - subscription: object with id, feed_url, title, status, image_url
            - validated: whether the URL served a recognizable feed
            - error: string if success is False
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"add_subscription called: feed_url={feed_url}, title={title}")

        # Normalize URL
        if not feed_url.startswith(("http://", "https://")):
            feed_url = "https://" + feed_url

        validation = await validate_feed_url(feed_url)
        title = title or validation.get("title") or feed_url

        store = await services.get_store()
        try:
            subscription = await store.add_subscription(
                feed_url=feed_url,
                title=title,
                image_url=validation.get("imageUrl"),
            )
        except ValueError as e:
            return {
                "success": False,
                "error": str(e),
            }

        return {
            "success": True,
            "subscription": _subscription_summary(subscription),
            "validated": validation["ok"],
        }

    async def remove_subscription(subscription_id: int, ctx: Context = None) -> Dict[str, Any]:
        """Remove a subscription and all of its entries.

        This permanently deletes the subscription and its stored issues. This
        action cannot be undone.

        Args:
            subscription_id: Database ID of the subscription (from list_subscriptions)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - message: confirmation string if successful
            - entries_deleted: count of entries removed
            - error: string if subscription not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"remove_subscription called: subscription_id={subscription_id}")

        store = await services.get_store()
        success, entry_count = await store.remove_subscription(subscription_id)

        if success:
            return {
                "success": True,
                "message": f"Removed subscription {subscription_id} and {entry_count} entries",
                "entries_deleted": entry_count,
            }
        else:
            return {
                "success": False,
                "error": f"Subscription {subscription_id} not found",
            }

    async def list_subscriptions(ctx: Context = None) -> Dict[str, Any]:
        """List all subscriptions with entry counts and sync state.

        Args:
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - count: number of subscriptions
            - subscriptions: list with id, feed_url, title, status, last_sync_at,
              sync_error, image_url, total_entries, unread_entries
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info("list_subscriptions called")

        store = await services.get_store()
        subscriptions = await store.list_subscription_summaries()

        return {
            "success": True,
            "count": len(subscriptions),
            "subscriptions": subscriptions,
        }

    async def set_subscription_status(
        subscription_id: int,
        status: str,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Pause or resume a subscription.

        Paused subscriptions are skipped when syncing all subscriptions.

        Args:
            subscription_id: Database ID of the subscription
            status: "active" or "paused"
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - subscription: updated subscription object
            - error: string if the status is invalid or the subscription not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"set_subscription_status called: subscription_id={subscription_id}, status={status}")

        if status not in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value):
            return {
                "success": False,
                "error": f"Invalid status '{status}'. Use 'active' or 'paused'",
            }

        store = await services.get_store()
        subscription = await store.set_subscription_status(subscription_id, SubscriptionStatus(status))

        if subscription:
            return {
                "success": True,
                "subscription": _subscription_summary(subscription),
            }
        else:
            return {
                "success": False,
                "error": f"Subscription {subscription_id} not found",
            }

    async def sync_subscriptions(
        subscription_id: int = 0,
        mode: str = "newer",
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Fetch subscription feeds and store new entries.

        Subscriptions are synced one at a time with a short pause between
        them. A failing subscription records its error and does not stop the
        others.

        Args:
            subscription_id: Sync only this subscription (0 syncs all active subscriptions)
            mode: "newer" (only items newer than the newest stored entry),
                "full" (every item in the feed) or "latest" (only the newest item)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - subscriptions_processed: number of subscriptions synced
            - total_inserted: new entries stored across all subscriptions
            - failed: number of subscriptions whose sync failed
            - results: per-subscription inserted/skipped counts and errors
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"sync_subscriptions called: subscription_id={subscription_id}, mode={mode}")

        try:
            sync_mode = SyncMode(mode)
        except ValueError:
            return {
                "success": False,
                "error": f"Invalid mode '{mode}'. Use 'newer', 'full' or 'latest'",
            }

        store = await services.get_store()
        orchestrator = await services.orchestrator()

        subscriptions = None
        if subscription_id:
            subscription = await store.get_subscription(subscription_id)
            if not subscription:
                return {
                    "success": False,
                    "error": f"Subscription {subscription_id} not found",
                }
            subscriptions = [subscription]

        batch = await orchestrator.sync_all(sync_mode, subscriptions)

        return {
            "success": True,
            **batch.to_dict(),
        }

    async def list_entries(
        subscription_id: int = 0,
        include_read: bool = False,
        limit: int = 50,
        since: str = "",
        before: str = "",
        days: int = 0,
        starred_only: bool = False,
        include_archived: bool = False,
        search: str = "",
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """List stored entries, newest first.

        Args:
            subscription_id: Only entries of this subscription (0 for all)
            include_read: Include entries marked as read (default: False, only unread)
            limit: Maximum number of entries to return (default: 50)
            since: Only entries published after this date (ISO format, empty string for no filter)
            before: Only entries published before this date (ISO format, empty string for no filter)
            days: Shorthand for "last N days" - if > 0, overrides `since` (0 means no filter)
            starred_only: Only starred entries (default: False)
            include_archived: Include archived entries (default: False)
            search: Case-insensitive text the title must contain (empty string for no filter)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - count: number of entries returned
            - entries: list with id, subscription_id, title, link, published_at, status, starred, archived
            - filters_applied: summary of active filters
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(
            f"list_entries called: subscription_id={subscription_id}, include_read={include_read}, "
            f"limit={limit}, since={since}, before={before}, days={days}, "
            f"starred_only={starred_only}, include_archived={include_archived}, search={search}"
        )

        # Parse date strings to datetime objects
        since_dt = None
        before_dt = None

        if since:
            try:
                since_dt = datetime.fromisoformat(since)
            except ValueError:
                return {
                    "success": False,
                    "error": f"Invalid 'since' date format: {since}. Use ISO format like '2025-01-01'",
                }

        if before:
            try:
                before_dt = datetime.fromisoformat(before)
            except ValueError:
                return {
                    "success": False,
                    "error": f"Invalid 'before' date format: {before}. Use ISO format like '2025-01-01'",
                }

        store = await services.get_store()
        entries = await store.list_entries(
            subscription_id=subscription_id or None,
            include_read=include_read,
            limit=limit,
            since=since_dt,
            before=before_dt,
            days=days if days > 0 else None,
            starred=True if starred_only else None,
            include_archived=include_archived,
            search=search or None,
        )

        return {
            "success": True,
            "count": len(entries),
            "filters_applied": {
                "subscription_id": subscription_id or None,
                "include_read": include_read,
                "limit": limit,
                "days": days if days > 0 else None,
                "since": since or None,
                "before": before or None,
                "starred_only": starred_only,
                "include_archived": include_archived,
                "search": search or None,
            },
            "entries": [_entry_summary(entry) for entry in entries],
        }

    async def render_entry(
        entry_id: int,
        max_width: str = "100%",
        enable_dark_mode: bool = True,
        ctx: Context = None,
    ) -> Dict[str, Any]:
        """Render an entry's newsletter HTML for display.

        The stored content is sanitized, made responsive and its images are
        pointed at the image proxy.

        Args:
            entry_id: Database ID of the entry (from list_entries)
            max_width: CSS max-width of the rendered container
            enable_dark_mode: Replace hard-coded colours with theme colours
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - entry: entry summary
            - preview: plain-text preview
            - html: display-ready HTML
            - error: string if entry not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"render_entry called: entry_id={entry_id}")

        store = await services.get_store()
        entry = await store.get_entry(entry_id)
        if not entry:
            return {
                "success": False,
                "error": f"Entry with id {entry_id} not found",
            }

        options = TransformOptions(max_width=max_width or "100%", enable_dark_mode=enable_dark_mode)
        html = render_entry_html(
            entry.content_html,
            proxy=services.image_proxy,
            source_id=str(entry.subscription_id),
            options=options,
        )

        return {
            "success": True,
            "entry": _entry_summary(entry),
            "preview": extract_text(entry.content_html),
            "html": html,
        }

    async def resolve_entry_link(entry_id: int, ctx: Context = None) -> Dict[str, Any]:
        """Find the web link of an entry.

        Uses the stored link when there is one; otherwise the subscription's
        live feed is fetched and searched for the entry by title and date.

        Args:
            entry_id: Database ID of the entry
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - link: URL of the entry
            - source: "stored" or "feed"
            - error: string if no link could be found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"resolve_entry_link called: entry_id={entry_id}")

        store = await services.get_store()
        entry = await store.get_entry(entry_id)
        if not entry:
            return {
                "success": False,
                "error": f"Entry with id {entry_id} not found",
            }

        if entry.link:
            return {"success": True, "link": entry.link, "source": "stored"}

        subscription = await store.get_subscription(entry.subscription_id)
        if not subscription:
            return {
                "success": False,
                "error": f"Subscription {entry.subscription_id} not found",
            }

        try:
            link = await services.link_resolver.resolve(
                subscription.feed_url,
                title=entry.title,
                published_at=entry.published_at.isoformat(),
            )
        except FetchError as e:
            return {
                "success": False,
                "error": str(e),
            }

        if not link:
            return {
                "success": False,
                "error": "No link found",
            }

        return {"success": True, "link": link, "source": "feed"}

    async def _set_status(entry_id: int, status: EntryStatus) -> Dict[str, Any]:
        store = await services.get_store()
        entry = await store.set_entry_status(entry_id, status)

        if entry:
            return {
                "success": True,
                "entry": _entry_summary(entry),
            }
        else:
            return {
                "success": False,
                "error": f"Entry with id {entry_id} not found",
            }

    async def mark_entry_read(entry_id: int, ctx: Context = None) -> Dict[str, Any]:
        """Mark an entry as read.

        Args:
            entry_id: Database ID of the entry (from list_entries)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - entry: updated entry summary (if found)
            - error: string if entry not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"mark_entry_read called: entry_id={entry_id}")
        return await _set_status(entry_id, EntryStatus.READ)

    async def mark_entry_unread(entry_id: int, ctx: Context = None) -> Dict[str, Any]:
        """Mark an entry as unread.

        Args:
            entry_id: Database ID of the entry (from list_entries)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - entry: updated entry summary (if found)
            - error: string if entry not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"mark_entry_unread called: entry_id={entry_id}")
        return await _set_status(entry_id, EntryStatus.UNREAD)

    async def mark_all_read(subscription_id: int = 0, ctx: Context = None) -> Dict[str, Any]:
        """Mark every unread entry as read.

        Args:
            subscription_id: Only entries of this subscription (0 for all)
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - marked: number of entries changed
            - error: string if the subscription does not exist
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"mark_all_read called: subscription_id={subscription_id}")

        store = await services.get_store()
        if subscription_id and await store.get_subscription(subscription_id) is None:
            return {
                "success": False,
                "error": f"Subscription with id {subscription_id} not found",
            }

        marked = await store.mark_all_read(subscription_id or None)
        return {"success": True, "marked": marked}

    async def star_entry(entry_id: int, starred: bool = True, ctx: Context = None) -> Dict[str, Any]:
        """Star or unstar an entry.

        Args:
            entry_id: Database ID of the entry (from list_entries)
            starred: True to star, False to remove the star
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - entry: updated entry summary (if found)
            - error: string if entry not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"star_entry called: entry_id={entry_id}, starred={starred}")

        store = await services.get_store()
        entry = await store.set_entry_starred(entry_id, starred)
        if entry is None:
            return {"success": False, "error": f"Entry with id {entry_id} not found"}
        return {"success": True, "entry": _entry_summary(entry)}

    async def archive_entry(entry_id: int, archived: bool = True, ctx: Context = None) -> Dict[str, Any]:
        """Archive an entry so it no longer appears in default listings.

        Args:
            entry_id: Database ID of the entry (from list_entries)
            archived: True to archive, False to restore
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - entry: updated entry summary (if found)
            - error: string if entry not found
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"archive_entry called: entry_id={entry_id}, archived={archived}")

        store = await services.get_store()
        entry = await store.set_entry_archived(entry_id, archived)
        if entry is None:
            return {"success": False, "error": f"Entry with id {entry_id} not found"}
        return {"success": True, "entry": _entry_summary(entry)}

    async def validate_feed(feed_url: str, ctx: Context = None) -> Dict[str, Any]:
        """Check whether a URL serves an RSS or Atom feed.

        Args:
            feed_url: URL to check
            ctx: MCP Context object (injected automatically)

        Returns:
            Dictionary with:
            - success: bool
            - ok: whether the URL is a feed
            - title, type ("rss", "atom" or "unknown"), imageUrl, siteUrl, itemCount
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"validate_feed called: feed_url={feed_url}")

        result = await validate_feed_url(feed_url)
        return {"success": True, **result}

    return [
        add_subscription,
        remove_subscription,
        list_subscriptions,
        set_subscription_status,
        sync_subscriptions,
        list_entries,
        render_entry,
        resolve_entry_link,
        mark_entry_read,
        mark_entry_unread,
        mark_all_read,
        star_entry,
        archive_entry,
        validate_feed,
    ]
