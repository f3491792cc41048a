"""Long-lived collaborators shared by the MCP tools and HTTP routes.

One AppServices is built when the server starts and handed to the tool
factory and the HTTP boundary; nothing here is a module-level singleton.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable

from lesefluss.config import ServerConfig
from lesefluss.images.cache import ImageCache, LocalBlobStore
from lesefluss.images.proxy import ImageProxy
from lesefluss.services.link_resolver import LinkCache, LinkResolver
from lesefluss.services.sync import SyncOrchestrator
from lesefluss.storage.database import SqliteEntryStore, get_store


@dataclass
class AppServices:
    config: ServerConfig
    get_store: Callable[[], Awaitable[SqliteEntryStore]]
    image_proxy: ImageProxy
    blob_store: LocalBlobStore
    image_cache: ImageCache
    link_resolver: LinkResolver

    @classmethod
    def from_config(cls, config: ServerConfig) -> "AppServices":
        """Build the default collaborators for a configuration."""
        blob_store = LocalBlobStore(config.image_cache_dir, config.image_cache_url)
        return cls(
            config=config,
            get_store=get_store,
            image_proxy=ImageProxy(config.public_base_url, config.image_cache_url),
            blob_store=blob_store,
            image_cache=ImageCache(
                blob_store,
                timeout=config.image_fetch_timeout,
                upload_attempts=config.image_upload_attempts,
                user_agent=config.user_agent,
            ),
            link_resolver=LinkResolver(LinkCache()),
        )

    async def orchestrator(self) -> SyncOrchestrator:
        """A sync orchestrator bound to the current store."""
        store = await self.get_store()
        return SyncOrchestrator(
            store,
            delay_seconds=self.config.sync_delay_seconds,
            max_items=self.config.max_items_per_feed,
        )
