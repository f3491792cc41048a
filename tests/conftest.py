"""Shared pytest fixtures."""

import pytest
from unittest.mock import AsyncMock

from lesefluss.config import ServerConfig
from lesefluss.images.cache import ImageCache, LocalBlobStore
from lesefluss.images.proxy import ImageProxy
from lesefluss.runtime import AppServices
from lesefluss.services.link_resolver import LinkCache, LinkResolver
from lesefluss.storage.database import SqliteEntryStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def store():
    """Create an in-memory store for testing."""
    store = await SqliteEntryStore.connect(":memory:")
    yield store
    await store.close()


@pytest.fixture
def link_fetch():
    """Feed fetcher used by the link resolver; tests set its return value."""
    return AsyncMock()


@pytest.fixture
def services(store, tmp_path, link_fetch):
    """Application services wired to an in-memory store and a temp image dir."""
    config = ServerConfig(
        database_path=":memory:",
        public_base_url="https://reader.example",
        image_cache_dir=str(tmp_path / "images"),
        sync_delay_seconds=0,
    )

    async def get_store():
        return store

    blob_store = LocalBlobStore(config.image_cache_dir, config.image_cache_url)
    return AppServices(
        config=config,
        get_store=get_store,
        image_proxy=ImageProxy(config.public_base_url, config.image_cache_url),
        blob_store=blob_store,
        image_cache=ImageCache(blob_store, sleep=AsyncMock()),
        link_resolver=LinkResolver(LinkCache(), fetch=link_fetch),
    )
