"""Image proxy and cache for lesefluss."""

from .cache import ImageCache, LocalBlobStore
from .proxy import ImageProxy, cache_key

__all__ = ["ImageProxy", "ImageCache", "LocalBlobStore", "cache_key"]
