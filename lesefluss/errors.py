"""Exception types shared across lesefluss.

Sync code treats these differently: FetchError is retried by the fetcher,
ParseError ends one subscription's sync, PerItemExtractionError and
ConflictError are absorbed, TransformError never leaves the HTML pipeline.
"""

from typing import Optional


class LeseflussError(Exception):
    """Base class for all lesefluss errors."""


class FetchError(LeseflussError):
    """A feed or image could not be retrieved over HTTP."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class ParseError(LeseflussError):
    """The document is not well-formed XML or not a recognizable feed."""


class PerItemExtractionError(LeseflussError):
    """A single feed item could not be turned into a FeedItem."""


class ConflictError(LeseflussError):
    """An entry with the same (subscription_id, guid_hash) already exists."""

    def __init__(self, subscription_id: int, guid_hash: str):
        super().__init__(
            f"Entry {guid_hash!r} already exists for subscription {subscription_id}"
        )
        self.subscription_id = subscription_id
        self.guid_hash = guid_hash


class TransformError(LeseflussError):
    """Failure inside the display-time HTML pipeline."""
