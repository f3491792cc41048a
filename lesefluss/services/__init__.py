"""Services for lesefluss."""

from .feed_fetcher import fetch_feed
from .feed_parser import parse_feed_document
from .feed_validation import validate_feed_url
from .guid import entry_guid_hash, hash_guid
from .link_resolver import LinkCache, LinkResolver
from .permalink import resolve_permalink
from .sync import SyncOrchestrator, select_candidates

__all__ = [
    "fetch_feed",
    "parse_feed_document",
    "validate_feed_url",
    "hash_guid",
    "entry_guid_hash",
    "LinkCache",
    "LinkResolver",
    "resolve_permalink",
    "SyncOrchestrator",
    "select_candidates",
]
