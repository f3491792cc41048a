"""Feed parser service.

This module turns a raw RSS or Atom document into a dialect-neutral
ParsedFeed. The dialect is detected from the document structure:

    <feed> root                      -> Atom, items are <entry> children
    <rss><channel> or <channel> root -> RSS, items are <item> children
    <rdf:RDF> root                   -> RSS 1.0, items are <item> siblings of <channel>

Real feeds are inconsistent, so every field falls back through a list of
candidate elements. A single broken item is logged and skipped; only a
document that is not well-formed XML, or not a feed at all, raises.
"""

import html
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Iterable, List, Optional

from lxml import etree

from lesefluss.errors import ParseError, PerItemExtractionError
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import FeedItem, ParsedFeed
from lesefluss.services.guid import hash_guid

MAX_ITEMS = 50

ATOM_NS = "http://www.w3.org/2005/Atom"
CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
DC_NS = "http://purl.org/dc/elements/1.1/"
RDF_NS = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
RSS1_NS = "http://purl.org/rss/1.0/"

_ATOM = (ATOM_NS, None)
_RSS = (None, RSS1_NS)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")
_XMLNS_ATTR = re.compile(r'\s+xmlns(?::\w+)?="[^"]*"')


def _xml_parser() -> etree.XMLParser:
    # No DTD entity expansion and no network lookups for untrusted documents.
    return etree.XMLParser(resolve_entities=False, no_network=True, recover=False)


def _localname(el) -> Optional[str]:
    if not isinstance(el.tag, str):
        return None
    return etree.QName(el).localname


def _namespace(el) -> Optional[str]:
    return etree.QName(el).namespace


def _children(el, name: str, namespaces: Iterable[Optional[str]]) -> list:
    allowed = tuple(namespaces)
    return [
        child for child in el
        if _localname(child) == name and _namespace(child) in allowed
    ]


def _first(el, name: str, namespaces: Iterable[Optional[str]]):
    found = _children(el, name, namespaces)
    return found[0] if found else None


def _inner_markup(el) -> str:
    """Element content as a string, serializing child elements if present."""
    if el is None:
        return ""
    has_elements = any(isinstance(child.tag, str) for child in el)
    if not has_elements:
        return (el.text or "").strip()

    parts = [el.text or ""]
    for child in el:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return _XMLNS_ATTR.sub("", "".join(parts)).strip()


def _text(el) -> str:
    """Plain text value of an element with HTML entities decoded."""
    return html.unescape(_inner_markup(el)).strip()


def _first_text(el, candidates) -> str:
    """First non-empty text among (name, namespaces) candidates."""
    for name, namespaces in candidates:
        value = _text(_first(el, name, namespaces))
        if value:
            return value
    return ""


def _first_markup(el, candidates) -> str:
    for name, namespaces in candidates:
        value = _inner_markup(_first(el, name, namespaces))
        if value:
            return value
    return ""


def parse_date(value: str) -> Optional[datetime]:
    """Parse an RFC 2822 or ISO 8601 date into an aware UTC datetime.

    Args:
        value: Date string from the feed

    Returns:
        datetime in UTC if parsed successfully, None otherwise
    """
    value = (value or "").strip()
    if not value:
        return None

    parsed = None

    # Try RFC 2822 format (common in RSS)
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass

    # Try ISO format (Atom)
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _build_item(
    *,
    raw_guid: str,
    title: str,
    content: str,
    raw_date: str,
    link: str,
    author: str,
    now: datetime,
) -> FeedItem:
    if not (raw_guid or title or content or link):
        raise PerItemExtractionError("item has no id, title, content or link")

    published_at = parse_date(raw_date)
    date_supplied = published_at is not None
    if published_at is None:
        published_at = now

    title = title or "Untitled"
    guid = raw_guid
    if not guid:
        stamp = published_at.isoformat() if date_supplied else ""
        guid = hash_guid(title, stamp)

    return FeedItem(
        guid=guid,
        title=title,
        content_html=content,
        published_at=published_at,
        link=link or None,
        author=author or None,
        guid_supplied=bool(raw_guid),
        date_supplied=date_supplied,
    )


def _atom_link(entry) -> str:
    links = _children(entry, "link", _ATOM)
    if not links:
        return ""
    if len(links) > 1:
        alternates = [l for l in links if (l.get("rel") or "alternate") == "alternate"]
        html_alternates = [l for l in alternates if (l.get("type") or "").lower() == "text/html"]
        for candidate in html_alternates or alternates:
            href = (candidate.get("href") or "").strip()
            if href:
                return html.unescape(href)
    first = links[0]
    return html.unescape((first.get("href") or first.text or "").strip())


def _atom_author(entry) -> str:
    author = _first(entry, "author", _ATOM)
    if author is None:
        return ""
    return _text(_first(author, "name", _ATOM)) or _text(author)


def _parse_atom_entry(entry, now: datetime) -> FeedItem:
    return _build_item(
        raw_guid=_text(_first(entry, "id", _ATOM)),
        title=_text(_first(entry, "title", _ATOM)),
        content=_first_markup(entry, [("content", _ATOM), ("summary", _ATOM)]),
        raw_date=_first_text(entry, [("published", _ATOM), ("updated", _ATOM)]),
        link=_atom_link(entry),
        author=_atom_author(entry),
        now=now,
    )


def _parse_rss_item(item, now: datetime) -> FeedItem:
    # RSS 1.0 items identify themselves with rdf:about
    about = (item.get(f"{{{RDF_NS}}}about") or "").strip()
    return _build_item(
        raw_guid=_text(_first(item, "guid", _RSS)) or about,
        title=_text(_first(item, "title", _RSS)),
        content=_first_markup(item, [("encoded", (CONTENT_NS,)), ("description", _RSS)]),
        raw_date=_first_text(item, [("pubDate", _RSS), ("date", (DC_NS,))]),
        link=_text(_first(item, "link", _RSS)),
        author=_first_text(item, [("author", _RSS), ("creator", (DC_NS,))]),
        now=now,
    )


def _extract_items(
    nodes: list,
    extract: Callable[..., FeedItem],
    kind: str,
    now: datetime,
    max_items: int,
) -> List[FeedItem]:
    """Extract FeedItems, skipping items that fail, newest first, capped."""
    logger = UnifiedLogger.get_logger(__name__)
    items = []
    for index, node in enumerate(nodes):
        try:
            items.append(extract(node, now))
        except Exception as e:
            logger.warning(f"Skipping malformed {kind} #{index}: {e}")
            continue

    # Sort by published date descending (newest first)
    items.sort(key=lambda item: item.published_at, reverse=True)
    return items[:max_items]


def parse_feed_document(
    raw_text: str,
    *,
    max_items: int = MAX_ITEMS,
    now: Optional[datetime] = None,
) -> ParsedFeed:
    """Parse a raw RSS or Atom document.

    Args:
        raw_text: Feed document text
        max_items: Maximum number of items returned (newest kept)
        now: Timestamp used for items without a date (defaults to current time)

    Returns:
        ParsedFeed with feed metadata and items, newest first

    Raises:
        ParseError: If the text is not well-formed XML or not an RSS/Atom feed
    """
    logger = UnifiedLogger.get_logger(__name__)
    now = now or datetime.now(timezone.utc)

    if not raw_text or not raw_text.strip():
        raise ParseError("Empty feed document")

    # lxml refuses str input that carries an encoding declaration
    document = _XML_DECLARATION.sub("", raw_text.lstrip("\ufeff"), count=1)
    try:
        root = etree.fromstring(document.encode("utf-8"), _xml_parser())
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Invalid XML format: {e}") from e

    root_name = _localname(root)

    if root_name == "feed":
        items = _extract_items(
            _children(root, "entry", _ATOM), _parse_atom_entry, "Atom entry", now, max_items
        )
        parsed = ParsedFeed(
            title=_text(_first(root, "title", _ATOM)) or "Untitled Feed",
            description=_first_text(root, [("subtitle", _ATOM), ("summary", _ATOM)]) or None,
            link=_atom_link(root) or None,
            items=items,
            last_updated=now,
        )
    elif root_name in ("rss", "channel"):
        channel = root if root_name == "channel" else _first(root, "channel", _RSS)
        if channel is None:
            raise ParseError("Invalid RSS format - no channel found")
        items = _extract_items(
            _children(channel, "item", _RSS), _parse_rss_item, "RSS item", now, max_items
        )
        parsed = ParsedFeed(
            title=_text(_first(channel, "title", _RSS)) or "Untitled Feed",
            description=_text(_first(channel, "description", _RSS)) or None,
            link=_text(_first(channel, "link", _RSS)) or None,
            items=items,
            last_updated=now,
        )
    elif root_name == "RDF":
        channel = _first(root, "channel", _RSS)
        if channel is None:
            channel = root
        items = _extract_items(
            _children(root, "item", _RSS), _parse_rss_item, "RSS 1.0 item", now, max_items
        )
        parsed = ParsedFeed(
            title=_text(_first(channel, "title", _RSS)) or "Untitled Feed",
            description=_text(_first(channel, "description", _RSS)) or None,
            link=_text(_first(channel, "link", _RSS)) or None,
            items=items,
            last_updated=now,
        )
    else:
        raise ParseError(f"Unknown feed format - not RSS or Atom (root <{root_name}>)")

    logger.info(f"Parsed {len(parsed.items)} items from feed '{parsed.title}'")
    return parsed
