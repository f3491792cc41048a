"""Stable short identifiers for feed items.

The hash is a 32-bit rolling hash over UTF-16 code units, printed in
base 36. It is deterministic across processes (no seed) and is an opaque
identifier, not a uniqueness guarantee: callers pair it with the
subscription id.
"""

from lesefluss.models.schemas import FeedItem

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _utf16_code_units(text: str):
    data = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def hash_guid(title: str, published_at: str) -> str:
    """Hash a (title, published_at) pair into a short base-36 string.

    Args:
        title: Item title, or the feed-supplied id when hashing for storage
        published_at: ISO timestamp string, or "" when the feed gave none

    Returns:
        Base-36 digest, at most 7 characters
    """
    content = f"{title}-{published_at}"
    h = 0
    for unit in _utf16_code_units(content):
        h = _to_int32((h << 5) - h + unit)
    return _base36(abs(h))


def date_stamp(item: FeedItem) -> str:
    """ISO date used in hashes, or "" when the parser synthesized the date."""
    if not item.date_supplied:
        return ""
    return item.published_at.isoformat()


def entry_guid_hash(item: FeedItem) -> str:
    """The guid_hash an item is stored under for its subscription."""
    return hash_guid(item.guid, date_stamp(item))
