"""Allow-list HTML sanitizer for newsletter content.

Everything not explicitly allowed is removed: unknown tags are unwrapped
(their text stays), dangerous tags are dropped with their content, and
attributes outside the allow-list are deleted. URLs must use a safe scheme.
"""

import re

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, ProcessingInstruction, Tag
from bs4.element import CData

from lesefluss.log_system.unified_logger import UnifiedLogger

ALLOWED_TAGS = frozenset({
    "p", "br", "hr", "strong", "b", "em", "i", "u", "s", "small", "sub", "sup",
    "a", "img",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "dl", "dt", "dd",
    "blockquote", "pre", "code",
    "table", "thead", "tbody", "tfoot", "caption", "tr", "td", "th",
    "div", "span", "section", "article", "header", "footer",
    "figure", "figcaption", "center",
})

# Removed together with everything inside them
DROPPED_TAGS = frozenset({
    "script", "style", "object", "embed", "form", "input", "button",
    "textarea", "select", "option", "iframe", "frame", "frameset",
    "noscript", "template", "svg", "math", "head", "title", "meta",
    "link", "base", "applet",
})

ALLOWED_ATTRIBUTES = frozenset({
    "href", "src", "alt", "title", "class", "id",
    "width", "height", "style", "target", "rel",
})

URL_ATTRIBUTES = ("href", "src")
SAFE_SCHEMES = frozenset({"http", "https", "mailto", "tel"})

_SCHEME = re.compile(r"^([a-z][a-z0-9+.\-]*):", re.IGNORECASE)
_CONTROL = re.compile(r"[\s\x00-\x1f\x7f]+")
_DATA_IMAGE = re.compile(r"^data:image/(png|jpe?g|gif|webp)[;,]", re.IGNORECASE)
_UNSAFE_STYLE = re.compile(r"expression\s*\(|javascript\s*:|behavior\s*:|-moz-binding", re.IGNORECASE)

# Promotional footer appended by the newsletter-to-feed bridge
FOOTER_MARKER = re.compile(r"Kill the Newsletter!", re.IGNORECASE)
FOOTER_SETTINGS = re.compile(r"Kill the Newsletter!\s*feed settings", re.IGNORECASE)

# Never removed whole when emptied by footer stripping
_STRUCTURAL_TAGS = frozenset({"table", "thead", "tbody", "tfoot", "tr", "td", "th", "li"})

_WHITESPACE = re.compile(r"\s+")


def is_safe_url(url: str, allow_data_image: bool = False) -> bool:
    """Whether a URL may be kept on an href or src attribute.

    Relative URLs and http(s)/mailto/tel are allowed; ``data:image/...``
    only when ``allow_data_image`` is set.
    """
    # Browsers ignore whitespace and control characters inside the scheme
    compact = _CONTROL.sub("", url)
    match = _SCHEME.match(compact)
    if match is None:
        return True
    scheme = match.group(1).lower()
    if scheme in SAFE_SCHEMES:
        return True
    return allow_data_image and bool(_DATA_IMAGE.match(compact))


def _clean_attributes(tag) -> None:
    for name in list(tag.attrs):
        if name.lower() not in ALLOWED_ATTRIBUTES:
            del tag[name]

    for name in URL_ATTRIBUTES:
        value = tag.get(name)
        if value is None:
            continue
        allow_data = tag.name == "img" and name == "src"
        if not is_safe_url(str(value), allow_data_image=allow_data):
            del tag[name]

    style = tag.get("style")
    if style is not None and _UNSAFE_STYLE.search(style):
        del tag["style"]

    if tag.name == "a":
        href = tag.get("href")
        if href and not href.startswith("#"):
            tag["target"] = "_blank"
            tag["rel"] = "noopener noreferrer"


def _is_plain_element(node) -> bool:
    return isinstance(node, Tag) and node.find(True) is None


def strip_bridge_footer(soup: BeautifulSoup) -> None:
    """Remove the bridge's promotional footer from a parsed fragment.

    Only text nodes are matched; attribute values are left alone.
    """
    for text in soup.find_all(string=FOOTER_MARKER):
        parent = text.parent
        if parent is None:
            continue

        settings = FOOTER_SETTINGS.search(text)
        if settings:
            # "feed settings" is followed by its links
            sibling = text.next_sibling
            while _is_plain_element(sibling):
                following = sibling.next_sibling
                sibling.extract()
                sibling = following
            remaining = FOOTER_MARKER.sub("", text[:settings.start()])
        elif (
            parent is not soup
            and parent.name not in _STRUCTURAL_TAGS
            and len(parent.contents) == 1
            and text.lstrip().lower().startswith("kill the newsletter!")
        ):
            parent.extract()
            continue
        else:
            remaining = FOOTER_MARKER.sub("", text)

        if remaining.strip():
            text.replace_with(remaining)
        else:
            text.extract()

        if (
            parent is not soup
            and parent.name not in _STRUCTURAL_TAGS
            and parent.parent is not None
            and not parent.get_text(strip=True)
            and parent.find("img") is None
        ):
            parent.extract()


def sanitize_html(html: str) -> str:
    """Sanitize untrusted newsletter HTML.

    Args:
        html: Raw HTML from a feed item

    Returns:
        Sanitized HTML fragment
    """
    if not html:
        return ""

    logger = UnifiedLogger.get_logger(__name__)
    soup = BeautifulSoup(html, "html.parser")

    for node in soup.find_all(
        string=lambda s: isinstance(s, (Comment, Declaration, Doctype, ProcessingInstruction, CData))
    ):
        node.extract()

    dropped = 0
    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        name = tag.name.lower()
        if name in DROPPED_TAGS:
            tag.decompose()
            dropped += 1
        elif name not in ALLOWED_TAGS:
            tag.unwrap()
        else:
            _clean_attributes(tag)

    if dropped:
        logger.debug(f"Sanitizer dropped {dropped} disallowed elements")

    strip_bridge_footer(soup)
    return str(soup)


def extract_text(html: str, max_length: int = 200) -> str:
    """Plain-text preview of an HTML fragment.

    Args:
        html: HTML content
        max_length: Maximum length before truncating with "..."

    Returns:
        Whitespace-collapsed text
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(sorted(DROPPED_TAGS)):
        if not tag.decomposed:
            tag.decompose()
    text = _WHITESPACE.sub(" ", soup.get_text(" ")).strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text
