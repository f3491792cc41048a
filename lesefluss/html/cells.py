"""Spacer-cell detection for newsletter layout tables.

Email templates pad content with empty side columns, ``&nbsp;`` cells and
tiny spacer GIFs. ``is_spacer_cell`` is the one predicate every table step
uses to recognize them.
"""

import re
from typing import Dict, Optional, Tuple

from bs4 import Tag

from lesefluss.html.styles import parse_style

Dimensions = Tuple[Optional[int], Optional[int]]
DeclaredSizes = Dict[int, Dimensions]

SPACER_IMAGE_MAX = 20
NEGLIGIBLE_TEXT = 10

_INVISIBLE = re.compile(r"[\s\u00a0\u200b\u200c\u200d\u2060\ufeff\u034f\u00ad]+")
_SPACER_MARKUP = [
    re.compile(r"^(?:&nbsp;|&#160;|\s|<br\s*/?>)*$", re.IGNORECASE),
    re.compile(r"^(?:\s|<(div|p|span)\b[^>]*>\s*</\1>)*$", re.IGNORECASE),
]
_PIXELS = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:px)?\s*$", re.IGNORECASE)


def _pixels(value) -> Optional[int]:
    if value is None:
        return None
    match = _PIXELS.match(str(value))
    return int(float(match.group(1))) if match else None


def image_dimensions(img: Tag) -> Dimensions:
    """Width and height an image declares through attributes or inline style."""
    style = parse_style(img.get("style"))
    width = _pixels(img.get("width"))
    height = _pixels(img.get("height"))
    if width is None:
        width = _pixels(style.get("width"))
    if height is None:
        height = _pixels(style.get("height"))
    return (width, height)


def declared_dimensions(img: Tag, declared: Optional[DeclaredSizes] = None) -> Dimensions:
    """Dimensions captured before the transform stripped them, else the current ones."""
    if declared is not None and id(img) in declared:
        return declared[id(img)]
    return image_dimensions(img)


def is_spacer_image(img: Tag, declared: Optional[DeclaredSizes] = None) -> bool:
    width, height = declared_dimensions(img, declared)
    return (
        width is not None
        and height is not None
        and width <= SPACER_IMAGE_MAX
        and height <= SPACER_IMAGE_MAX
    )


def normalized_text(tag: Tag) -> str:
    """Text content with whitespace and invisible characters removed."""
    text = _INVISIBLE.sub(" ", tag.get_text()).strip()
    return "" if text == "&nbsp;" else text


def is_spacer_cell(cell: Tag, declared: Optional[DeclaredSizes] = None) -> bool:
    """Whether a table cell only pads the layout.

    A cell is a spacer when it has no content image and either its text is
    empty, its markup is only ``&nbsp;``/``<br>``/empty blocks, or it holds
    spacer images (both sides at most 20px) next to negligible text.

    Args:
        cell: A td or th element
        declared: Image dimensions captured before any step removed them,
            keyed by ``id(img)``

    Returns:
        True if the cell can be dropped without losing content
    """
    images = cell.find_all("img")
    if any(not is_spacer_image(img, declared) for img in images):
        return False

    text = normalized_text(cell)
    if not text:
        return True

    inner = cell.decode_contents().strip()
    if any(pattern.match(inner) for pattern in _SPACER_MARKUP):
        return True

    return bool(images) and len(text) < NEGLIGIBLE_TEXT
