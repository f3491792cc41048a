"""Inline style and colour helpers for the HTML pipeline."""

import re
from typing import Dict, Iterable, Optional, Tuple

RGB = Tuple[int, int, int]

_IMPORTANT = re.compile(r"\s*!\s*important\s*$", re.IGNORECASE)
_HEX = re.compile(r"^#([0-9a-f]{3,4}|[0-9a-f]{6}|[0-9a-f]{8})$", re.IGNORECASE)
_RGB_FUNC = re.compile(r"^rgba?\(\s*([^)]*)\)$", re.IGNORECASE)
_NUMBER = re.compile(r"^-?\d+(\.\d+)?")

NAMED_COLORS: Dict[str, RGB] = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "darkgray": (169, 169, 169),
    "darkgrey": (169, 169, 169),
    "dimgray": (105, 105, 105),
    "dimgrey": (105, 105, 105),
    "lightgray": (211, 211, 211),
    "lightgrey": (211, 211, 211),
    "silver": (192, 192, 192),
    "gainsboro": (220, 220, 220),
    "whitesmoke": (245, 245, 245),
    "red": (255, 0, 0),
    "maroon": (128, 0, 0),
    "orange": (255, 165, 0),
    "yellow": (255, 255, 0),
    "olive": (128, 128, 0),
    "lime": (0, 255, 0),
    "green": (0, 128, 0),
    "teal": (0, 128, 128),
    "aqua": (0, 255, 255),
    "cyan": (0, 255, 255),
    "blue": (0, 0, 255),
    "navy": (0, 0, 128),
    "purple": (128, 0, 128),
    "fuchsia": (255, 0, 255),
    "magenta": (255, 0, 255),
}


def parse_style(style: Optional[str]) -> Dict[str, str]:
    """Split an inline style into an ordered {property: value} dict.

    Semicolons inside parentheses or quotes (``url(data:...;base64,...)``)
    do not end a declaration. Property names are lowercased; later
    declarations of the same property win.
    """
    declarations: Dict[str, str] = {}
    if not style:
        return declarations

    current = []
    depth = 0
    quote = None
    chunks = []
    for char in style:
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        elif char == ";" and depth == 0:
            chunks.append("".join(current))
            current = []
            continue
        current.append(char)
    chunks.append("".join(current))

    for chunk in chunks:
        name, sep, value = chunk.partition(":")
        name = name.strip().lower()
        value = value.strip()
        if sep and name and value:
            declarations.pop(name, None)
            declarations[name] = value
    return declarations


def serialize_style(declarations: Dict[str, str]) -> str:
    return "".join(f"{name}:{value};" for name, value in declarations.items())


def without_properties(style: Optional[str], names: Iterable[str]) -> str:
    """Return ``style`` with the named properties removed."""
    declarations = parse_style(style)
    for name in names:
        declarations.pop(name, None)
    return serialize_style(declarations)


def with_properties(style: Optional[str], updates: Dict[str, str]) -> str:
    """Return ``style`` with ``updates`` set, replacing existing values."""
    declarations = parse_style(style)
    for name, value in updates.items():
        declarations.pop(name, None)
        declarations[name] = value
    return serialize_style(declarations)


def strip_important(value: str) -> str:
    return _IMPORTANT.sub("", value).strip()


def _channel(token: str) -> Optional[int]:
    token = token.strip()
    match = _NUMBER.match(token)
    if not match:
        return None
    number = float(match.group(0))
    if token.endswith("%"):
        number = number * 255 / 100
    return max(0, min(255, int(round(number))))


def parse_color(value: Optional[str]) -> Optional[RGB]:
    """Parse a CSS colour (hex, rgb(), rgba(), common names) into an RGB tuple.

    Alpha is ignored. Returns None for anything unrecognized, including
    ``transparent``, ``inherit`` and CSS variables.
    """
    if not value:
        return None
    value = strip_important(value).lower()

    if value in NAMED_COLORS:
        return NAMED_COLORS[value]

    hex_match = _HEX.match(value)
    if hex_match:
        digits = hex_match.group(1)
        if len(digits) in (3, 4):
            digits = "".join(c * 2 for c in digits[:3])
        return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))

    func_match = _RGB_FUNC.match(value)
    if func_match:
        parts = re.split(r"[\s,/]+", func_match.group(1).strip())
        if len(parts) < 3:
            return None
        channels = [_channel(p) for p in parts[:3]]
        if any(c is None for c in channels):
            return None
        return (channels[0], channels[1], channels[2])

    return None


def background_color(declarations: Dict[str, str]) -> Optional[str]:
    """The colour part of ``background-color`` or a plain-colour ``background``."""
    if "background-color" in declarations:
        return declarations["background-color"]
    shorthand = declarations.get("background")
    if shorthand and parse_color(shorthand) is not None:
        return shorthand
    return None


def relative_luminance(rgb: RGB) -> float:
    """WCAG 2 relative luminance."""

    def linear(channel: int) -> float:
        c = channel / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    r, g, b = rgb
    return 0.2126 * linear(r) + 0.7152 * linear(g) + 0.0722 * linear(b)


def contrast_ratio(first: RGB, second: RGB) -> float:
    """WCAG 2 contrast ratio, from 1.0 to 21.0."""
    lighter, darker = sorted(
        (relative_luminance(first), relative_luminance(second)), reverse=True
    )
    return (lighter + 0.05) / (darker + 0.05)


def is_neutral(rgb: RGB, tolerance: int = 16) -> bool:
    """True for black, white and greys (channels within ``tolerance``)."""
    return max(rgb) - min(rgb) <= tolerance
