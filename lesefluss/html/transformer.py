"""Responsive transformation of newsletter HTML.

Email newsletters are built for fixed-width desktop clients: nested layout
tables, spacer cells, pixel widths, tracking pixels and hard-coded colours.
The transformer rewrites sanitized newsletter markup so it reads well in a
narrow, theme-aware viewport. Steps run in a fixed order:

    1. tracking removal
    2. image responsiveness
    3. fixed-dimension stripping
    4. table normalization
    5. dark-mode colour adaptation
    6. link styling
    7. container wrap

A step that fails on one element skips that element. If the whole document
fails, the input is returned wrapped but otherwise untouched.
"""

from dataclasses import dataclass
from html import escape
from typing import Callable, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

from lesefluss.errors import TransformError
from lesefluss.html.cells import (
    DeclaredSizes,
    declared_dimensions,
    image_dimensions,
    is_spacer_cell,
)
from lesefluss.html.styles import (
    background_color,
    contrast_ratio,
    is_neutral,
    parse_color,
    parse_style,
    serialize_style,
    strip_important,
    with_properties,
    without_properties,
)
from lesefluss.log_system.unified_logger import UnifiedLogger

TRACKING_HINTS = ("track", "pixel", "analytics", "beacon")
BLOCK_CONTAINERS = frozenset({
    "table", "div", "section", "article", "header", "footer",
    "blockquote", "figure", "center",
})
DIMENSION_PROPERTIES = ("width", "height", "min-width", "min-height", "max-height")
MIN_CONTRAST = 4.5
THEME_FOREGROUND = "var(--foreground)"

WRAPPER_CLASS = "newsletter-wrapper"
WRAPPER_STYLE = (
    "all:initial;"
    "display:block;"
    "font-family:system-ui, -apple-system, 'Segoe UI', sans-serif;"
    "line-height:1.5;"
    "color:inherit;"
    "width:100%;"
    "max-width:{max_width};"
    "margin:0 auto;"
    "overflow-x:hidden;"
    "box-sizing:border-box;"
)


@dataclass
class TransformOptions:
    max_width: str = "100%"
    preserve_original_styles: bool = False
    remove_tracking_pixels: bool = True
    make_images_responsive: bool = True
    fix_table_layouts: bool = True
    enable_dark_mode: bool = True


def _classes(tag: Tag) -> List[str]:
    value = tag.get("class") or []
    return value.split() if isinstance(value, str) else list(value)


def _add_class(tag: Tag, name: str) -> None:
    classes = _classes(tag)
    if name not in classes:
        classes.append(name)
    tag["class"] = classes


def _set_style(tag: Tag, style: str) -> None:
    if style:
        tag["style"] = style
    elif "style" in tag.attrs:
        del tag["style"]


def _own_rows(table: Tag) -> List[Tag]:
    """Rows belonging to ``table`` itself, not to tables nested in its cells."""
    rows = []
    for child in table.find_all(True, recursive=False):
        if child.name == "tr":
            rows.append(child)
        elif child.name in ("thead", "tbody", "tfoot"):
            rows.extend(child.find_all("tr", recursive=False))
    return rows


def _own_cells(row: Tag) -> List[Tag]:
    return row.find_all(["td", "th"], recursive=False)


class NewsletterTransformer:
    """Rewrites newsletter markup for responsive, theme-aware display."""

    def __init__(self, options: Optional[TransformOptions] = None):
        self.options = options or TransformOptions()
        self.logger = UnifiedLogger.get_logger(__name__)

    def transform(self, html: str) -> str:
        """Transform an HTML fragment.

        Args:
            html: Sanitized newsletter HTML

        Returns:
            Transformed HTML inside the responsive wrapper; never raises
        """
        if not html:
            return self._wrap("")

        try:
            return self._wrap(self.apply(html))
        except TransformError as e:
            self.logger.warning(f"Newsletter transform failed, showing original markup: {e}")
            return self._wrap(html)

    def apply(self, html: str) -> str:
        """Run the enabled steps without the wrapper.

        Raises:
            TransformError: If the document as a whole cannot be transformed
        """
        try:
            soup = BeautifulSoup(html, "html.parser")
            # Captured first: later steps strip the attributes spacer detection needs
            declared: DeclaredSizes = {
                id(img): image_dimensions(img) for img in soup.find_all("img")
            }

            if self.options.remove_tracking_pixels:
                self._remove_tracking(soup, declared)
            if self.options.make_images_responsive:
                self._each(soup.find_all("img"), "image responsiveness", self._make_image_responsive)
            if not self.options.preserve_original_styles:
                self._each(soup.find_all(True), "dimension stripping", self._strip_dimensions)
            if self.options.fix_table_layouts:
                self._normalize_tables(soup, declared)
            if self.options.enable_dark_mode:
                self._each(soup.find_all(style=True), "dark mode", self._adapt_colors)
            self._each(soup.find_all("a"), "link styling", self._style_link)

            return str(soup)
        except Exception as e:
            raise TransformError(str(e)) from e

    def _each(self, elements: Iterable[Tag], step: str, apply: Callable[[Tag], None]) -> None:
        for element in elements:
            if element.decomposed:
                continue
            try:
                apply(element)
            except Exception as e:
                self.logger.debug(f"Skipping {step} for <{element.name}>: {e}")

    def _wrap(self, html: str) -> str:
        style = WRAPPER_STYLE.format(max_width=self.options.max_width)
        return (
            f'<div class="{WRAPPER_CLASS}" data-newsletter-transformed="true" '
            f'style="{escape(style, quote=True)}">{html}</div>'
        )

    # 1. Tracking removal

    def _remove_tracking(self, soup: BeautifulSoup, declared: DeclaredSizes) -> None:
        def remove_if_tracking(tag: Tag) -> None:
            if self._is_tracking(tag, declared):
                tag.decompose()

        self._each(soup.find_all(True), "tracking removal", remove_if_tracking)

    @staticmethod
    def _is_tracking(tag: Tag, declared: DeclaredSizes) -> bool:
        if tag.name == "img":
            width, height = declared_dimensions(tag, declared)
            if width is not None and height is not None and width <= 1 and height <= 1:
                return True
            tiny = (width is not None and width <= 1) or (height is not None and height <= 1)
            src = (tag.get("src") or "").lower()
            if tiny and any(hint in src for hint in TRACKING_HINTS):
                return True

        markers = " ".join(_classes(tag) + [tag.get("id") or ""]).lower()
        if any(hint in markers for hint in TRACKING_HINTS):
            return True

        display = parse_style(tag.get("style")).get("display")
        return display is not None and strip_important(display).lower() == "none"

    # 2. Image responsiveness

    @staticmethod
    def _make_image_responsive(img: Tag) -> None:
        src = img.get("src")
        if src and not src.strip().lower().startswith("data:"):
            img["data-original-src"] = src
            img["data-use-proxy"] = "true"

        for name in ("width", "height"):
            if name in img.attrs:
                del img[name]

        style = without_properties(img.get("style"), DIMENSION_PROPERTIES + ("max-width",))
        img["style"] = with_properties(
            style, {"max-width": "100%", "height": "auto", "display": "block"}
        )
        img["loading"] = "lazy"
        img["decoding"] = "async"
        _add_class(img, "newsletter-img")

    # 3. Fixed-dimension stripping

    def _strip_dimensions(self, tag: Tag) -> None:
        if tag.name == "img" and self.options.make_images_responsive:
            return

        for name in ("width", "height"):
            if name in tag.attrs:
                del tag[name]

        style = without_properties(tag.get("style"), DIMENSION_PROPERTIES)
        if tag.name in BLOCK_CONTAINERS:
            style = with_properties(style, {"max-width": "100%"})
        _set_style(tag, style)

    # 4. Table normalization

    def _normalize_tables(self, soup: BeautifulSoup, declared: DeclaredSizes) -> None:
        tables = soup.find_all("table")

        # Single-cell unwrap looks at the authored structure
        for table in tables:
            try:
                self._unwrap_single_cell_table(soup, table)
            except Exception as e:
                self.logger.debug(f"Skipping single-cell unwrap: {e}")

        for table in tables:
            if table.decomposed or table.parent is None:
                continue
            try:
                self._normalize_table(table, declared)
            except Exception as e:
                self.logger.debug(f"Skipping table normalization: {e}")

    @staticmethod
    def _unwrap_single_cell_table(soup: BeautifulSoup, table: Tag) -> None:
        rows = _own_rows(table)
        if len(rows) != 1:
            return
        cells = _own_cells(rows[0])
        if len(cells) != 1:
            return

        div = soup.new_tag("div")
        div["class"] = ["newsletter-converted-table"]
        div["style"] = "word-break:break-word;overflow-wrap:anywhere;"
        for child in list(cells[0].contents):
            div.append(child.extract())
        table.replace_with(div)

    def _normalize_table(self, table: Tag, declared: DeclaredSizes) -> None:
        if "width" in table.attrs:
            del table["width"]
        style = without_properties(table.get("style"), ("width", "table-layout"))
        table["style"] = with_properties(
            style, {"width": "100%", "max-width": "100%", "table-layout": "auto"}
        )
        _add_class(table, "newsletter-table")

        rows = _own_rows(table)
        for row in rows:
            for cell in _own_cells(row):
                self._clean_cell(cell)

        collapsed = []
        for row in rows:
            try:
                middle = self._collapse_row(row, declared)
            except Exception as e:
                self.logger.debug(f"Skipping row collapse: {e}")
                continue
            if middle is not None:
                collapsed.append(middle)

        remaining = [row for row in rows if not row.decomposed]
        for row in remaining:
            if not _own_cells(row):
                row.decompose()

        # Keep column counts consistent when other rows still span several columns
        if collapsed and any(len(_own_cells(row)) > 1 for row in remaining if not row.decomposed):
            for cell in collapsed:
                cell["colspan"] = "3"

    @staticmethod
    def _clean_cell(cell: Tag) -> None:
        if "width" in cell.attrs:
            del cell["width"]
        style = without_properties(cell.get("style"), ("width",))
        cell["style"] = with_properties(
            style, {"word-break": "break-word", "overflow-wrap": "anywhere"}
        )
        _add_class(cell, "newsletter-table-cell")

    @staticmethod
    def _collapse_row(row: Tag, declared: DeclaredSizes) -> Optional[Tag]:
        """Drop spacer cells from a row.

        Returns:
            The surviving middle cell if a symmetric 3-column collapse ran
        """
        cells = _own_cells(row)
        empty = [is_spacer_cell(cell, declared) for cell in cells]

        # Symmetric 3-column layout: spacer | content | spacer
        if len(cells) == 3 and empty[0] and empty[2] and not empty[1]:
            cells[0].decompose()
            cells[2].decompose()
            middle = cells[1]
            middle["style"] = with_properties(
                middle.get("style"), {"width": "100%", "max-width": "100%"}
            )
            return middle

        # Wider layouts padded on both sides
        if len(cells) > 3 and empty[0] and empty[-1]:
            cells[0].decompose()
            cells[-1].decompose()
            cells, empty = cells[1:-1], empty[1:-1]
            for cell in cells:
                cell["style"] = with_properties(
                    cell.get("style"), {"width": "auto", "max-width": "100%"}
                )

        # Trim contiguous spacer runs touching either edge
        start = 0
        while start < len(cells) and empty[start]:
            start += 1
        end = len(cells)
        while end > start and empty[end - 1]:
            end -= 1

        for cell in cells[:start] + cells[end:]:
            cell.decompose()

        kept = cells[start:end]
        if len(kept) == 1:
            kept[0]["style"] = with_properties(
                kept[0].get("style"), {"width": "100%", "max-width": "100%"}
            )
        return None

    # 5. Dark mode

    @staticmethod
    def _adapt_colors(tag: Tag) -> None:
        declarations = parse_style(tag.get("style"))
        foreground = parse_color(declarations.get("color"))
        background_value = background_color(declarations)
        background = parse_color(background_value)

        def drop_background() -> None:
            declarations.pop("background-color", None)
            if "background" in declarations and parse_color(declarations["background"]) is not None:
                declarations.pop("background")

        if foreground is not None and background is not None:
            # Readable author pairs survive; unreadable ones fall back to the theme
            if contrast_ratio(foreground, background) < MIN_CONTRAST:
                declarations.pop("color", None)
                drop_background()
        elif foreground is not None:
            if is_neutral(foreground):
                declarations["color"] = THEME_FOREGROUND
        elif background is not None:
            if is_neutral(background):
                drop_background()

        _set_style(tag, serialize_style(declarations))

    # 6. Links

    @staticmethod
    def _style_link(link: Tag) -> None:
        href = link.get("href")
        if href and not href.startswith("#"):
            link["target"] = "_blank"
            link["rel"] = "noopener noreferrer"
        link["style"] = with_properties(
            link.get("style"), {"word-break": "normal", "overflow-wrap": "break-word"}
        )


def transform_newsletter_html(html: str, options: Optional[TransformOptions] = None) -> str:
    """Transform newsletter HTML with the given (or default) options."""
    return NewsletterTransformer(options).transform(html)
