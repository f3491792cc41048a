"""HTML pipeline for newsletter content."""

from .cells import is_spacer_cell
from .render import render_entry_html
from .sanitizer import extract_text, sanitize_html
from .transformer import NewsletterTransformer, TransformOptions, transform_newsletter_html

__all__ = [
    "is_spacer_cell",
    "render_entry_html",
    "sanitize_html",
    "extract_text",
    "NewsletterTransformer",
    "TransformOptions",
    "transform_newsletter_html",
]
