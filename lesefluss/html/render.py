"""Display pipeline for stored entries: sanitize, transform, proxy images."""

from html import escape
from typing import Optional

from lesefluss.html.sanitizer import sanitize_html
from lesefluss.html.transformer import TransformOptions, transform_newsletter_html
from lesefluss.images.proxy import ImageProxy
from lesefluss.log_system.unified_logger import UnifiedLogger


def render_entry_html(
    content_html: str,
    *,
    proxy: Optional[ImageProxy] = None,
    source_id: Optional[str] = None,
    options: Optional[TransformOptions] = None,
) -> str:
    """Prepare stored entry content for display.

    Args:
        content_html: Raw content as stored at sync time
        proxy: Image proxy used to rewrite image sources (skipped if None)
        source_id: Grouping id passed to the proxy
        options: Transform options

    Returns:
        Display-ready HTML; sanitized text is returned if a later stage fails
    """
    logger = UnifiedLogger.get_logger(__name__)

    try:
        sanitized = sanitize_html(content_html or "")
    except Exception as e:
        logger.warning(f"Sanitizing entry content failed, showing it as text: {e}")
        sanitized = escape(content_html or "")
    rendered = transform_newsletter_html(sanitized, options)

    if proxy is None:
        return rendered

    try:
        return proxy.rewrite_image_sources(rendered, source_id)
    except Exception as e:
        logger.warning(f"Image proxy rewrite failed, keeping original sources: {e}")
        return rendered
