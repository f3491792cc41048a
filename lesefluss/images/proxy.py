"""Image proxy URL construction.

Newsletter images are served through ``/image-proxy`` so they can be cached
locally on first access. Building the proxy URL is pure; the fetch and
cache work happens in ``lesefluss.images.cache`` when the URL is requested.
"""

import hashlib
import re
from typing import Optional
from urllib.parse import urlencode

from bs4 import BeautifulSoup

PROXY_PATH = "/image-proxy"

_UNSAFE_SOURCE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def cache_key(url: str, source_id: Optional[str] = None) -> str:
    """Deterministic blob key for an image URL.

    Args:
        url: Original image URL
        source_id: Optional grouping id (the subscription id)

    Returns:
        ``sources/{source_id}/{digest}.img`` or ``external/{digest}.img``
    """
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
    if source_id is not None and str(source_id) != "":
        folder = "sources/" + _UNSAFE_SOURCE_CHARS.sub("_", str(source_id))
    else:
        folder = "external"
    return f"{folder}/{digest}.img"


class ImageProxy:
    """Builds proxy URLs for external images."""

    def __init__(self, public_base_url: str, cache_base_url: Optional[str] = None):
        self.public_base_url = public_base_url.rstrip("/")
        self.cache_base_url = cache_base_url.rstrip("/") if cache_base_url else None

    @property
    def endpoint(self) -> str:
        return self.public_base_url + PROXY_PATH

    def is_proxied(self, url: str) -> bool:
        """Whether ``url`` already points at the proxy or the image cache."""
        if url.startswith(self.endpoint) or url.startswith(PROXY_PATH + "?"):
            return True
        return bool(self.cache_base_url) and url.startswith(self.cache_base_url + "/")

    def proxy_url(self, url: Optional[str], source_id: Optional[str] = None) -> Optional[str]:
        """Proxy URL for an external image.

        ``data:`` URLs, URLs already served by the proxy or cache, and
        anything that is not absolute http(s) are returned unchanged.

        Args:
            url: Image URL
            source_id: Optional grouping id passed through as ``sourceId``

        Returns:
            URL to use as the image src
        """
        if not url:
            return url
        candidate = url.strip()
        if candidate.lower().startswith("data:"):
            return url
        if self.is_proxied(candidate):
            return url
        if not candidate.lower().startswith(("http://", "https://")):
            return url

        params = {"url": candidate}
        if source_id is not None and str(source_id) != "":
            params["sourceId"] = str(source_id)
        return f"{self.endpoint}?{urlencode(params)}"

    def rewrite_image_sources(self, html: str, source_id: Optional[str] = None) -> str:
        """Point every image marked for proxying at the proxy endpoint.

        Images are marked by the transformer with ``data-use-proxy="true"``;
        the original URL is kept in ``data-original-src``.
        """
        if not html:
            return html

        soup = BeautifulSoup(html, "html.parser")
        for img in soup.find_all("img", attrs={"data-use-proxy": "true"}):
            original = img.get("data-original-src") or img.get("src")
            proxied = self.proxy_url(original, source_id)
            if proxied:
                img["src"] = proxied
        return str(soup)
