"""Fetch-and-cache for proxied images.

On first request an image is downloaded and written to a local blob store;
later requests are redirected straight to the stored copy. Every failure
falls back to the original URL so rendering never breaks on an image.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple, Union

import httpx

from lesefluss.images.proxy import cache_key
from lesefluss.log_system.unified_logger import UnifiedLogger

MAX_IMAGE_BYTES = 5 * 1024 * 1024

# Raster formats only; SVG can carry script
CACHEABLE_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})

UPLOAD_RETRY_DELAY = 0.5
_CONTENT_TYPE_SUFFIX = ".content-type"


class LocalBlobStore:
    """Filesystem blob store with overwrite-safe uploads."""

    def __init__(self, root: Union[str, Path], public_base_url: str):
        self.root = Path(root).expanduser()
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        """Filesystem path for a key.

        Raises:
            ValueError: If the key escapes the store root
        """
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValueError(f"Invalid blob key: {key}")
        return path

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Store a blob, replacing any existing copy atomically.

        Concurrent uploads of the same key are safe: each writes its own
        temporary file and the last rename wins.
        """
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        for target, payload in (
            (path.with_name(path.name + _CONTENT_TYPE_SUFFIX), content_type.encode("utf-8")),
            (path, data),
        ):
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    def read(self, key: str) -> Optional[Tuple[bytes, str]]:
        """Return (data, content_type) for a stored blob, or None."""
        path = self.path_for(key)
        if not path.is_file():
            return None
        type_path = path.with_name(path.name + _CONTENT_TYPE_SUFFIX)
        content_type = "application/octet-stream"
        if type_path.is_file():
            content_type = type_path.read_text(encoding="utf-8").strip() or content_type
        return path.read_bytes(), content_type


class ImageCache:
    """Resolves an image-proxy request to the URL the client should load."""

    def __init__(
        self,
        store: LocalBlobStore,
        *,
        timeout: float = 5.0,
        upload_attempts: int = 3,
        user_agent: Optional[str] = None,
        max_bytes: int = MAX_IMAGE_BYTES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.timeout = timeout
        self.upload_attempts = upload_attempts
        self.user_agent = user_agent
        self.max_bytes = max_bytes
        self._sleep = sleep

    async def resolve(self, url: str, source_id: Optional[str] = None) -> str:
        """Return the redirect target for an image URL.

        Args:
            url: Original image URL
            source_id: Optional grouping id

        Returns:
            The cached copy's URL, or ``url`` itself if it is a data URL or
            anything along the way fails
        """
        logger = UnifiedLogger.get_logger(__name__)

        if url.strip().lower().startswith("data:"):
            return url
        if not url.lower().startswith(("http://", "https://")):
            return url

        key = cache_key(url, source_id)
        try:
            if self.store.exists(key):
                return self.store.public_url(key)
        except (OSError, ValueError) as e:
            logger.warning(f"Image cache lookup failed for {url}: {e}")
            return url

        headers = {"Accept": "image/*"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers=headers,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        logger.info(f"Image {url} returned HTTP {response.status_code}, using original")
                        return url

                    content_type = (response.headers.get("content-type") or "").split(";")[0].strip().lower()
                    if content_type not in CACHEABLE_TYPES:
                        logger.info(f"Image {url} has content type '{content_type}', using original")
                        return url

                    declared = response.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > self.max_bytes:
                        logger.info(f"Image {url} declares {declared} bytes, too large to cache")
                        return url

                    data = bytearray()
                    async for chunk in response.aiter_bytes():
                        data.extend(chunk)
                        if len(data) > self.max_bytes:
                            logger.info(f"Image {url} exceeds {self.max_bytes} bytes, too large to cache")
                            return url
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Failed to fetch image {url}: {e}")
            return url

        data = bytes(data)

        for attempt in range(1, self.upload_attempts + 1):
            try:
                self.store.upload(key, data, content_type)
                logger.info(f"Cached image {url} as {key}")
                return self.store.public_url(key)
            except OSError as e:
                logger.warning(f"Image upload attempt {attempt} failed for {key}: {e}")
                if attempt < self.upload_attempts:
                    await self._sleep(UPLOAD_RETRY_DELAY)

        return url
