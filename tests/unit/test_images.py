"""Unit tests for the image proxy and image cache."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from lesefluss.images.cache import ImageCache, LocalBlobStore
from lesefluss.images.proxy import ImageProxy, cache_key


# Mark all tests as async
pytestmark = pytest.mark.anyio

IMAGE_URL = "https://cdn.example/hero.png"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def _image_response(status_code=200, content=PNG_BYTES, content_type="image/png", chunk_size=4):
    """A streamed response delivering ``content`` in small chunks."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"content-type": content_type}
    response.chunks_read = 0

    async def aiter_bytes():
        for start in range(0, len(content), chunk_size):
            response.chunks_read += 1
            yield content[start:start + chunk_size]

    response.aiter_bytes = aiter_bytes
    return response


def _stream_of(response):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=None)
    return MagicMock(return_value=context)


def _patch_client(stream):
    patcher = patch("lesefluss.images.cache.httpx.AsyncClient")
    mock_client = patcher.start()
    mock_instance = AsyncMock()
    mock_instance.stream = stream
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    mock_client.return_value = mock_instance
    return patcher


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "images", "https://reader.example/cached-images")


class TestImageProxy:
    """Tests for proxy URL construction."""

    async def test_proxy_url(self):
        """Test external URLs are routed through the proxy with their source id."""
        proxy = ImageProxy("https://reader.example/")

        assert proxy.proxy_url(IMAGE_URL, "12") == (
            "https://reader.example/image-proxy?url=https%3A%2F%2Fcdn.example%2Fhero.png&sourceId=12"
        )
        assert proxy.proxy_url(IMAGE_URL) == (
            "https://reader.example/image-proxy?url=https%3A%2F%2Fcdn.example%2Fhero.png"
        )

    async def test_data_url_passthrough(self):
        """Test data URLs are returned unchanged."""
        proxy = ImageProxy("https://reader.example")

        assert proxy.proxy_url("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"

    async def test_already_proxied_passthrough(self):
        """Test proxy and cache URLs are not proxied twice."""
        proxy = ImageProxy("https://reader.example", "https://reader.example/cached-images")
        proxied = proxy.proxy_url(IMAGE_URL)

        assert proxy.proxy_url(proxied) == proxied
        cached = "https://reader.example/cached-images/external/abc.img"
        assert proxy.proxy_url(cached) == cached

    async def test_relative_url_passthrough(self):
        """Test non-absolute URLs are left alone."""
        proxy = ImageProxy("https://reader.example")

        assert proxy.proxy_url("/local.png") == "/local.png"
        assert proxy.proxy_url("") == ""

    async def test_rewrite_only_marked_images(self):
        """Test only images marked by the transformer are rewritten."""
        proxy = ImageProxy("https://reader.example")
        html = (
            f'<img data-use-proxy="true" data-original-src="{IMAGE_URL}" src="{IMAGE_URL}">'
            '<img src="https://cdn.example/other.png">'
        )

        result = proxy.rewrite_image_sources(html, "3")

        assert "image-proxy?url=https%3A%2F%2Fcdn.example%2Fhero.png&amp;sourceId=3" in result
        assert 'src="https://cdn.example/other.png"' in result

    async def test_cache_key(self):
        """Test cache keys are deterministic and grouped by source."""
        assert cache_key(IMAGE_URL, "7") == cache_key(IMAGE_URL, "7")
        assert cache_key(IMAGE_URL, "7").startswith("sources/7/")
        assert cache_key(IMAGE_URL).startswith("external/")
        assert cache_key(IMAGE_URL, "../etc").startswith("sources/___etc/")
        assert cache_key(IMAGE_URL).endswith(".img")


class TestLocalBlobStore:
    """Tests for the filesystem blob store."""

    async def test_upload_and_read(self, blob_store):
        """Test a stored blob is read back with its content type."""
        blob_store.upload("sources/1/a.img", PNG_BYTES, "image/png")

        assert blob_store.exists("sources/1/a.img")
        assert blob_store.read("sources/1/a.img") == (PNG_BYTES, "image/png")
        assert blob_store.public_url("sources/1/a.img") == (
            "https://reader.example/cached-images/sources/1/a.img"
        )

    async def test_upload_overwrites(self, blob_store):
        """Test uploading the same key twice keeps the latest copy."""
        blob_store.upload("external/a.img", b"one", "image/gif")
        blob_store.upload("external/a.img", b"two", "image/png")

        assert blob_store.read("external/a.img") == (b"two", "image/png")

    async def test_missing_blob(self, blob_store):
        """Test reading a missing key returns None."""
        assert blob_store.read("external/missing.img") is None

    async def test_key_cannot_escape_root(self, blob_store):
        """Test path traversal is rejected."""
        with pytest.raises(ValueError):
            blob_store.path_for("../outside.img")


class TestImageCache:
    """Tests for resolving image proxy requests."""

    async def test_data_url_returned_as_is(self, blob_store):
        """Test data URLs are never fetched."""
        cache = ImageCache(blob_store)

        assert await cache.resolve("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"

    async def test_fetch_and_cache(self, blob_store):
        """Test a first request stores the image and returns the cached URL."""
        stream = _stream_of(_image_response())
        patcher = _patch_client(stream)
        try:
            cache = ImageCache(blob_store)
            result = await cache.resolve(IMAGE_URL, "5")
        finally:
            patcher.stop()

        key = cache_key(IMAGE_URL, "5")
        assert result == blob_store.public_url(key)
        assert blob_store.read(key) == (PNG_BYTES, "image/png")
        stream.assert_called_once_with("GET", IMAGE_URL)

    async def test_cached_copy_skips_fetch(self, blob_store):
        """Test an already cached image is not fetched again."""
        key = cache_key(IMAGE_URL, "5")
        blob_store.upload(key, PNG_BYTES, "image/png")
        stream = MagicMock()
        patcher = _patch_client(stream)
        try:
            result = await ImageCache(blob_store).resolve(IMAGE_URL, "5")
        finally:
            patcher.stop()

        assert result == blob_store.public_url(key)
        stream.assert_not_called()

    async def test_fetch_failure_falls_back(self, blob_store):
        """Test network errors, bad statuses and non-images fall back to the original URL."""
        for stream in (
            MagicMock(side_effect=httpx.ConnectTimeout("timed out")),
            _stream_of(_image_response(status_code=404)),
            _stream_of(_image_response(content_type="text/html")),
        ):
            patcher = _patch_client(stream)
            try:
                assert await ImageCache(blob_store).resolve(IMAGE_URL) == IMAGE_URL
            finally:
                patcher.stop()

        assert not blob_store.exists(cache_key(IMAGE_URL))

    async def test_svg_is_not_cached(self, blob_store):
        """Test scriptable image types are left at their origin."""
        svg = b'<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script></svg>'
        url = "https://cdn.example/logo.svg"
        patcher = _patch_client(_stream_of(_image_response(content=svg, content_type="image/svg+xml")))
        try:
            result = await ImageCache(blob_store).resolve(url, "1")
        finally:
            patcher.stop()

        assert result == url
        assert not blob_store.exists(cache_key(url, "1"))

    async def test_oversized_image_stops_reading(self, blob_store):
        """Test the download stops once the size limit is passed."""
        response = _image_response(content=b"x" * 40, chunk_size=4)
        patcher = _patch_client(_stream_of(response))
        try:
            result = await ImageCache(blob_store, max_bytes=10).resolve(IMAGE_URL)
        finally:
            patcher.stop()

        assert result == IMAGE_URL
        assert response.chunks_read == 3
        assert not blob_store.exists(cache_key(IMAGE_URL))

    async def test_declared_length_over_limit(self, blob_store):
        """Test a Content-Length above the limit is rejected before reading."""
        response = _image_response(content=b"x" * 40)
        response.headers["content-length"] = "40"
        patcher = _patch_client(_stream_of(response))
        try:
            result = await ImageCache(blob_store, max_bytes=10).resolve(IMAGE_URL)
        finally:
            patcher.stop()

        assert result == IMAGE_URL
        assert response.chunks_read == 0

    async def test_upload_retries_then_falls_back(self, blob_store):
        """Test failed uploads are retried with a pause, then the original is used."""
        sleep = AsyncMock()
        failing_store = MagicMock(wraps=blob_store)
        failing_store.exists.return_value = False
        failing_store.upload.side_effect = OSError("disk full")
        patcher = _patch_client(_stream_of(_image_response()))
        try:
            cache = ImageCache(failing_store, upload_attempts=3, sleep=sleep)
            result = await cache.resolve(IMAGE_URL)
        finally:
            patcher.stop()

        assert result == IMAGE_URL
        assert failing_store.upload.call_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 0.5]

    async def test_upload_recovers_on_retry(self, blob_store):
        """Test a transient upload failure is retried successfully."""
        failing_store = MagicMock(wraps=blob_store)
        failing_store.exists.return_value = False
        failing_store.upload.side_effect = [OSError("busy"), None]
        failing_store.public_url.side_effect = blob_store.public_url
        patcher = _patch_client(_stream_of(_image_response()))
        try:
            result = await ImageCache(failing_store, sleep=AsyncMock()).resolve(IMAGE_URL)
        finally:
            patcher.stop()

        assert result == blob_store.public_url(cache_key(IMAGE_URL))
