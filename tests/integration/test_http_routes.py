"""HTTP route integration tests.

The Starlette handlers are exercised through ``httpx.ASGITransport`` so the
full request/response cycle (JSON bodies, status codes, redirects) is
covered without a running server.
"""

import pytest
import httpx
from unittest.mock import AsyncMock, patch
from starlette.applications import Starlette

from lesefluss.config import ServerConfig
from lesefluss.errors import FetchError
from lesefluss.images.proxy import cache_key
from lesefluss.models.schemas import FetchedFeed
from lesefluss.server.app import create_mcp_server
from lesefluss.server.routes import HttpBoundary


# Use anyio instead of pytest-asyncio to match SDK approach
pytestmark = pytest.mark.anyio

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Bridge Inbox</title>
    <entry>
        <id>urn:kill-the-newsletter:entry42</id>
        <title>Hello from the bridge</title>
        <updated>2024-02-01T08:30:00Z</updated>
        <link rel="alternate" type="text/html" href="https://bridge.example/feeds/abc123/entries/entry42.html"/>
    </entry>
</feed>
"""


@pytest.fixture
def feed_fetch():
    return AsyncMock(return_value=FetchedFeed(
        url="https://bridge.example/feeds/abc123.xml",
        content=ATOM_FEED,
        content_type="application/atom+xml",
    ))


@pytest.fixture
async def client(services, feed_fetch):
    app = Starlette(routes=HttpBoundary(services, fetch=feed_fetch).routes())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="https://reader.example") as client:
        yield client


class TestFetchFeedRoute:
    """Tests for POST /api/fetch-feed."""

    async def test_fetch_feed(self, client, feed_fetch):
        """Test the raw document and content type are returned."""
        response = await client.post("/api/fetch-feed", json={"feedUrl": "https://bridge.example/feeds/abc123.xml"})

        assert response.status_code == 200
        assert response.json() == {"content": ATOM_FEED, "contentType": "application/atom+xml"}
        feed_fetch.assert_awaited_once_with("https://bridge.example/feeds/abc123.xml")

    async def test_missing_feed_url(self, client):
        """Test a request without feedUrl is rejected."""
        response = await client.post("/api/fetch-feed", json={})

        assert response.status_code == 400

    async def test_non_string_feed_url(self, client, feed_fetch):
        """Test a feedUrl that is not a string is rejected."""
        response = await client.post("/api/fetch-feed", json={"feedUrl": 42})

        assert response.status_code == 400
        assert response.json() == {"error": "feedUrl must be a string"}
        feed_fetch.assert_not_awaited()

    async def test_invalid_json(self, client):
        """Test a body that is not JSON is treated as missing parameters."""
        response = await client.post("/api/fetch-feed", content=b"not json")

        assert response.status_code == 400

    async def test_fetch_failure(self, client, feed_fetch):
        """Test fetch failures become a 500 with the error message."""
        feed_fetch.side_effect = FetchError("HTTP 404: Not Found", status=404)

        response = await client.post("/api/fetch-feed", json={"feedUrl": "https://bridge.example/x.xml"})

        assert response.status_code == 500
        assert response.json() == {"error": "HTTP 404: Not Found"}


class TestImageRoutes:
    """Tests for GET /image-proxy and GET /cached-images."""

    async def test_missing_url(self, client):
        """Test the proxy requires a url parameter."""
        response = await client.get("/image-proxy")

        assert response.status_code == 400

    async def test_data_url_redirects_to_itself(self, client):
        """Test data URLs are redirected to unchanged."""
        response = await client.get("/image-proxy", params={"url": "data:image/png;base64,AAAA"})

        assert response.status_code == 302
        assert response.headers["location"] == "data:image/png;base64,AAAA"

    async def test_redirect_to_resolved_target(self, client, services):
        """Test the proxy redirects wherever the image cache resolves to."""
        cached = "https://reader.example/cached-images/sources/4/abc.img"
        services.image_cache.resolve = AsyncMock(return_value=cached)

        response = await client.get(
            "/image-proxy", params={"url": "https://cdn.example/a.png", "sourceId": "4"}
        )

        assert response.status_code == 302
        assert response.headers["location"] == cached
        services.image_cache.resolve.assert_awaited_once_with("https://cdn.example/a.png", "4")

    async def test_serve_cached_image(self, client, services):
        """Test a stored image is served with its content type."""
        key = cache_key("https://cdn.example/a.png", "4")
        services.blob_store.upload(key, b"GIF89a", "image/gif")

        response = await client.get(f"/cached-images/{key}")

        assert response.status_code == 200
        assert response.content == b"GIF89a"
        assert response.headers["content-type"] == "image/gif"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["content-security-policy"] == "sandbox"

    async def test_stored_svg_not_served(self, client, services):
        """Test a stored non-raster type is never served from the cache route."""
        key = cache_key("https://cdn.example/logo.svg", "4")
        services.blob_store.upload(key, b"<svg><script>alert(1)</script></svg>", "image/svg+xml")

        response = await client.get(f"/cached-images/{key}")

        assert response.status_code == 404

    async def test_missing_cached_image(self, client):
        """Test unknown and non-image keys are not found."""
        missing = await client.get("/cached-images/external/missing.img")
        sidecar = await client.get("/cached-images/external/missing.img.content-type")

        assert missing.status_code == 404
        assert sidecar.status_code == 404


class TestResolveEntryLinkRoute:
    """Tests for POST /api/resolve-entry-link."""

    async def test_resolve_by_title(self, client, link_fetch):
        """Test a matching title returns the live entry's link."""
        link_fetch.return_value = FetchedFeed(url="u", content=ATOM_FEED)

        response = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "title": "Hello from the bridge",
        })

        assert response.status_code == 200
        assert response.json() == {"link": "https://bridge.example/feeds/abc123/entries/entry42.html"}

    async def test_resolve_by_date(self, client, link_fetch):
        """Test the nearest date is used when only publishedAt is given."""
        link_fetch.return_value = FetchedFeed(url="u", content=ATOM_FEED)

        response = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "publishedAt": "2024-02-01T09:00:00Z",
        })

        assert response.status_code == 200

    async def test_missing_parameters(self, client):
        """Test feedUrl and at least one matcher are required."""
        no_feed = await client.post("/api/resolve-entry-link", json={"title": "x"})
        no_matcher = await client.post("/api/resolve-entry-link", json={"feedUrl": "https://a.example/feed"})

        assert no_feed.status_code == 400
        assert no_matcher.status_code == 400

    async def test_non_string_parameters(self, client, link_fetch):
        """Test values of the wrong JSON type are rejected with a JSON error."""
        numeric_date = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "publishedAt": 1700000000,
        })
        list_title = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "title": ["Hello"],
        })

        assert numeric_date.status_code == 400
        assert numeric_date.json() == {"error": "publishedAt must be a string"}
        assert list_title.status_code == 400
        link_fetch.assert_not_awaited()

    async def test_no_match(self, client, link_fetch):
        """Test a title that matches nothing gives 404."""
        link_fetch.return_value = FetchedFeed(url="u", content=ATOM_FEED)

        response = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "title": "Something else entirely",
        })

        assert response.status_code == 404
        assert response.json() == {"error": "No link found"}

    async def test_fetch_failure(self, client, link_fetch):
        """Test a live feed that cannot be fetched gives 500."""
        link_fetch.side_effect = FetchError("Network error: down")

        response = await client.post("/api/resolve-entry-link", json={
            "feedUrl": "https://bridge.example/feeds/abc123.xml",
            "title": "Hello from the bridge",
        })

        assert response.status_code == 500


class TestValidateFeedRoute:
    """Tests for POST /api/validate-feed."""

    async def test_validate(self, client):
        """Test the validation result is returned as JSON."""
        result = {"ok": True, "title": "Bridge Inbox", "type": "atom", "imageUrl": None, "siteUrl": None, "itemCount": 1}
        with patch("lesefluss.server.routes.validate_feed_url", AsyncMock(return_value=result)):
            response = await client.post("/api/validate-feed", json={"feedUrl": "https://bridge.example/feeds/abc123.xml"})

        assert response.status_code == 200
        assert response.json() == result

    async def test_missing_feed_url(self, client):
        """Test feedUrl is required."""
        response = await client.post("/api/validate-feed", json={})

        assert response.status_code == 400

    async def test_non_string_feed_url(self, client):
        """Test a feedUrl that is not a string is rejected."""
        response = await client.post("/api/validate-feed", json={"feedUrl": {"url": "x"}})

        assert response.status_code == 400


class TestServerAssembly:
    """Tests for the assembled MCP server."""

    async def test_tools_registered(self, services):
        """Test every tool is registered without kwargs in its schema."""
        server = create_mcp_server(ServerConfig(name="lesefluss-test"), services)

        tools = await server.list_tools()
        names = {tool.name for tool in tools}

        assert {"add_subscription", "sync_subscriptions", "render_entry", "validate_feed"} <= names
        for tool in tools:
            assert "kwargs" not in (tool.inputSchema or {}).get("properties", {})
            assert "ctx" not in (tool.inputSchema or {}).get("properties", {})

    async def test_routes_mounted_on_http_app(self, services):
        """Test the HTTP routes are served by the streamable HTTP app."""
        server = create_mcp_server(ServerConfig(name="lesefluss-test"), services)
        app = server.streamable_http_app()

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://127.0.0.1:3001") as client:
            response = await client.post("/api/fetch-feed", json={})

        assert response.status_code == 400
