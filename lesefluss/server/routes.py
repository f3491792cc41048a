"""HTTP routes served next to the MCP endpoints.

These are the JSON endpoints the reader front end talks to directly, plus the
image proxy and the cached image files it redirects to.
"""

import json
from typing import Awaitable, Callable, List, Optional

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from lesefluss.errors import FetchError
from lesefluss.images.cache import CACHEABLE_TYPES
from lesefluss.images.proxy import PROXY_PATH
from lesefluss.log_system.correlation import generate_correlation_id, set_correlation_id
from lesefluss.log_system.unified_logger import UnifiedLogger
from lesefluss.models.schemas import FetchedFeed
from lesefluss.runtime import AppServices
from lesefluss.services.feed_fetcher import fetch_feed
from lesefluss.services.feed_validation import validate_feed_url

CACHED_IMAGES_PATH = "/cached-images"


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _non_string_field(body: dict, *names: str) -> Optional[str]:
    for name in names:
        value = body.get(name)
        if value is not None and not isinstance(value, str):
            return name
    return None


def _must_be_string(name: str) -> JSONResponse:
    return JSONResponse({"error": f"{name} must be a string"}, status_code=400)


class HttpBoundary:
    """Starlette handlers bound to the application's collaborators."""

    def __init__(
        self,
        services: AppServices,
        fetch: Callable[[str], Awaitable[FetchedFeed]] = fetch_feed,
    ):
        self.services = services
        self._fetch = fetch
        self.logger = UnifiedLogger.get_logger(__name__)

    async def fetch_feed_document(self, request: Request) -> Response:
        """POST /api/fetch-feed: return the raw feed document."""
        set_correlation_id(generate_correlation_id())
        body = await _json_body(request)
        invalid = _non_string_field(body, "feedUrl")
        if invalid:
            return _must_be_string(invalid)
        feed_url = body.get("feedUrl")
        if not feed_url:
            return JSONResponse({"error": "feedUrl is required"}, status_code=400)

        try:
            fetched = await self._fetch(feed_url)
        except FetchError as e:
            self.logger.warning(f"fetch-feed failed for {feed_url}: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse({"content": fetched.content, "contentType": fetched.content_type})

    async def image_proxy(self, request: Request) -> Response:
        """GET /image-proxy: redirect to the cached copy or the original."""
        set_correlation_id(generate_correlation_id())
        url = request.query_params.get("url")
        if not url:
            return JSONResponse({"error": "url is required"}, status_code=400)

        source_id = request.query_params.get("sourceId") or None
        target = await self.services.image_cache.resolve(url, source_id)
        return RedirectResponse(target, status_code=302)

    async def cached_image(self, request: Request) -> Response:
        """GET /cached-images/{key}: serve a stored image."""
        key = request.path_params["key"]
        if not key.endswith(".img"):
            return JSONResponse({"error": "Not found"}, status_code=404)
        try:
            stored = self.services.blob_store.read(key)
        except ValueError:
            stored = None

        if stored is None:
            return JSONResponse({"error": "Not found"}, status_code=404)

        data, content_type = stored
        if content_type not in CACHEABLE_TYPES:
            return JSONResponse({"error": "Not found"}, status_code=404)

        return Response(
            data,
            media_type=content_type,
            headers={
                "Cache-Control": "public, max-age=31536000, immutable",
                "X-Content-Type-Options": "nosniff",
                "Content-Security-Policy": "sandbox",
            },
        )

    async def resolve_entry_link(self, request: Request) -> Response:
        """POST /api/resolve-entry-link: find an entry's link in the live feed."""
        set_correlation_id(generate_correlation_id())
        body = await _json_body(request)
        invalid = _non_string_field(body, "feedUrl", "title", "publishedAt")
        if invalid:
            return _must_be_string(invalid)
        feed_url = body.get("feedUrl")
        title = body.get("title")
        published_at = body.get("publishedAt")

        if not feed_url or not (title or published_at):
            return JSONResponse(
                {"error": "feedUrl and a title or publishedAt are required"},
                status_code=400,
            )

        try:
            link = await self.services.link_resolver.resolve(feed_url, title, published_at)
        except FetchError as e:
            self.logger.warning(f"resolve-entry-link failed for {feed_url}: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        if not link:
            return JSONResponse({"error": "No link found"}, status_code=404)
        return JSONResponse({"link": link})

    async def validate_feed(self, request: Request) -> Response:
        """POST /api/validate-feed: describe the feed at a URL."""
        set_correlation_id(generate_correlation_id())
        body = await _json_body(request)
        invalid = _non_string_field(body, "feedUrl")
        if invalid:
            return _must_be_string(invalid)
        feed_url = body.get("feedUrl")
        if not feed_url:
            return JSONResponse({"error": "feedUrl is required"}, status_code=400)

        return JSONResponse(await validate_feed_url(feed_url))

    def routes(self) -> List[Route]:
        """Starlette routes for every handler."""
        return [
            Route("/api/fetch-feed", self.fetch_feed_document, methods=["POST"]),
            Route(PROXY_PATH, self.image_proxy, methods=["GET"]),
            Route(CACHED_IMAGES_PATH + "/{key:path}", self.cached_image, methods=["GET"]),
            Route("/api/resolve-entry-link", self.resolve_entry_link, methods=["POST"]),
            Route("/api/validate-feed", self.validate_feed, methods=["POST"]),
        ]

    def register(self, mcp_server: FastMCP) -> None:
        """Mount every handler on the MCP server's HTTP app."""
        for route in self.routes():
            mcp_server.custom_route(route.path, methods=sorted(route.methods - {"HEAD"}))(route.endpoint)
            self.logger.info(f"Registered HTTP route: {route.path}")
