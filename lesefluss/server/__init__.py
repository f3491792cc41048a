"""MCP server package initialization"""

from lesefluss.server.app import create_mcp_server, main
from lesefluss.server.routes import HttpBoundary

__all__ = ["create_mcp_server", "main", "HttpBoundary"]
