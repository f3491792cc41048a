"""MCP tools for lesefluss."""

from .entry_tools import create_entry_tools

__all__ = ["create_entry_tools"]
