"""Lesefluss - read newsletters delivered as RSS/Atom feeds."""

__version__ = "0.1.0"
