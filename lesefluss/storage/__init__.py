"""Storage layer for lesefluss."""

from .base import EntryStore
from .database import SqliteEntryStore, close_store, get_store

__all__ = ["EntryStore", "SqliteEntryStore", "get_store", "close_store"]
