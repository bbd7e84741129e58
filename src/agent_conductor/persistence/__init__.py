"""Persistence module - Key-value stores and the best-effort state mirror."""

from .mirror import Collections, PersistenceMirror
from .store import InMemoryStore, KeyValueStore, SQLiteStore

__all__ = [
	"Collections",
	"PersistenceMirror",
	"KeyValueStore",
	"InMemoryStore",
	"SQLiteStore",
]
