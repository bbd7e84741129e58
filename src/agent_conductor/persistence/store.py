"""
Key-value stores - Abstract persistence used for crash recovery.

Records are grouped into collections (agents, plans, registries, nodes,
memory) and addressed by key. Values are JSON text.

Usage:
	store = SQLiteStore("data/conductor.db")
	await store.init()

	await store.save("plans", plan.id, plan.model_dump_json())
	raw = await store.load("plans", plan.id)
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
	"""save/load/list by id, grouped into collections."""

	async def init(self) -> None:
		"""Prepare the store for use."""

	async def close(self) -> None:
		"""Release any resources."""

	@abstractmethod
	async def save(self, collection: str, key: str, data: str) -> None:
		...

	@abstractmethod
	async def load(self, collection: str, key: str) -> Optional[str]:
		...

	@abstractmethod
	async def list_all(self, collection: str, prefix: str = "") -> list[str]:
		"""Return every value in a collection whose key starts with prefix."""

	@abstractmethod
	async def delete(self, collection: str, key: str) -> None:
		...


class InMemoryStore(KeyValueStore):
	"""Dictionary-backed store, for tests and ephemeral runs."""

	def __init__(self):
		self._data: dict[str, dict[str, str]] = {}

	async def save(self, collection: str, key: str, data: str) -> None:
		self._data.setdefault(collection, {})[key] = data

	async def load(self, collection: str, key: str) -> Optional[str]:
		return self._data.get(collection, {}).get(key)

	async def list_all(self, collection: str, prefix: str = "") -> list[str]:
		items = self._data.get(collection, {})
		return [value for key, value in sorted(items.items()) if key.startswith(prefix)]

	async def delete(self, collection: str, key: str) -> None:
		self._data.get(collection, {}).pop(key, None)


class SQLiteStore(KeyValueStore):
	"""SQLite-backed store with one table keyed by (collection, key)."""

	def __init__(self, db_path: str):
		"""Initialize the store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self) -> None:
		"""Initialize the database schema."""
		if self._db:
			return
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS records (
				collection TEXT NOT NULL,
				key TEXT NOT NULL,
				data TEXT NOT NULL,
				updated_at TEXT NOT NULL,
				PRIMARY KEY (collection, key)
			)
		""")

		await self._db.commit()
		logger.info(f"Store initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def save(self, collection: str, key: str, data: str) -> None:
		if not self._db:
			await self.init()

		await self._db.execute(
			"""
			INSERT INTO records (collection, key, data, updated_at)
			VALUES (?, ?, ?, ?)
			ON CONFLICT(collection, key) DO UPDATE SET
				data = excluded.data,
				updated_at = excluded.updated_at
			""",
			(collection, key, data, datetime.now().isoformat()),
		)
		await self._db.commit()

	async def load(self, collection: str, key: str) -> Optional[str]:
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT data FROM records WHERE collection = ? AND key = ?",
			(collection, key),
		) as cursor:
			row = await cursor.fetchone()

		return row["data"] if row else None

	async def list_all(self, collection: str, prefix: str = "") -> list[str]:
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT data FROM records WHERE collection = ? AND key LIKE ? ESCAPE '\\' ORDER BY key",
			(collection, _escape_like(prefix) + "%"),
		) as cursor:
			rows = await cursor.fetchall()

		return [row["data"] for row in rows]

	async def delete(self, collection: str, key: str) -> None:
		if not self._db:
			await self.init()

		await self._db.execute(
			"DELETE FROM records WHERE collection = ? AND key = ?",
			(collection, key),
		)
		await self._db.commit()


def _escape_like(text: str) -> str:
	return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
