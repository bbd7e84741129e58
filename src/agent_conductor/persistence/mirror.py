"""
Persistence mirror - Best-effort durable copy of live state.

The in-memory registries are the source of truth. This mirror copies them
to a KeyValueStore for crash recovery:
- save() is write-through (queued, coalesced per key)
- save_debounced() waits for a quiet period, for high-frequency updates
- every failure is logged and swallowed; callers never see storage errors
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .store import KeyValueStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Collections:
	"""Collection names used by the core."""
	AGENTS = "agents"
	PLANS = "plans"
	REGISTRIES = "registries"
	NODES = "nodes"
	MEMORY = "memory"


class PersistenceMirror:
	"""Queues writes to a store without ever blocking or raising."""

	def __init__(
		self,
		store: Optional[KeyValueStore] = None,
		output_log_dir: Optional[Path] = None,
		debounce: float = 1.0,
	):
		"""
		Initialize the mirror.

		Args:
			store: Backing store (nothing is persisted when None)
			output_log_dir: Directory for per-process output logs
			debounce: Quiet period for save_debounced(), in seconds
		"""
		self.store = store
		self.output_log_dir = Path(output_log_dir) if output_log_dir else None
		self.debounce = debounce

		self._pending: dict[tuple[str, str], Optional[str]] = {}
		self._timers: dict[tuple[str, str], tuple[asyncio.TimerHandle, BaseModel]] = {}
		self._writer: Optional[asyncio.Task] = None

		if self.output_log_dir:
			try:
				self.output_log_dir.mkdir(parents=True, exist_ok=True)
			except OSError as e:
				logger.error(f"Cannot create output log dir {self.output_log_dir}: {e}")
				self.output_log_dir = None

	# --- Writes ---

	def save(self, collection: str, key: str, model: BaseModel) -> None:
		"""Queue a write of the model's current state."""
		if not self.store:
			return
		timer = self._timers.pop((collection, key), None)
		if timer:
			timer[0].cancel()
		self._enqueue(collection, key, model.model_dump_json())

	def save_debounced(self, collection: str, key: str, model: BaseModel) -> None:
		"""Write the model once no further update arrives for `debounce` seconds."""
		if not self.store:
			return
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			return

		existing = self._timers.pop((collection, key), None)
		if existing:
			existing[0].cancel()

		handle = loop.call_later(self.debounce, self._fire_debounced, collection, key)
		self._timers[(collection, key)] = (handle, model)

	def delete(self, collection: str, key: str) -> None:
		if not self.store:
			return
		timer = self._timers.pop((collection, key), None)
		if timer:
			timer[0].cancel()
		self._enqueue(collection, key, None)

	def _fire_debounced(self, collection: str, key: str) -> None:
		entry = self._timers.pop((collection, key), None)
		if entry:
			self._enqueue(collection, key, entry[1].model_dump_json())

	def _enqueue(self, collection: str, key: str, data: Optional[str]) -> None:
		self._pending[(collection, key)] = data
		if self._writer is None or self._writer.done():
			try:
				loop = asyncio.get_running_loop()
			except RuntimeError:
				return
			self._writer = loop.create_task(self._drain())

	async def _drain(self) -> None:
		while self._pending:
			(collection, key), data = next(iter(self._pending.items()))
			del self._pending[(collection, key)]
			try:
				if data is None:
					await self.store.delete(collection, key)
				else:
					await self.store.save(collection, key, data)
			except Exception as e:
				logger.error(f"Failed to persist {collection}/{key}: {e}")

	async def flush(self) -> None:
		"""Write every queued and debounced record now."""
		for (collection, key), (handle, model) in list(self._timers.items()):
			handle.cancel()
			self._pending[(collection, key)] = model.model_dump_json()
		self._timers.clear()

		while self._pending or (self._writer and not self._writer.done()):
			if self._writer is None or self._writer.done():
				self._writer = asyncio.get_running_loop().create_task(self._drain())
			await self._writer

	# --- Reads ---

	async def load(self, collection: str, key: str, model_cls: Type[M]) -> Optional[M]:
		if not self.store:
			return None
		try:
			raw = await self.store.load(collection, key)
		except Exception as e:
			logger.error(f"Failed to load {collection}/{key}: {e}")
			return None
		if raw is None:
			return None
		try:
			return model_cls.model_validate_json(raw)
		except ValidationError as e:
			logger.warning(f"Discarding unreadable record {collection}/{key}: {e}")
			return None

	async def list_all(self, collection: str, model_cls: Type[M], prefix: str = "") -> list[M]:
		if not self.store:
			return []
		try:
			rows = await self.store.list_all(collection, prefix)
		except Exception as e:
			logger.error(f"Failed to list {collection}: {e}")
			return []

		records = []
		for raw in rows:
			try:
				records.append(model_cls.model_validate_json(raw))
			except ValidationError as e:
				logger.warning(f"Discarding unreadable record in {collection}: {e}")
		return records

	# --- Output logs ---

	def _log_path(self, process_id: str) -> Optional[Path]:
		if not self.output_log_dir:
			return None
		return self.output_log_dir / f"{process_id}.log"

	def append_output(self, process_id: str, text: str) -> None:
		"""Append a chunk of process output to its log file."""
		path = self._log_path(process_id)
		if not path:
			return
		try:
			with open(path, "a", encoding="utf-8") as f:
				f.write(text)
		except OSError as e:
			logger.error(f"Failed to append output for {process_id}: {e}")

	def read_output(self, process_id: str, tail_lines: int = 100) -> list[str]:
		path = self._log_path(process_id)
		if not path or not path.exists():
			return []
		try:
			lines = [line for line in path.read_text(encoding="utf-8").split("\n") if line]
		except OSError as e:
			logger.error(f"Failed to read output for {process_id}: {e}")
			return []
		return lines[-tail_lines:]

	def delete_output(self, process_id: str) -> None:
		path = self._log_path(process_id)
		if path and path.exists():
			try:
				path.unlink()
			except OSError as e:
				logger.error(f"Failed to delete output for {process_id}: {e}")
