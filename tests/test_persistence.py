"""Tests for the key-value stores and the persistence mirror."""

from pathlib import Path

import pytest

from agent_conductor.models import AgentProcessRecord, OrchestrationPlan, ProcessStatus
from agent_conductor.persistence import Collections, InMemoryStore, PersistenceMirror, SQLiteStore


class FailingStore(InMemoryStore):
	"""Store whose writes always fail."""

	async def save(self, collection, key, data):
		raise OSError("disk full")


class TestSQLiteStore:
	"""Tests for the SQLite-backed store."""

	@pytest.mark.asyncio
	async def test_save_load_overwrite(self, tmp_path: Path):
		store = SQLiteStore(str(tmp_path / "test.db"))
		await store.init()
		try:
			await store.save("plans", "p1", '{"v": 1}')
			await store.save("plans", "p1", '{"v": 2}')

			assert await store.load("plans", "p1") == '{"v": 2}'
			assert await store.load("plans", "missing") is None
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_list_all_with_prefix(self, tmp_path: Path):
		"""Prefixes match literally, including LIKE wildcards."""
		store = SQLiteStore(str(tmp_path / "test.db"))
		await store.init()
		try:
			await store.save("nodes", "proj_a:n1", "1")
			await store.save("nodes", "proj_a:n2", "2")
			await store.save("nodes", "projXa:n3", "3")
			await store.save("agents", "proj_a:n4", "4")

			assert await store.list_all("nodes", "proj_a:") == ["1", "2"]
			assert len(await store.list_all("nodes")) == 3
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_delete(self, tmp_path: Path):
		store = SQLiteStore(str(tmp_path / "test.db"))
		await store.init()
		try:
			await store.save("agents", "a1", "{}")
			await store.delete("agents", "a1")
			assert await store.load("agents", "a1") is None
		finally:
			await store.close()


class TestPersistenceMirror:
	"""Tests for queued, debounced and failure-tolerant writes."""

	@pytest.mark.asyncio
	async def test_save_and_load_model(self):
		mirror = PersistenceMirror(InMemoryStore())
		record = AgentProcessRecord(id="a1", name="worker", status=ProcessStatus.DONE, exit_code=0)

		mirror.save(Collections.AGENTS, record.id, record)
		await mirror.flush()

		loaded = await mirror.load(Collections.AGENTS, "a1", AgentProcessRecord)
		assert loaded == record

	@pytest.mark.asyncio
	async def test_save_snapshots_current_state(self):
		"""save() serializes immediately; later mutation needs another save."""
		mirror = PersistenceMirror(InMemoryStore())
		record = AgentProcessRecord(id="a1")

		mirror.save(Collections.AGENTS, record.id, record)
		record.status = ProcessStatus.FAILED
		await mirror.flush()

		loaded = await mirror.load(Collections.AGENTS, "a1", AgentProcessRecord)
		assert loaded.status == ProcessStatus.RUNNING

	@pytest.mark.asyncio
	async def test_debounced_save_coalesces(self):
		store = InMemoryStore()
		mirror = PersistenceMirror(store, debounce=60)
		plan = OrchestrationPlan(id="p1", task_description="first")

		mirror.save_debounced(Collections.PLANS, plan.id, plan)
		plan.task_description = "second"
		mirror.save_debounced(Collections.PLANS, plan.id, plan)

		assert await store.load(Collections.PLANS, "p1") is None

		await mirror.flush()
		loaded = await mirror.load(Collections.PLANS, "p1", OrchestrationPlan)
		assert loaded.task_description == "second"

	@pytest.mark.asyncio
	async def test_failed_writes_are_swallowed(self):
		mirror = PersistenceMirror(FailingStore())
		mirror.save(Collections.AGENTS, "a1", AgentProcessRecord(id="a1"))

		await mirror.flush()

		assert await mirror.load(Collections.AGENTS, "a1", AgentProcessRecord) is None

	@pytest.mark.asyncio
	async def test_unreadable_records_are_skipped(self):
		store = InMemoryStore()
		await store.save(Collections.AGENTS, "good", AgentProcessRecord(id="good").model_dump_json())
		await store.save(Collections.AGENTS, "bad", "{not json")
		mirror = PersistenceMirror(store)

		records = await mirror.list_all(Collections.AGENTS, AgentProcessRecord)

		assert [r.id for r in records] == ["good"]
		assert await mirror.load(Collections.AGENTS, "bad", AgentProcessRecord) is None

	@pytest.mark.asyncio
	async def test_delete(self):
		store = InMemoryStore()
		mirror = PersistenceMirror(store)
		mirror.save(Collections.AGENTS, "a1", AgentProcessRecord(id="a1"))
		mirror.delete(Collections.AGENTS, "a1")
		await mirror.flush()

		assert await store.load(Collections.AGENTS, "a1") is None

	@pytest.mark.asyncio
	async def test_without_store_is_noop(self):
		mirror = PersistenceMirror()
		mirror.save(Collections.AGENTS, "a1", AgentProcessRecord(id="a1"))
		await mirror.flush()
		assert await mirror.list_all(Collections.AGENTS, AgentProcessRecord) == []


class TestOutputLogs:
	"""Tests for per-process output log files."""

	def test_append_and_tail(self, tmp_path: Path):
		mirror = PersistenceMirror(output_log_dir=tmp_path / "out")
		mirror.append_output("a1", "one\ntwo\n")
		mirror.append_output("a1", "three\n")

		assert mirror.read_output("a1") == ["one", "two", "three"]
		assert mirror.read_output("a1", tail_lines=2) == ["two", "three"]

	def test_missing_log(self, tmp_path: Path):
		mirror = PersistenceMirror(output_log_dir=tmp_path / "out")
		assert mirror.read_output("nope") == []

	def test_delete_output(self, tmp_path: Path):
		mirror = PersistenceMirror(output_log_dir=tmp_path / "out")
		mirror.append_output("a1", "x\n")
		mirror.delete_output("a1")
		assert not (tmp_path / "out" / "a1.log").exists()
