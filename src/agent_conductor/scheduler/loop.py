"""
Task graph scheduler - Drives one plan's subtasks to completion.

Responsibilities:
- Spawn every subtask whose dependencies are done, together in one pass
- Retry failed subtasks with exponential backoff up to max_retries
- Fail dependents of a permanently failed subtask without spawning them
- Recover subtasks whose process vanished without an exit signal (watchdog)
- Cancel: kill bound processes and stop advancing
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..config import SchedulerSettings
from ..events import EventBus, EventKind
from ..models import (
	OrchestrationPlan,
	PlanStatus,
	ProcessStatus,
	SubTask,
	SubTaskStatus,
)
from ..persistence import Collections, PersistenceMirror
from ..supervisor import ExitInfo, OneShotProcess, ProcessSupervisor
from .prompts import build_prompt

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 500

DEPENDENCY_FAILED = "dependency failed"
UNKNOWN_DEPENDENCY = "unknown dependency"
DEPENDENCY_CYCLE = "dependency cycle"
CANCELLED = "cancelled"
VANISHED = "process vanished without an exit signal"


class TaskGraphScheduler:
	"""
	Executes an OrchestrationPlan against a ProcessSupervisor.

	Every state change goes through one asyncio.Lock, so exit handlers,
	retry timers and the watchdog never interleave on the same plan.
	"""

	def __init__(
		self,
		plan: OrchestrationPlan,
		supervisor: ProcessSupervisor,
		settings: Optional[SchedulerSettings] = None,
		mirror: Optional[PersistenceMirror] = None,
		events: Optional[EventBus] = None,
		mcp_config: Optional[str] = None,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		"""
		Initialize the scheduler.

		Args:
			plan: Plan to execute (mutated in place)
			supervisor: Spawns and tracks subtask processes
			settings: Watchdog, backoff and prompt tunables
			mirror: Durable mirror for the plan (defaults to the supervisor's)
			events: Bus for scheduler events (a private bus when omitted)
			mcp_config: MCP config path passed to every agent
			sleep: Awaitable used for retry backoff
		"""
		self.plan = plan
		self.supervisor = supervisor
		self.settings = settings or SchedulerSettings()
		self.mirror = mirror or supervisor.mirror
		self.events = events or EventBus()
		self.mcp_config = mcp_config
		self._sleep = sleep

		self._lock = asyncio.Lock()
		self._watchers: dict[str, asyncio.Task] = {}
		self._retry_timers: dict[str, asyncio.Task] = {}
		self._watchdog: Optional[asyncio.Task] = None
		self._finished = asyncio.Event()

	@property
	def id(self) -> str:
		return self.plan.id

	def backoff_delay(self, attempt: int) -> float:
		"""Delay before retry attempt `attempt` (1-based)."""
		return min(self.settings.backoff_base * (2 ** (attempt - 1)), self.settings.backoff_cap)

	# --- Lifecycle ---

	async def start(self) -> None:
		"""Move the plan to running and spawn the first layer."""
		async with self._lock:
			if self.plan.status != PlanStatus.DECOMPOSING:
				raise RuntimeError(f"Plan {self.plan.id} already started ({self.plan.status.value})")
			self.plan.status = PlanStatus.RUNNING
			self.plan.started_at = datetime.now().isoformat()
			self.mirror.save(Collections.PLANS, self.plan.id, self.plan)
			self._emit(EventKind.PLAN_READY, plan=self.plan.model_dump(mode="json"))
			logger.info(f"Plan {self.plan.id} started with {len(self.plan.subtasks)} subtasks")

			self._watchdog = asyncio.create_task(self._watchdog_loop())
			await self._advance_locked()

	async def wait(self, timeout: Optional[float] = None) -> OrchestrationPlan:
		"""Wait until the plan reaches done, failed or cancelled."""
		await asyncio.wait_for(self._finished.wait(), timeout=timeout)
		return self.plan

	async def run(self, timeout: Optional[float] = None) -> OrchestrationPlan:
		await self.start()
		return await self.wait(timeout)

	async def cancel(self) -> bool:
		"""
		Cancel the plan.

		Kills every process bound to a running subtask and marks those
		subtasks failed. Returns False if the plan had already finished.
		"""
		async with self._lock:
			if self.plan.is_terminal:
				return False

			self._stop_timers()
			for st in self.plan.subtasks:
				if st.status != SubTaskStatus.RUNNING:
					continue
				if st.agent_process_id:
					self.supervisor.kill(st.agent_process_id)
				st.status = SubTaskStatus.FAILED
				st.error = CANCELLED

			self.plan.status = PlanStatus.CANCELLED
			self.plan.completed_at = datetime.now().isoformat()
			self.mirror.save(Collections.PLANS, self.plan.id, self.plan)
			self._emit(EventKind.ORCHESTRATION_DONE, status=PlanStatus.CANCELLED.value)
			self._finished.set()

		logger.info(f"Plan {self.plan.id} cancelled")
		return True

	# --- Advancement ---

	async def advance(self) -> None:
		async with self._lock:
			await self._advance_locked()

	async def _advance_locked(self) -> None:
		plan = self.plan
		if plan.is_terminal or plan.status == PlanStatus.DECOMPOSING:
			return

		self._propagate_failures()

		ready = [
			st for st in plan.subtasks
			if st.status in (SubTaskStatus.PENDING, SubTaskStatus.READY) and self._deps_done(st)
		]

		if not ready and not self._in_flight():
			# Nothing running and nothing can start: what is left waits on itself
			for st in plan.subtasks:
				if not st.is_terminal:
					self._fail(st, DEPENDENCY_CYCLE)

		if all(st.is_terminal for st in plan.subtasks):
			self._finish_plan()
			return

		for st in ready:
			st.status = SubTaskStatus.RUNNING
			st.agent_process_id = f"agent-{uuid.uuid4().hex[:8]}"
			self._emit(EventKind.TASK_STARTED, subtask_id=st.id, agent_process_id=st.agent_process_id)
		self._persist()

		if ready:
			await asyncio.gather(*(self._spawn(st) for st in ready))

	def _propagate_failures(self) -> None:
		"""Fail waiting subtasks with a failed or unknown dependency, transitively."""
		changed = True
		while changed:
			changed = False
			for st in self.plan.subtasks:
				if st.status not in (SubTaskStatus.PENDING, SubTaskStatus.READY):
					continue
				for dep_id in st.deps:
					dep = self.plan.get_subtask(dep_id)
					if dep is None:
						self._fail(st, UNKNOWN_DEPENDENCY)
						changed = True
						break
					if dep.status == SubTaskStatus.FAILED:
						self._fail(st, DEPENDENCY_FAILED)
						changed = True
						break

	def _deps_done(self, st: SubTask) -> bool:
		for dep_id in st.deps:
			dep = self.plan.get_subtask(dep_id)
			if dep is None or dep.status != SubTaskStatus.DONE:
				return False
		return True

	def _in_flight(self) -> bool:
		return any(st.status == SubTaskStatus.RUNNING for st in self.plan.subtasks)

	async def _spawn(self, st: SubTask) -> OneShotProcess:
		prompt = build_prompt(st, self.plan, self.settings.dependency_output_chars)
		proc = await self.supervisor.spawn_oneshot(
			prompt,
			self.plan.project_path,
			process_id=st.agent_process_id,
			mcp_config=self.mcp_config,
			role=st.role,
			name=st.title,
			skills=st.skills,
			orchestration_id=self.plan.id,
			subtask_id=st.id,
			project_id=self.plan.project_id or None,
		)
		self._watchers[st.id] = asyncio.create_task(self._watch(st.id, proc))
		return proc

	async def _watch(self, subtask_id: str, proc: OneShotProcess) -> None:
		info = await proc.wait()
		await self._on_exit(subtask_id, proc, info)

	async def _on_exit(self, subtask_id: str, proc: OneShotProcess, info: ExitInfo) -> None:
		async with self._lock:
			st = self.plan.get_subtask(subtask_id)
			# Stale attempt, cancelled plan or already recovered by the watchdog
			if (
				st is None
				or self.plan.is_terminal
				or st.status != SubTaskStatus.RUNNING
				or st.agent_process_id != proc.id
			):
				return
			self._watchers.pop(subtask_id, None)

			if info.succeeded:
				st.status = SubTaskStatus.DONE
				st.output = proc.output
				st.error = None
				self.plan.cache_hits += 1
				self._emit(EventKind.TASK_DONE, subtask_id=st.id, output=proc.output_tail(OUTPUT_TAIL_CHARS))
				logger.info(f"Subtask {st.id} ({st.title}) done")
			else:
				self._handle_failure(st, proc.output_tail(OUTPUT_TAIL_CHARS) or f"exit code {info.code}")

			self._persist()
			await self._advance_locked()

	def _handle_failure(self, st: SubTask, error: str) -> None:
		"""Count a failed attempt; schedule a retry or fail permanently."""
		st.retry_count += 1
		st.error = error
		st.agent_process_id = None

		if st.retry_count <= st.max_retries:
			delay = self.backoff_delay(st.retry_count)
			logger.warning(
				f"Subtask {st.id} failed (attempt {st.retry_count}/{st.max_retries + 1}), "
				f"retrying in {delay:.1f}s"
			)
			self._emit(EventKind.TASK_RETRYING, subtask_id=st.id, attempt=st.retry_count, delay=delay, error=error)
			self._retry_timers[st.id] = asyncio.create_task(self._retry_after(st.id, delay))
		else:
			logger.warning(f"Subtask {st.id} failed permanently after {st.retry_count} attempts")
			self._fail(st, error)

	async def _retry_after(self, subtask_id: str, delay: float) -> None:
		await self._sleep(delay)
		async with self._lock:
			self._retry_timers.pop(subtask_id, None)
			st = self.plan.get_subtask(subtask_id)
			if st is None or self.plan.is_terminal or st.status != SubTaskStatus.RUNNING:
				return
			st.status = SubTaskStatus.PENDING
			await self._advance_locked()

	def _fail(self, st: SubTask, error: str) -> None:
		st.status = SubTaskStatus.FAILED
		st.error = error
		self._emit(EventKind.TASK_FAILED, subtask_id=st.id, error=error)

	def _finish_plan(self) -> None:
		plan = self.plan
		any_failed = any(st.status == SubTaskStatus.FAILED for st in plan.subtasks)
		plan.status = PlanStatus.FAILED if any_failed else PlanStatus.DONE
		plan.completed_at = datetime.now().isoformat()
		self._stop_timers()
		self.mirror.save(Collections.PLANS, plan.id, plan)
		self._emit(EventKind.ORCHESTRATION_DONE, status=plan.status.value)
		self._finished.set()
		logger.info(f"Plan {plan.id} finished: {plan.status.value}")

	# --- Watchdog ---

	async def _watchdog_loop(self) -> None:
		while not self.plan.is_terminal:
			await asyncio.sleep(self.settings.watchdog_interval)
			try:
				await self.check_liveness()
			except Exception as e:
				logger.error(f"Watchdog error for plan {self.plan.id}: {e}")

	async def check_liveness(self) -> list[str]:
		"""
		Recover running subtasks whose process is gone.

		A process is gone when the supervisor no longer knows it, or when it
		is terminal but no exit handler is pending for it. Such subtasks are
		treated exactly like a failed exit.

		Returns:
			IDs of recovered subtasks
		"""
		async with self._lock:
			if self.plan.is_terminal:
				return []

			dead = []
			for st in self.plan.subtasks:
				if (
					st.status != SubTaskStatus.RUNNING
					or st.id in self._retry_timers
					or not st.agent_process_id
				):
					continue
				proc = self.supervisor.get(st.agent_process_id)
				if proc is None:
					dead.append(st)
				elif proc.status != ProcessStatus.RUNNING:
					watcher = self._watchers.get(st.id)
					if watcher is None or watcher.done():
						dead.append(st)

			for st in dead:
				logger.warning(f"Subtask {st.id}: process {st.agent_process_id} vanished")
				watcher = self._watchers.pop(st.id, None)
				if watcher:
					watcher.cancel()
				self._handle_failure(st, VANISHED)

			if dead:
				self._persist()
				await self._advance_locked()

			return [st.id for st in dead]

	def _stop_timers(self) -> None:
		if self._watchdog and not self._watchdog.done():
			if self._watchdog is not asyncio.current_task():
				self._watchdog.cancel()
		self._watchdog = None
		for task in self._retry_timers.values():
			if task is not asyncio.current_task():
				task.cancel()
		self._retry_timers.clear()

	# --- Helpers ---

	def _emit(self, kind: EventKind, **data) -> None:
		self.events.emit(kind, self.plan.id, plan_id=self.plan.id, **data)

	def _persist(self) -> None:
		self.mirror.save_debounced(Collections.PLANS, self.plan.id, self.plan)

	def snapshot(self) -> dict:
		"""Read-only view of the plan and its progress."""
		return {
			**self.plan.model_dump(mode="json"),
			"progress": self.plan.get_progress(),
			"retrying": sorted(self._retry_timers),
		}
