"""
Runtime - The process-wide registry of live supervisors, plans and hierarchies.

One Runtime is constructed explicitly per process and torn down with
shutdown(). Everything it owns shares one PersistenceMirror and one core
EventBus.

Usage:
	runtime = Runtime(load_config())
	await runtime.start()
	scheduler = await runtime.start_plan("add a health endpoint", "/path/to/project")
	await scheduler.wait()
	await runtime.shutdown()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import Config, get_config
from .context import find_mcp_config
from .errors import HierarchyNotFoundError, PlanNotFoundError
from .events import EventBus
from .hierarchy import HierarchyCoordinator, MemoryStore
from .models import (
	AgentProcessRecord,
	HierarchyNode,
	HierarchyRegistry,
	OrchestrationPlan,
	PlanStatus,
	SubTaskStatus,
)
from .persistence import Collections, KeyValueStore, PersistenceMirror, SQLiteStore
from .scheduler import TaskGraphScheduler, build_plan
from .supervisor import AgentLauncher, ProcessSupervisor, make_launcher

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted by restart"


class Runtime:
	"""Owns the supervisor, the plan registry, the hierarchy registry and the core bus."""

	def __init__(
		self,
		config: Optional[Config] = None,
		store: Optional[KeyValueStore] = None,
		launcher: Optional[AgentLauncher] = None,
		supervisor_cls: type[ProcessSupervisor] = ProcessSupervisor,
	):
		"""
		Initialize the runtime.

		Args:
			config: Configuration (the global config when omitted)
			store: Backing store (SQLite at config.db_path when omitted)
			launcher: Agent command-line builder (built from agent_command and
				agent_protocol when omitted)
			supervisor_cls: ProcessSupervisor implementation to construct
		"""
		self.config = config or get_config()
		self.store = store if store is not None else SQLiteStore(self.config.db_path)
		self.mirror = PersistenceMirror(
			self.store,
			output_log_dir=self.config.output_log_dir,
			debounce=self.config.persist_debounce,
		)
		self.events = EventBus(default_maxsize=self.config.event_queue_size)
		self.supervisor = supervisor_cls(
			launcher=launcher or make_launcher(self.config.agent_command, self.config.agent_protocol),
			mirror=self.mirror,
			kill_grace_period=self.config.kill_grace_period,
			output_buffer_chars=self.config.output_buffer_chars,
			event_queue_size=self.config.event_queue_size,
		)
		self.memory = MemoryStore(
			self.mirror,
			ring_size=self.config.memory_ring_size,
			domain_knowledge_cap=self.config.domain_knowledge_cap,
		)

		self.plans: dict[str, TaskGraphScheduler] = {}
		self.hierarchies: dict[str, HierarchyCoordinator] = {}
		self.reconciled: list[AgentProcessRecord] = []
		self._opened = False
		self._started = False

	async def __aenter__(self) -> "Runtime":
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.shutdown()

	# --- Lifecycle ---

	async def open(self) -> None:
		"""Open the store only. Enough for read-only queries."""
		if self._opened:
			return
		self.config.ensure_dirs()
		await self.store.init()
		self._opened = True

	async def start(self) -> None:
		"""Open the store and recover state left by a previous run."""
		if self._started:
			return
		await self.open()

		self.reconciled = await self.supervisor.reconcile_after_restart()
		if self.reconciled:
			logger.info(f"Marked {len(self.reconciled)} stale processes as disconnected")

		await self._recover_plans()

		for registry in await self.mirror.list_all(Collections.REGISTRIES, HierarchyRegistry):
			if registry.project_id in self.hierarchies:
				continue
			self.hierarchies[registry.project_id] = await HierarchyCoordinator.restore(
				registry,
				self.supervisor,
				memory=self.memory,
				settings=self.config.hierarchy_settings(),
				mirror=self.mirror,
				events=self.events,
			)

		self._started = True
		logger.info("Runtime started")

	async def _recover_plans(self) -> None:
		"""Fail plans that were still running when the previous process died."""
		for plan in await self.mirror.list_all(Collections.PLANS, OrchestrationPlan):
			if plan.is_terminal or plan.id in self.plans:
				continue
			for st in plan.subtasks:
				if not st.is_terminal:
					st.status = SubTaskStatus.FAILED
					st.error = INTERRUPTED
			plan.status = PlanStatus.FAILED
			plan.completed_at = datetime.now().isoformat()
			self.mirror.save(Collections.PLANS, plan.id, plan)
			logger.warning(f"Plan {plan.id} was interrupted by a restart")

	async def shutdown(self) -> None:
		"""Cancel plans, deactivate hierarchies, kill processes and flush storage."""
		for scheduler in list(self.plans.values()):
			if not scheduler.plan.is_terminal:
				await scheduler.cancel()

		for coordinator in list(self.hierarchies.values()):
			if coordinator.is_active:
				await coordinator.deactivate()

		await self.supervisor.shutdown()
		await self.close()
		self._started = False
		logger.info("Runtime stopped")

	async def close(self) -> None:
		"""Flush pending writes and close the store."""
		if not self._opened:
			return
		await self.mirror.flush()
		await self.store.close()
		self._opened = False

	# --- Plans ---

	async def start_plan(
		self,
		task: str,
		project_path: str,
		project_id: Optional[str] = None,
	) -> TaskGraphScheduler:
		"""Build a template plan for the task and start executing it."""
		project_path = str(Path(project_path).resolve())
		plan = build_plan(
			task,
			project_id or Path(project_path).name,
			project_path,
			max_retries=self.config.max_retries,
		)
		scheduler = TaskGraphScheduler(
			plan,
			self.supervisor,
			settings=self.config.scheduler_settings(),
			mirror=self.mirror,
			events=self.events,
			mcp_config=find_mcp_config(project_path),
		)
		self.plans[plan.id] = scheduler
		await scheduler.start()
		return scheduler

	def get_plan(self, plan_id: str) -> TaskGraphScheduler:
		scheduler = self.plans.get(plan_id)
		if scheduler is None:
			raise PlanNotFoundError(f"Plan not found: {plan_id}")
		return scheduler

	async def cancel_plan(self, plan_id: str) -> bool:
		return await self.get_plan(plan_id).cancel()

	async def load_plans(self) -> list[OrchestrationPlan]:
		"""Live plans plus every persisted one, newest first."""
		plans = {plan.id: plan for plan in await self.mirror.list_all(Collections.PLANS, OrchestrationPlan)}
		plans.update({plan_id: scheduler.plan for plan_id, scheduler in self.plans.items()})
		return sorted(plans.values(), key=lambda p: p.created_at, reverse=True)

	# --- Hierarchies ---

	def get_or_create_hierarchy(
		self,
		project_id: str,
		project_path: str,
		project_name: Optional[str] = None,
	) -> HierarchyCoordinator:
		coordinator = self.hierarchies.get(project_id)
		if coordinator is None:
			coordinator = HierarchyCoordinator(
				project_id,
				str(Path(project_path).resolve()),
				self.supervisor,
				project_name=project_name,
				memory=self.memory,
				settings=self.config.hierarchy_settings(),
				mirror=self.mirror,
				events=self.events,
			)
			self.hierarchies[project_id] = coordinator
		return coordinator

	def get_hierarchy(self, project_id: str) -> HierarchyCoordinator:
		coordinator = self.hierarchies.get(project_id)
		if coordinator is None:
			raise HierarchyNotFoundError(f"No hierarchy for project: {project_id}")
		return coordinator

	async def remove_hierarchy(self, project_id: str) -> None:
		"""Deactivate a hierarchy and forget its registry. Memory is kept."""
		coordinator = self.get_hierarchy(project_id)
		if coordinator.is_active:
			await coordinator.deactivate()
		for node_id in list(coordinator.nodes):
			self.mirror.delete(Collections.NODES, f"{project_id}:{node_id}")
		self.mirror.delete(Collections.REGISTRIES, project_id)
		del self.hierarchies[project_id]

	async def load_tree(self, project_id: str) -> dict:
		"""Registry and nodes for a project, live or from storage."""
		if project_id in self.hierarchies:
			return self.hierarchies[project_id].get_tree()
		registry = await self.mirror.load(Collections.REGISTRIES, project_id, HierarchyRegistry)
		if registry is None:
			raise HierarchyNotFoundError(f"No hierarchy for project: {project_id}")
		nodes = await self.mirror.list_all(Collections.NODES, HierarchyNode, prefix=f"{project_id}:")
		return {"registry": registry, "nodes": nodes}

	# --- Processes ---

	async def load_process_records(self) -> list[AgentProcessRecord]:
		"""Every persisted process record, live records taking precedence."""
		records = {r.id: r for r in await self.mirror.list_all(Collections.AGENTS, AgentProcessRecord)}
		records.update({proc.id: proc.record for proc in self.supervisor.list()})
		return sorted(records.values(), key=lambda r: r.started_at, reverse=True)
