"""
Hierarchy coordinator - A persistent orchestrator with lazily created role leaders.

Responsibilities:
- Keep one interactive orchestrator process per project, spawned on first use
- Parse dispatch plans out of the orchestrator's streamed output
- Create leader nodes the first time a role is needed and wake them per task
- Spawn disposable employees under a leader
- Carry per-role memory across tasks and keep bounded message logs

The coordinator never retries a leader: a failed leader is reported back
to the orchestrator, which decides what to do next.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..config import HierarchySettings
from ..context import find_mcp_config, gather_project_context, load_repo_context
from ..errors import (
	ConductorError,
	EmployeeFailedError,
	LeaderFailedError,
	OrchestrationTimeoutError,
	OrchestratorExitedError,
	UnknownRoleError,
)
from ..events import EventBus, EventKind, Subscription
from ..models import (
	AgentMemoryEntry,
	HierarchyNode,
	HierarchyRegistry,
	MessageLogEntry,
	NodeStatus,
	NodeTier,
	ProcessStatus,
	RegistryStatus,
)
from ..persistence import Collections, PersistenceMirror
from ..roles import LEADER_ROLES, AgentRole, leader_contract, parse_role
from ..supervisor import InteractiveProcess, ProcessSupervisor
from .memory import MemoryStore, extract_file_paths, render_memory, summarize_to_budget
from .output_parser import (
	DispatchPlan,
	IncrementalDirectiveParser,
	SpawnEmployee,
	StreamTextExtractor,
	TaskComplete,
)

logger = logging.getLogger(__name__)

RESULT_TAIL_CHARS = 500
EVENT_SUMMARY_CHARS = 300
TASK_TITLE_CHARS = 100
SEEN_DIRECTIVES_CAP = 256

# Orchestrator states that require a fresh process before the next task
RESPAWN_STATUSES = {NodeStatus.PLACEHOLDER, NodeStatus.COLD, NodeStatus.SHUTDOWN}

DIRECTIVE_CONTRACT = "\n".join([
	"INSTRUCTIONS:",
	"When you receive a task, decompose it and output a dispatch_plan JSON block:",
	"```json",
	'{ "type": "dispatch_plan", "taskId": "<id>", "subtasks": [',
	'  { "role": "<leader_role>", "title": "<short title>", "prompt": "<detailed task>", "deps": ["<other_subtask_role>"], "priority": 1 }',
	"] }",
	"```",
	"",
	"A leader that needs help may be given an employee:",
	"```json",
	'{ "type": "spawn_employee", "parentLeaderRole": "<leader_role>", "task": "<narrow task>", "role": "<optional role>" }',
	"```",
	"",
	"When all leaders report back, output:",
	"```json",
	'{ "type": "task_complete", "taskId": "<id>", "summary": "<what was accomplished>" }',
	"```",
])


def _uid() -> str:
	return uuid.uuid4().hex[:8]


@dataclass
class PendingTask:
	"""A task sent to the orchestrator that has not completed yet."""
	task_id: str
	description: str
	future: asyncio.Future
	timeout_handle: Optional[asyncio.TimerHandle] = None
	created_at: str = field(default_factory=lambda: datetime.now().isoformat())

	def resolve(self, summary: str) -> None:
		self._cancel_timeout()
		if not self.future.done():
			self.future.set_result(summary)

	def reject(self, error: Exception) -> None:
		self._cancel_timeout()
		if not self.future.done():
			self.future.set_exception(error)

	def _cancel_timeout(self) -> None:
		if self.timeout_handle:
			self.timeout_handle.cancel()
			self.timeout_handle = None


class HierarchyCoordinator:
	"""
	Coordinates the orchestrator -> leader -> employee tree for one project.
	"""

	def __init__(
		self,
		project_id: str,
		project_path: str,
		supervisor: ProcessSupervisor,
		project_name: Optional[str] = None,
		memory: Optional[MemoryStore] = None,
		settings: Optional[HierarchySettings] = None,
		mirror: Optional[PersistenceMirror] = None,
		events: Optional[EventBus] = None,
		mcp_config: Optional[str] = None,
	):
		"""
		Initialize the coordinator.

		Args:
			project_id: Project identifier
			project_path: Working directory for every agent
			supervisor: Spawns and tracks agent processes
			project_name: Display name (defaults to the id)
			memory: Shared memory store
			settings: Timeout, budget and log caps
			mirror: Durable mirror (defaults to the supervisor's)
			events: Bus for hierarchy events (a private bus when omitted)
			mcp_config: MCP config path (looked up from the project when omitted)
		"""
		self.project_id = project_id
		self.project_path = project_path
		self.project_name = project_name or project_id
		self.supervisor = supervisor
		self.mirror = mirror or supervisor.mirror
		self.memory = memory or MemoryStore(self.mirror)
		self.settings = settings or HierarchySettings()
		self.events = events or EventBus()
		self.mcp_config = mcp_config if mcp_config is not None else find_mcp_config(project_path)

		self.registry = HierarchyRegistry(
			project_id=project_id,
			project_path=project_path,
			project_name=self.project_name,
			orchestrator_node_id=f"orch-{project_id}",
		)
		self.nodes: dict[str, HierarchyNode] = {}

		self._orchestrator_proc: Optional[InteractiveProcess] = None
		self._consumer: Optional[asyncio.Task] = None
		self._spawn_lock = asyncio.Lock()
		self._pending: dict[str, PendingTask] = {}
		self._seen_directives: OrderedDict[tuple, None] = OrderedDict()
		self._background: set[asyncio.Task] = set()
		self._employee_counts: dict[str, int] = defaultdict(int)

	# --- Properties ---

	@property
	def is_active(self) -> bool:
		return self.registry.status == RegistryStatus.ACTIVE

	@property
	def orchestrator(self) -> Optional[HierarchyNode]:
		return self.nodes.get(self.registry.orchestrator_node_id)

	@property
	def orchestrator_process(self) -> Optional[InteractiveProcess]:
		return self._orchestrator_proc

	def leader(self, role: AgentRole) -> Optional[HierarchyNode]:
		node_id = self.registry.leaders.get(role)
		return self.nodes.get(node_id) if node_id else None

	# --- Activation ---

	async def activate(self) -> None:
		"""
		Mark the hierarchy active with the orchestrator as a placeholder.

		No process is spawned until the first task arrives.
		"""
		if self.is_active:
			return

		await self.memory.hydrate(self.project_id)

		orch = self.orchestrator
		if orch is None:
			orch = self._create_node(self.registry.orchestrator_node_id, NodeTier.ORCHESTRATOR, AgentRole.ORCHESTRATOR, None)
		if orch.status in (NodeStatus.COLD, NodeStatus.SHUTDOWN) or self._orchestrator_proc is None:
			orch.status = NodeStatus.PLACEHOLDER
			orch.process_id = None
		self.memory.get_or_create(self.project_id, AgentRole.ORCHESTRATOR)

		self.registry.status = RegistryStatus.ACTIVE
		self.registry.activated_at = datetime.now().isoformat()
		self._save_node(orch)
		self._save_registry()

		self._log(orch.id, AgentRole.ORCHESTRATOR, "info", f"Hierarchy activated for {self.project_name}")
		logger.info(f"Hierarchy activated for {self.project_id}")

	async def deactivate(self) -> None:
		"""
		Kill every running process and mark the hierarchy inactive.

		Nodes and memory are kept, so a later activation resumes from them.
		"""
		proc, self._orchestrator_proc = self._orchestrator_proc, None
		if proc:
			self.supervisor.kill(proc.id)

		for node in self.nodes.values():
			if node.tier == NodeTier.ORCHESTRATOR:
				continue
			if node.process_id and node.status in (NodeStatus.ACTIVE, NodeStatus.SPAWNING):
				self.supervisor.kill(node.process_id)
				node.status = NodeStatus.DORMANT if node.tier == NodeTier.LEADER else NodeStatus.FAILED
				node.process_id = None
				node.current_task_id = None
				self._save_node(node)

		orch = self.orchestrator
		if orch:
			orch.status = NodeStatus.COLD
			orch.process_id = None
			orch.current_task_id = None
			self._save_node(orch)

		self._reject_pending(lambda: OrchestratorExitedError(self.project_id, None, "hierarchy deactivated"))

		self.registry.status = RegistryStatus.INACTIVE
		self.registry.deactivated_at = datetime.now().isoformat()
		self._save_registry()

		self._emit(EventKind.ORCHESTRATOR_SHUTDOWN, reason="deactivated")
		self._log(self.registry.orchestrator_node_id, AgentRole.ORCHESTRATOR, "info", "Hierarchy deactivated")
		logger.info(f"Hierarchy deactivated for {self.project_id}")

	# --- Tasks ---

	async def send_task(self, text: str) -> str:
		"""
		Send a task to the orchestrator and wait for its completion summary.

		Raises:
			OrchestrationTimeoutError: No completion signal within the task timeout
			OrchestratorExitedError: The orchestrator process died first
		"""
		pending = await self.submit_task(text)
		return await pending.future

	async def submit_task(self, text: str) -> PendingTask:
		"""Send a task without waiting; the returned PendingTask's future resolves later."""
		if not self.is_active:
			await self.activate()

		proc = await self._ensure_orchestrator()

		task_id = f"task-{_uid()}"
		loop = asyncio.get_running_loop()
		pending = PendingTask(task_id=task_id, description=text, future=loop.create_future())
		pending.timeout_handle = loop.call_later(self.settings.task_timeout, self._on_task_timeout, task_id)
		self._pending[task_id] = pending

		message = "\n".join([
			f"NEW TASK (id: {task_id}):",
			text,
			"",
			"Decompose this into subtasks for the appropriate team leaders.",
			"Output a dispatch_plan JSON block.",
		])
		if not self.supervisor.send_input(proc.id, message):
			self._pending.pop(task_id, None)
			pending._cancel_timeout()
			raise OrchestratorExitedError(self.project_id, proc.exit_code, proc.output_tail(RESULT_TAIL_CHARS))

		orch = self.orchestrator
		orch.status = NodeStatus.ACTIVE
		orch.current_task_id = task_id
		orch.last_active_at = datetime.now().isoformat()
		self._save_node(orch)

		self._emit(EventKind.TASK_RECEIVED, task_id=task_id, description=text)
		self._log(orch.id, AgentRole.ORCHESTRATOR, "task", f"[{task_id}] {text}")
		logger.info(f"Task {task_id} sent to orchestrator of {self.project_id}")
		return pending

	def _on_task_timeout(self, task_id: str) -> None:
		pending = self._pending.pop(task_id, None)
		if pending is None:
			return
		pending.timeout_handle = None
		pending.reject(OrchestrationTimeoutError(
			f"Task {task_id} got no completion signal within {self.settings.task_timeout:.0f}s"
		))

		orch = self.orchestrator
		if orch and orch.current_task_id == task_id and orch.status == NodeStatus.ACTIVE:
			self._set_orchestrator_idle(orch)

		self._log(self.registry.orchestrator_node_id, AgentRole.ORCHESTRATOR, "error", f"[{task_id}] timed out")
		logger.warning(f"Task {task_id} timed out for {self.project_id}")

	def _reject_pending(self, make_error) -> None:
		pending, self._pending = list(self._pending.values()), {}
		for task in pending:
			task.reject(make_error())

	# --- Orchestrator process ---

	async def _ensure_orchestrator(self) -> InteractiveProcess:
		"""Spawn the orchestrator if it has no live process."""
		async with self._spawn_lock:
			orch = self.orchestrator
			proc = self._orchestrator_proc
			if proc is not None and proc.status != ProcessStatus.RUNNING:
				# Ended before its exit event reached the consumer
				self._on_orchestrator_exit(proc, proc.exit_code)
				proc = None
			if proc is not None and orch.status not in RESPAWN_STATUSES:
				return proc

			orch.status = NodeStatus.SPAWNING
			self._save_node(orch)

			proc = await self.supervisor.spawn_interactive(
				self.project_path,
				process_id=f"orch-proc-{self.project_id}-{_uid()}",
				mcp_config=self.mcp_config,
				role=AgentRole.ORCHESTRATOR,
				name=f"Orchestrator [{self.project_name}]",
				skills=["task-decomposition", "coordination"],
				project_id=self.project_id,
				hierarchy_node_id=orch.id,
			)
			self._orchestrator_proc = proc
			self._seen_directives.clear()

			orch.process_id = proc.id
			orch.status = NodeStatus.IDLE
			orch.last_active_at = datetime.now().isoformat()
			self._save_node(orch)

			subscription = proc.subscribe({EventKind.STDOUT, EventKind.EXIT})
			self._consumer = asyncio.create_task(self._consume_orchestrator(proc, subscription))

			self.supervisor.send_input(proc.id, self._build_init_message())

			self._emit(EventKind.ORCHESTRATOR_SPAWNED, process_id=proc.id)
			self._log(orch.id, AgentRole.ORCHESTRATOR, "info", f"Orchestrator spawned ({proc.id})")
			logger.info(f"Spawned orchestrator {proc.id} for {self.project_id}")
			return proc

	def _build_init_message(self) -> str:
		memory = self.memory.get_or_create(self.project_id, AgentRole.ORCHESTRATOR)
		return "\n".join([
			f'You are the ORCHESTRATOR for project "{self.project_name}".',
			"",
			"PROJECT_CONTEXT:",
			gather_project_context(self.project_path),
			"",
			leader_contract(AgentRole.ORCHESTRATOR),
			"",
			"YOUR MEMORY:",
			render_memory(summarize_to_budget(memory, self.settings.memory_token_budget)),
			"",
			DIRECTIVE_CONTRACT,
			"",
			"Available leader roles: " + ", ".join(role.value for role in LEADER_ROLES),
			"",
			'Reply "READY" to confirm you are initialized.',
		])

	async def _consume_orchestrator(self, proc: InteractiveProcess, subscription: Subscription) -> None:
		"""Feed orchestrator stdout through the directive parser until it exits."""
		extractor = StreamTextExtractor()
		parser = IncrementalDirectiveParser()
		try:
			async for event in subscription:
				if event.kind == EventKind.STDOUT:
					text = extractor.feed(event.data.get("text", ""))
				else:
					text = extractor.flush()

				if text:
					for directive in parser.feed(text):
						self._apply_directive(directive)

				if event.kind == EventKind.EXIT:
					self._on_orchestrator_exit(proc, event.data.get("code"))
					return
		finally:
			subscription.close()

	def _apply_directive(self, directive) -> None:
		key = directive.dedup_key()
		if key in self._seen_directives:
			logger.debug(f"Ignoring repeated directive {key}")
			return
		self._seen_directives[key] = None
		while len(self._seen_directives) > SEEN_DIRECTIVES_CAP:
			self._seen_directives.popitem(last=False)

		try:
			if isinstance(directive, DispatchPlan):
				self._spawn_background(self._run_dispatch(directive))
			elif isinstance(directive, TaskComplete):
				self._handle_task_complete(directive)
			elif isinstance(directive, SpawnEmployee):
				self._spawn_background(self._run_employee_directive(directive))
		except Exception as e:
			logger.error(f"Failed to apply {directive.kind.value} directive: {e}")

	def _spawn_background(self, coro) -> asyncio.Task:
		task = asyncio.create_task(coro)
		self._background.add(task)
		task.add_done_callback(self._background.discard)
		return task

	def _on_orchestrator_exit(self, proc: InteractiveProcess, code: Optional[int]) -> None:
		if self._orchestrator_proc is not proc:
			# Deactivated or already replaced
			return
		self._orchestrator_proc = None

		orch = self.orchestrator
		orch.status = NodeStatus.SHUTDOWN
		orch.process_id = None
		orch.current_task_id = None
		self._save_node(orch)

		tail = proc.output_tail(RESULT_TAIL_CHARS)
		self._reject_pending(lambda: OrchestratorExitedError(self.project_id, code, tail))

		self._emit(EventKind.ORCHESTRATOR_SHUTDOWN, process_id=proc.id, code=code)
		self._log(orch.id, AgentRole.ORCHESTRATOR, "error", f"Orchestrator exited with code {code}")
		logger.warning(f"Orchestrator {proc.id} for {self.project_id} exited with code {code}")

	# --- Directives ---

	async def _run_dispatch(self, plan: DispatchPlan) -> None:
		self._emit(EventKind.PLAN_RECEIVED, task_id=plan.task_id, subtasks=len(plan.subtasks))
		self._log(
			self.registry.orchestrator_node_id, AgentRole.ORCHESTRATOR, "task",
			f"[{plan.task_id}] dispatch plan: " + ", ".join(st.role.value for st in plan.subtasks),
		)

		results = await self.execute_dispatch(plan)

		report = ["ALL LEADERS HAVE COMPLETED:"]
		report += [f"- {role.value}: {'DONE' if ok else 'FAILED'}" for role, ok in results.items()]
		report += ["", f"Output a task_complete JSON block with a summary (taskId: {plan.task_id})."]

		proc = self._orchestrator_proc
		if proc is None or not self.supervisor.send_input(proc.id, "\n".join(report)):
			logger.warning(f"Could not report dispatch results for {plan.task_id}: orchestrator not running")

	async def execute_dispatch(self, plan: DispatchPlan) -> dict[AgentRole, bool]:
		"""
		Run a dispatch plan's leaders in dependency-respecting batches.

		Subtasks are ordered by priority. Each batch holds every remaining
		subtask whose dependency roles have all been attempted; a batch runs
		concurrently and always finishes before the next starts. Dependencies
		on roles absent from the plan are ignored.

		Returns:
			role -> whether every subtask for that role succeeded
		"""
		for st in plan.subtasks:
			self._ensure_leader(st.role)

		remaining = sorted(plan.subtasks, key=lambda st: st.priority)
		results: dict[AgentRole, bool] = {}
		outputs: dict[str, str] = {}

		while remaining:
			if not self.is_active:
				for st in remaining:
					results[st.role] = False
				break

			remaining_roles = {st.role.value for st in remaining}
			batch = []
			batch_roles = set()
			for st in remaining:
				if st.role in batch_roles:
					continue
				if any(dep in remaining_roles and dep != st.role.value for dep in st.deps):
					continue
				batch.append(st)
				batch_roles.add(st.role)

			if not batch:
				for st in remaining:
					results[st.role] = False
				logger.warning(
					f"Dispatch {plan.task_id} has a dependency cycle between: {', '.join(sorted(remaining_roles))}"
				)
				break

			outcomes = await asyncio.gather(
				*(
					self.wake_leader(
						st.role,
						plan.task_id,
						st.prompt,
						{dep: outputs[dep] for dep in st.deps if dep in outputs},
						title=st.title,
					)
					for st in batch
				),
				return_exceptions=True,
			)

			for st, outcome in zip(batch, outcomes):
				ok = not isinstance(outcome, BaseException)
				if ok:
					outputs[st.role.value] = outcome
				else:
					logger.warning(f"Leader {st.role.value} failed for {plan.task_id}: {outcome}")
				results[st.role] = results.get(st.role, True) and ok

			remaining = [st for st in remaining if not any(st is done for done in batch)]

		return results

	def _handle_task_complete(self, directive: TaskComplete) -> None:
		pending = self._pending.pop(directive.task_id, None)

		orch = self.orchestrator
		orch.tasks_completed += 1
		self._set_orchestrator_idle(orch)

		title = pending.description if pending else directive.task_id
		self.memory.update_after_task(self.project_id, AgentRole.ORCHESTRATOR, AgentMemoryEntry(
			task_id=directive.task_id,
			task_title=title[:TASK_TITLE_CHARS],
			status="done",
			outcome=directive.summary,
		))

		self._emit(EventKind.TASK_COMPLETE, task_id=directive.task_id, summary=directive.summary)
		self._log(orch.id, AgentRole.ORCHESTRATOR, "output", f"[{directive.task_id}] {directive.summary}")
		logger.info(f"Task {directive.task_id} complete for {self.project_id}")

		if pending:
			pending.resolve(directive.summary)

	def _set_orchestrator_idle(self, orch: HierarchyNode) -> None:
		"""Idle unless other tasks are still waiting on the orchestrator."""
		orch.last_active_at = datetime.now().isoformat()
		if self._pending:
			orch.current_task_id = next(iter(self._pending))
		else:
			orch.current_task_id = None
			if orch.status == NodeStatus.ACTIVE:
				orch.status = NodeStatus.IDLE
				self._emit(EventKind.ORCHESTRATOR_IDLE)
		self._save_node(orch)

	async def _run_employee_directive(self, directive: SpawnEmployee) -> None:
		try:
			await self.spawn_employee(directive.parent_leader_role, directive.task, directive.role)
		except ConductorError as e:
			logger.warning(f"Employee under {directive.parent_leader_role.value} did not succeed: {e}")

	# --- Leaders ---

	def _ensure_leader(self, role: AgentRole) -> HierarchyNode:
		"""The role's leader node, created dormant on first use."""
		node = self.leader(role)
		if node is not None:
			return node

		orch = self.orchestrator
		node = self._create_node(f"leader-{role.value}-{self.project_id}", NodeTier.LEADER, role, orch.id if orch else None)
		node.status = NodeStatus.DORMANT
		if orch and node.id not in orch.child_ids:
			orch.child_ids.append(node.id)
			self._save_node(orch)

		self.registry.leaders[role] = node.id
		self.memory.get_or_create(self.project_id, role)
		self._save_node(node)
		self._save_registry()

		self._log(node.id, role, "info", f"{role.value} leader created")
		logger.info(f"Created {role.value} leader for {self.project_id}")
		return node

	async def wake_leader(
		self,
		role: "AgentRole | str",
		task_id: str,
		prompt: str,
		dependency_outputs: Optional[dict[str, str]] = None,
		title: Optional[str] = None,
	) -> str:
		"""
		Run one task on a leader with a fresh one-shot process.

		Args:
			role: Leader role (must already have a node)
			task_id: Task the work belongs to
			prompt: What the leader should do
			dependency_outputs: role -> output of leaders this one waited on
			title: Short title for memory (defaults to the prompt head)

		Returns:
			Tail of the leader's output

		Raises:
			UnknownRoleError: No leader node exists for the role
			LeaderFailedError: The process exited unsuccessfully
		"""
		role = parse_role(role)
		node = self.leader(role)
		if node is None:
			raise UnknownRoleError(f"No leader for role {role.value} in project {self.project_id}")
		if not self.is_active:
			raise ConductorError(f"Hierarchy for {self.project_id} is not active")

		node.status = NodeStatus.ACTIVE
		node.current_task_id = task_id
		node.last_active_at = datetime.now().isoformat()
		self._save_node(node)
		self._emit(EventKind.LEADER_WAKING, role=role.value, task_id=task_id)

		proc = await self.supervisor.spawn_oneshot(
			self._build_leader_prompt(role, task_id, prompt, dependency_outputs or {}),
			self.project_path,
			process_id=f"leader-{role.value}-{_uid()}",
			mcp_config=self.mcp_config,
			max_turns=self.settings.leader_max_turns,
			role=role,
			name=f"{role.value} Leader",
			project_id=self.project_id,
			hierarchy_node_id=node.id,
		)
		node.process_id = proc.id
		self._save_node(node)
		self._emit(EventKind.LEADER_ACTIVE, role=role.value, task_id=task_id, process_id=proc.id)
		self._log(node.id, role, "task", f"[{task_id}] {prompt[:TASK_TITLE_CHARS]}")

		info = await proc.wait()
		output = proc.output
		succeeded = info.succeeded

		node.status = NodeStatus.DORMANT
		node.process_id = None
		node.current_task_id = None
		node.last_active_at = datetime.now().isoformat()
		if succeeded:
			node.tasks_completed += 1
		else:
			node.tasks_failed += 1
		self._save_node(node)

		self.memory.update_after_task(self.project_id, role, AgentMemoryEntry(
			task_id=task_id,
			task_title=(title or prompt)[:TASK_TITLE_CHARS],
			status="done" if succeeded else "failed",
			files_modified=extract_file_paths(output),
			outcome=output[-RESULT_TAIL_CHARS:] if succeeded else f"Failed with exit code {info.code}",
			employee_count=self._employee_counts.pop(node.id, 0),
		))

		self._emit(
			EventKind.LEADER_DONE if succeeded else EventKind.LEADER_FAILED,
			role=role.value,
			task_id=task_id,
			process_id=proc.id,
			summary=output[-EVENT_SUMMARY_CHARS:],
		)
		self._log(
			node.id, role, "output" if succeeded else "error",
			f"[{task_id}] {'done' if succeeded else f'failed with code {info.code}'}",
		)

		if not succeeded:
			raise LeaderFailedError(role.value, info.code, output[-RESULT_TAIL_CHARS:])
		return output[-RESULT_TAIL_CHARS:]

	def _build_leader_prompt(
		self,
		role: AgentRole,
		task_id: str,
		prompt: str,
		dependency_outputs: dict[str, str],
	) -> str:
		memory = self.memory.render(self.project_id, role, self.settings.memory_token_budget)
		sections = [
			f"REPO_CONTEXT:\n{load_repo_context(self.project_path)}",
			leader_contract(role),
			f"YOUR MEMORY (from previous work on this project):\n{memory}",
			f"TASK (id: {task_id}):\n{prompt}",
		]
		if dependency_outputs:
			deps = "\n\n".join(f"--- {dep_role} ---\n{output}" for dep_role, output in dependency_outputs.items())
			sections.append(f"COMPLETED DEPENDENCIES:\n{deps}")
		return "\n\n".join(sections)

	# --- Employees ---

	async def spawn_employee(
		self,
		parent_role: "AgentRole | str",
		task: str,
		role: "AgentRole | str | None" = None,
	) -> str:
		"""
		Run a disposable one-shot employee under a leader.

		Raises:
			UnknownRoleError: The parent role has no leader node
			EmployeeFailedError: The process exited unsuccessfully
		"""
		parent_role = parse_role(parent_role)
		role = parse_role(role) if role else parent_role
		parent = self.leader(parent_role)
		if parent is None:
			raise UnknownRoleError(f"No leader for role {parent_role.value} in project {self.project_id}")

		node = self._create_node(f"emp-{_uid()}", NodeTier.EMPLOYEE, role, parent.id)
		node.status = NodeStatus.ACTIVE
		node.last_active_at = datetime.now().isoformat()
		self._save_node(node)
		parent.child_ids.append(node.id)
		self._save_node(parent)
		if parent.status == NodeStatus.ACTIVE:
			self._employee_counts[parent.id] += 1

		prompt = "\n\n".join([
			f"REPO_CONTEXT:\n{load_repo_context(self.project_path)}",
			f"ROLE: {role.value} Employee (reporting to the {parent_role.value} leader)",
			f"TASK: {task}",
		])
		proc = await self.supervisor.spawn_oneshot(
			prompt,
			self.project_path,
			process_id=f"emp-proc-{_uid()}",
			mcp_config=self.mcp_config,
			max_turns=self.settings.employee_max_turns,
			role=role,
			name=f"{role.value} Employee",
			project_id=self.project_id,
			hierarchy_node_id=node.id,
		)
		node.process_id = proc.id
		self._save_node(node)
		self._emit(
			EventKind.EMPLOYEE_SPAWNED,
			parent_role=parent_role.value,
			node_id=node.id,
			process_id=proc.id,
			task=task,
		)
		self._log(node.id, role, "task", task[:TASK_TITLE_CHARS])

		info = await proc.wait()
		output = proc.output

		node.status = NodeStatus.DONE if info.succeeded else NodeStatus.FAILED
		node.process_id = None
		node.last_active_at = datetime.now().isoformat()
		if info.succeeded:
			node.tasks_completed += 1
		else:
			node.tasks_failed += 1
		self._save_node(node)

		self._emit(
			EventKind.EMPLOYEE_DONE,
			node_id=node.id,
			process_id=proc.id,
			status=node.status.value,
			summary=output[-EVENT_SUMMARY_CHARS:],
		)

		if not info.succeeded:
			raise EmployeeFailedError(role.value, info.code, output[-RESULT_TAIL_CHARS:])
		return output[-RESULT_TAIL_CHARS:]

	# --- Queries ---

	def get_tree(self) -> dict:
		"""Registry plus every node, for rendering."""
		return {
			"registry": self.registry,
			"nodes": list(self.nodes.values()),
		}

	def get_status(self) -> dict:
		orch = self.orchestrator
		return {
			"project_id": self.project_id,
			"project_name": self.project_name,
			"active": self.is_active,
			"orchestrator_status": orch.status.value if orch else NodeStatus.COLD.value,
			"active_leader_count": sum(
				1 for node in self.nodes.values()
				if node.tier == NodeTier.LEADER and node.status == NodeStatus.ACTIVE
			),
			"total_tasks_completed": sum(node.tasks_completed for node in self.nodes.values()),
			"pending_tasks": len(self._pending),
		}

	def get_log(self, limit: int = 50) -> list[MessageLogEntry]:
		return self.registry.message_log[-limit:]

	async def drain(self) -> None:
		"""Wait for in-flight dispatches and employees to finish."""
		while self._background:
			await asyncio.gather(*list(self._background), return_exceptions=True)

	# --- Restore ---

	@classmethod
	async def restore(
		cls,
		registry: HierarchyRegistry,
		supervisor: ProcessSupervisor,
		memory: Optional[MemoryStore] = None,
		settings: Optional[HierarchySettings] = None,
		mirror: Optional[PersistenceMirror] = None,
		events: Optional[EventBus] = None,
	) -> "HierarchyCoordinator":
		"""
		Rebuild a coordinator from persisted state after a restart.

		Processes do not survive a restart: the orchestrator comes back as a
		placeholder (active registry) or cold, leaders as dormant, and
		employees that were running as failed.
		"""
		coordinator = cls(
			registry.project_id,
			registry.project_path,
			supervisor,
			project_name=registry.project_name,
			memory=memory,
			settings=settings,
			mirror=mirror,
			events=events,
		)
		coordinator.registry = registry

		nodes = await coordinator.mirror.list_all(Collections.NODES, HierarchyNode, prefix=f"{registry.project_id}:")
		for node in nodes:
			if node.tier == NodeTier.ORCHESTRATOR:
				node.status = NodeStatus.PLACEHOLDER if coordinator.is_active else NodeStatus.COLD
			elif node.tier == NodeTier.LEADER:
				if node.status != NodeStatus.COLD:
					node.status = NodeStatus.DORMANT
			elif node.status in (NodeStatus.ACTIVE, NodeStatus.SPAWNING):
				node.status = NodeStatus.FAILED
			node.process_id = None
			node.current_task_id = None
			coordinator.nodes[node.id] = node

		if coordinator.orchestrator is None:
			orch = coordinator._create_node(
				registry.orchestrator_node_id, NodeTier.ORCHESTRATOR, AgentRole.ORCHESTRATOR, None,
			)
			orch.status = NodeStatus.PLACEHOLDER if coordinator.is_active else NodeStatus.COLD

		for node in coordinator.nodes.values():
			coordinator._save_node(node)
		await coordinator.memory.hydrate(registry.project_id)

		logger.info(f"Restored hierarchy for {registry.project_id} ({len(coordinator.nodes)} nodes)")
		return coordinator

	# --- Helpers ---

	def _create_node(
		self,
		node_id: str,
		tier: NodeTier,
		role: AgentRole,
		parent_id: Optional[str],
	) -> HierarchyNode:
		node = HierarchyNode(id=node_id, project_id=self.project_id, tier=tier, role=role, parent_id=parent_id)
		self.nodes[node_id] = node
		return node

	def _save_node(self, node: HierarchyNode) -> None:
		self.nodes[node.id] = node
		self.mirror.save(Collections.NODES, f"{self.project_id}:{node.id}", node)

	def _save_registry(self) -> None:
		self.mirror.save(Collections.REGISTRIES, self.project_id, self.registry)

	def _emit(self, kind: EventKind, **data) -> None:
		self.events.emit(kind, self.project_id, project_id=self.project_id, **data)

	def _log(self, source: str, role: AgentRole, kind: str, content: str) -> None:
		"""Append to the registry log and the source node's log, both capped."""
		entry = MessageLogEntry(id=f"msg-{_uid()}", source=source, role=role.value, kind=kind, content=content)

		self.registry.message_log.append(entry)
		del self.registry.message_log[:-self.settings.registry_log_cap]

		node = self.nodes.get(source)
		if node is not None:
			node.message_log.append(entry)
			del node.message_log[:-self.settings.node_log_cap]
			self.mirror.save_debounced(Collections.NODES, f"{self.project_id}:{node.id}", node)

		self.mirror.save_debounced(Collections.REGISTRIES, self.project_id, self.registry)
		self._emit(EventKind.MESSAGE_LOG, entry=entry.model_dump(mode="json"))
