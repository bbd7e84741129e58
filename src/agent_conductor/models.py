"""
Models - Pydantic schemas for every record the orchestration core keeps.

Live state is held in these models and mirrored to the key-value store
with model_dump_json(); loading goes through model_validate_json().
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .roles import AgentRole


def now_iso() -> str:
	return datetime.now().isoformat()


# --- Agent processes ---


class ProcessStatus(str, Enum):
	"""Lifecycle status of an agent process."""
	RUNNING = "running"
	DONE = "done"
	FAILED = "failed"
	KILLED = "killed"
	DISCONNECTED = "disconnected"


class ProcessMode(str, Enum):
	"""How the process receives its prompt."""
	ONESHOT = "oneshot"
	INTERACTIVE = "interactive"


class AgentProcessRecord(BaseModel):
	"""Durable description of one agent process (no OS handle)."""
	id: str
	pid: Optional[int] = None
	command: str = ""
	cwd: str = ""
	mode: ProcessMode = ProcessMode.ONESHOT
	name: str = ""
	role: Optional[AgentRole] = None
	skills: list[str] = Field(default_factory=list)
	status: ProcessStatus = ProcessStatus.RUNNING
	exit_code: Optional[int] = None
	started_at: str = Field(default_factory=now_iso)
	ended_at: Optional[str] = None

	# Optional links to the owning unit of work
	orchestration_id: Optional[str] = None
	subtask_id: Optional[str] = None
	hierarchy_node_id: Optional[str] = None
	project_id: Optional[str] = None


# --- Task graph ---


class SubTaskStatus(str, Enum):
	"""Status of a subtask within a plan."""
	PENDING = "pending"
	READY = "ready"
	RUNNING = "running"
	DONE = "done"
	FAILED = "failed"


TERMINAL_SUBTASK_STATUSES = frozenset({SubTaskStatus.DONE, SubTaskStatus.FAILED})


class SubTask(BaseModel):
	"""A schedulable unit of work with declared dependencies."""
	id: str = Field(description="Unique subtask identifier")
	role: AgentRole = Field(default=AgentRole.FULLSTACK)
	title: str = Field(description="Short title")
	prompt: str = Field(description="What the agent is asked to do")
	scope: list[str] = Field(default_factory=list, description="Paths the agent should touch")
	skills: list[str] = Field(default_factory=list)
	deps: list[str] = Field(default_factory=list, description="Subtask IDs this depends on")
	retry_count: int = 0
	max_retries: int = 3
	status: SubTaskStatus = Field(default=SubTaskStatus.PENDING)
	agent_process_id: Optional[str] = None
	output: Optional[str] = None
	error: Optional[str] = None

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_SUBTASK_STATUSES


class PlanStatus(str, Enum):
	"""Status of an orchestration plan."""
	DECOMPOSING = "decomposing"
	RUNNING = "running"
	VERIFYING = "verifying"
	DONE = "done"
	FAILED = "failed"
	CANCELLED = "cancelled"


TERMINAL_PLAN_STATUSES = frozenset({PlanStatus.DONE, PlanStatus.FAILED, PlanStatus.CANCELLED})


class OrchestrationPlan(BaseModel):
	"""The dependency graph of subtasks for one task request."""
	id: str
	task_description: str
	project_id: str = ""
	project_path: str = ""
	status: PlanStatus = Field(default=PlanStatus.DECOMPOSING)
	subtasks: list[SubTask] = Field(default_factory=list)

	created_at: str = Field(default_factory=now_iso)
	started_at: Optional[str] = None
	completed_at: Optional[str] = None

	token_estimate: int = 0
	cache_hits: int = 0

	def get_subtask(self, subtask_id: str) -> Optional[SubTask]:
		for st in self.subtasks:
			if st.id == subtask_id:
				return st
		return None

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_PLAN_STATUSES

	def get_progress(self) -> dict:
		"""Count subtasks per status."""
		counts = {status.value: 0 for status in SubTaskStatus}
		for st in self.subtasks:
			counts[st.status.value] += 1
		total = len(self.subtasks)
		return {
			"total": total,
			**counts,
			"percent_complete": round(counts["done"] / total * 100, 1) if total > 0 else 0,
		}


# --- Hierarchy ---


class NodeTier(str, Enum):
	"""Tier of a hierarchy node."""
	ORCHESTRATOR = "orchestrator"
	LEADER = "leader"
	EMPLOYEE = "employee"


class NodeStatus(str, Enum):
	"""Status of a hierarchy node."""
	COLD = "cold"
	PLACEHOLDER = "placeholder"
	SPAWNING = "spawning"
	IDLE = "idle"
	ACTIVE = "active"
	DORMANT = "dormant"
	SHUTDOWN = "shutdown"
	# Employees only
	DONE = "done"
	FAILED = "failed"


class RegistryStatus(str, Enum):
	"""Activation status of a project hierarchy."""
	ACTIVE = "active"
	INACTIVE = "inactive"


class MessageLogEntry(BaseModel):
	"""One line in a hierarchy message log."""
	id: str
	timestamp: str = Field(default_factory=now_iso)
	source: str = Field(description="Node ID that produced the message")
	role: str
	kind: str = Field(default="info", description="info | task | output | error")
	content: str


class HierarchyNode(BaseModel):
	"""One node in the orchestrator -> leader -> employee tree."""
	id: str
	project_id: str
	tier: NodeTier
	role: AgentRole
	status: NodeStatus = NodeStatus.COLD
	parent_id: Optional[str] = None
	child_ids: list[str] = Field(default_factory=list)
	process_id: Optional[str] = None
	current_task_id: Optional[str] = None
	tasks_completed: int = 0
	tasks_failed: int = 0
	created_at: str = Field(default_factory=now_iso)
	last_active_at: Optional[str] = None
	message_log: list[MessageLogEntry] = Field(default_factory=list)


class HierarchyRegistry(BaseModel):
	"""Per-project description of the coordination topology."""
	project_id: str
	project_path: str
	project_name: str
	orchestrator_node_id: str
	leaders: dict[AgentRole, str] = Field(default_factory=dict, description="role -> leader node id")
	status: RegistryStatus = RegistryStatus.INACTIVE
	activated_at: Optional[str] = None
	deactivated_at: Optional[str] = None
	message_log: list[MessageLogEntry] = Field(default_factory=list)


# --- Memory ---


class AgentMemoryEntry(BaseModel):
	"""Outcome of one task, as remembered by a role."""
	timestamp: str = Field(default_factory=now_iso)
	task_id: str = ""
	task_title: str
	status: str = "done"
	files_modified: list[str] = Field(default_factory=list)
	key_decisions: list[str] = Field(default_factory=list)
	outcome: str = ""
	employee_count: int = 0


class AgentMemory(BaseModel):
	"""Per-(project, role) working memory carried across tasks."""
	project_id: str
	role: AgentRole
	last_updated: str = Field(default_factory=now_iso)
	recent_activity: list[AgentMemoryEntry] = Field(default_factory=list)
	domain_knowledge: list[str] = Field(default_factory=list)
	active_concerns: list[str] = Field(default_factory=list)
	working_agreements: list[str] = Field(default_factory=list)
