"""Exceptions raised by the orchestration core."""


class ConductorError(Exception):
	"""Base exception for agent-conductor errors."""
	pass


class UnknownRoleError(ConductorError):
	"""Raised when work is requested for a role that has no leader."""
	pass


class PlanNotFoundError(ConductorError):
	"""Raised when a plan is not found."""
	pass


class HierarchyNotFoundError(ConductorError):
	"""Raised when no hierarchy exists for a project."""
	pass


class OrchestrationTimeoutError(ConductorError):
	"""Raised when a hierarchy task gets no completion signal in time."""
	pass


class OrchestratorExitedError(ConductorError):
	"""Raised for pending tasks when the orchestrator process dies."""

	def __init__(self, project_id: str, exit_code: int | None, output_tail: str = ""):
		self.project_id = project_id
		self.exit_code = exit_code
		self.output_tail = output_tail
		super().__init__(
			f"Orchestrator for {project_id} exited with code {exit_code}: {output_tail}"
		)


class AgentFailedError(ConductorError):
	"""Raised when a leader or employee process exits unsuccessfully."""

	kind = "Agent"

	def __init__(self, role: str, exit_code: int | None, output_tail: str = ""):
		self.role = role
		self.exit_code = exit_code
		self.output_tail = output_tail
		super().__init__(f"{self.kind} {role} failed with code {exit_code}: {output_tail}")


class LeaderFailedError(AgentFailedError):
	"""Raised when a leader process exits unsuccessfully."""
	kind = "Leader"


class EmployeeFailedError(AgentFailedError):
	"""Raised when an employee process exits unsuccessfully."""
	kind = "Employee"
