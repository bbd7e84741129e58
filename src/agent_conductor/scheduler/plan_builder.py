"""
Plan builder - Turns a task description into an OrchestrationPlan.
"""

import logging
import uuid

from ..models import OrchestrationPlan, SubTask, SubTaskStatus
from ..roles import AgentRole
from .templates import TaskTemplate, match_template

logger = logging.getLogger(__name__)

TOKENS_PER_CHAR = 0.35
TOKENS_PER_SUBTASK = 700


def _uid() -> str:
	return uuid.uuid4().hex[:7]


def estimate_tokens(subtasks: list[SubTask]) -> int:
	return sum(round(len(st.prompt) * TOKENS_PER_CHAR) + TOKENS_PER_SUBTASK for st in subtasks)


def _from_template(template: TaskTemplate, task: str, max_retries: int) -> list[SubTask]:
	ids = [f"st-{_uid()}" for _ in template.subtasks]
	subtasks = []
	for idx, step in enumerate(template.subtasks):
		subtasks.append(SubTask(
			id=ids[idx],
			role=step.role,
			title=step.title,
			prompt=step.prompt.replace("{{TASK}}", task),
			scope=list(step.scope),
			skills=list(step.skills),
			deps=[ids[dep] for dep in step.deps],
			max_retries=max_retries,
		))
	return subtasks


def build_plan(
	task: str,
	project_id: str,
	project_path: str,
	max_retries: int = 3,
) -> OrchestrationPlan:
	"""
	Decompose a task into a plan using the best-matching template.

	Without a matching template the plan is a single fullstack subtask
	carrying the task text verbatim. Dependency-free subtasks start ready.

	Args:
		task: Task description
		project_id: Owning project
		project_path: Working directory for every subtask
		max_retries: Retries allowed per subtask

	Returns:
		OrchestrationPlan in DECOMPOSING status
	"""
	template = match_template(task)

	if template:
		subtasks = _from_template(template, task, max_retries)
		logger.info(f"Task matched template '{template.id}' ({len(subtasks)} subtasks)")
	else:
		subtasks = [SubTask(
			id=f"st-{_uid()}",
			role=AgentRole.FULLSTACK,
			title=task,
			prompt=task,
			scope=["src/"],
			skills=["api-design", "component-design", "error-handling"],
			max_retries=max_retries,
		)]
		logger.info("No template matched, using a single fullstack subtask")

	for st in subtasks:
		if not st.deps:
			st.status = SubTaskStatus.READY

	return OrchestrationPlan(
		id=f"orch-{_uid()}",
		task_description=task,
		project_id=project_id,
		project_path=project_path,
		subtasks=subtasks,
		token_estimate=estimate_tokens(subtasks),
	)
