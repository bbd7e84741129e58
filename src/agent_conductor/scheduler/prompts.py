"""Prompt assembly for one-shot subtask agents."""

from ..context import load_repo_context
from ..models import OrchestrationPlan, SubTask
from ..roles import worker_contract

ERROR_TAIL_CHARS = 500


def build_prompt(subtask: SubTask, plan: OrchestrationPlan, dependency_output_chars: int = 2000) -> str:
	"""
	Build the full prompt for a subtask.

	Sections: repository context, role contract, the task itself, the tail
	of every finished dependency's output, and the previous error on retry.
	"""
	sections = [
		f"REPO_CONTEXT:\n{load_repo_context(plan.project_path)}",
		worker_contract(subtask.role),
		f"TASK: {subtask.prompt}",
	]

	dep_outputs = []
	for dep_id in subtask.deps:
		dep = plan.get_subtask(dep_id)
		if dep and dep.output:
			dep_outputs.append(
				f"--- {dep.title} ({dep.role.value}) ---\n{dep.output[-dependency_output_chars:]}"
			)
	if dep_outputs:
		sections.append("CONTEXT FROM PREVIOUS AGENTS:\n" + "\n\n".join(dep_outputs))

	if subtask.retry_count > 0 and subtask.error:
		sections.append(
			f"PREVIOUS ATTEMPT FAILED:\n{subtask.error[-ERROR_TAIL_CHARS:]}\nFix the issue and try again."
		)

	return "\n\n".join(sections)
