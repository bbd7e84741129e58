"""
Task templates - Keyword-matched decompositions of common task shapes.

A template is a fixed list of subtasks whose dependencies are given as
indices into the same list; plan_builder turns them into a real plan.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..roles import AgentRole


@dataclass(frozen=True)
class SubTaskTemplate:
	"""One step of a template. `{{TASK}}` in the prompt is replaced by the task text."""
	role: AgentRole
	title: str
	prompt: str
	scope: tuple[str, ...] = ()
	skills: tuple[str, ...] = ()
	deps: tuple[int, ...] = ()


@dataclass(frozen=True)
class TaskTemplate:
	"""A named decomposition, selected by keyword score."""
	id: str
	keywords: tuple[str, ...]
	subtasks: tuple[SubTaskTemplate, ...] = field(default_factory=tuple)

	def score(self, task: str) -> int:
		"""Number of keywords contained in any word of the task."""
		words = task.lower().split()
		return sum(1 for keyword in self.keywords if any(keyword in word for word in words))


TASK_TEMPLATES: tuple[TaskTemplate, ...] = (
	TaskTemplate(
		id="feature",
		keywords=("feature", "add", "implement", "create", "build", "new"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.ARCHITECT, "Design feature architecture",
				"Analyze the codebase and design the architecture for: {{TASK}}. "
				"Output: file plan, interfaces, data flow. Do NOT write implementation code.",
				scope=("src/",), skills=("analyze-codebase", "design-system"),
			),
			SubTaskTemplate(
				AgentRole.BACKEND, "Implement backend",
				"Implement the backend for: {{TASK}}. Follow the architect's design.",
				scope=("src/", "lib/", "api/"), skills=("api-design", "error-handling"), deps=(0,),
			),
			SubTaskTemplate(
				AgentRole.FRONTEND, "Implement frontend",
				"Implement the frontend for: {{TASK}}. Follow the architect's design.",
				scope=("components/", "pages/"), skills=("component-design",), deps=(0,),
			),
			SubTaskTemplate(
				AgentRole.TESTER, "Write tests",
				"Write tests for: {{TASK}}. Cover the backend and frontend changes.",
				scope=("tests/",), skills=("unit-testing", "integration-testing"), deps=(1, 2),
			),
			SubTaskTemplate(
				AgentRole.REVIEWER, "Review implementation",
				"Review all changes for: {{TASK}}. Check for bugs, security issues, missing error "
				"handling. Output: {severity, file, line, issue, fix}.",
				scope=("src/",), skills=("code-review", "security-audit"), deps=(1, 2, 3),
			),
		),
	),
	TaskTemplate(
		id="bug",
		keywords=("bug", "fix", "broken", "error", "crash", "issue", "debug"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.ARCHITECT, "Diagnose bug",
				"Diagnose this bug: {{TASK}}. Find the root cause. "
				"Output: affected files, root cause, proposed fix.",
				scope=("src/",), skills=("analyze-codebase",),
			),
			SubTaskTemplate(
				AgentRole.BACKEND, "Fix bug",
				"Fix this bug: {{TASK}}. Apply the diagnosed fix.",
				scope=("src/",), skills=("error-handling",), deps=(0,),
			),
			SubTaskTemplate(
				AgentRole.TESTER, "Add regression test",
				"Write a regression test for: {{TASK}}.",
				scope=("tests/",), skills=("unit-testing",), deps=(1,),
			),
		),
	),
	TaskTemplate(
		id="refactor",
		keywords=("refactor", "clean", "restructure", "simplify", "optimize"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.ARCHITECT, "Analyze refactor targets",
				"Analyze code for refactoring: {{TASK}}. Identify duplication, poor naming, "
				"complex control flow. Output: plan with before/after.",
				scope=("src/",), skills=("analyze-codebase",),
			),
			SubTaskTemplate(
				AgentRole.REFACTORER, "Execute refactor",
				"Refactor: {{TASK}}. Follow the plan. All existing tests MUST still pass.",
				scope=("src/",), skills=("refactoring-patterns", "code-quality"), deps=(0,),
			),
			SubTaskTemplate(
				AgentRole.TESTER, "Verify tests pass",
				"Run all tests and verify nothing broke from refactoring: {{TASK}}.",
				scope=("tests/",), skills=("unit-testing",), deps=(1,),
			),
		),
	),
	TaskTemplate(
		id="tests",
		keywords=("test", "tests", "coverage", "spec"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.ARCHITECT, "Analyze test coverage",
				"Analyze test coverage for: {{TASK}}. Identify untested paths, edge cases, error paths.",
				scope=("src/", "tests/"), skills=("analyze-codebase",),
			),
			SubTaskTemplate(
				AgentRole.TESTER, "Write tests",
				"Write comprehensive tests for: {{TASK}}. "
				"Cover: happy path, edge cases, error cases. Use AAA pattern.",
				scope=("tests/",), skills=("unit-testing", "integration-testing", "mocking"), deps=(0,),
			),
		),
	),
	TaskTemplate(
		id="security",
		keywords=("security", "audit", "vulnerability", "secure"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.SECURITY, "Security audit",
				"Full security audit: {{TASK}}. Check: injection, auth bypass, CSRF/XSS, insecure deps, "
				"secrets in code. Output: {severity, file, line, issue, fix}.",
				scope=("src/",), skills=("security-audit", "input-validation", "dependency-check"),
			),
		),
	),
	TaskTemplate(
		id="review",
		keywords=("review", "check", "inspect"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.REVIEWER, "Code review",
				"Review recent changes: {{TASK}}. "
				"Output: {severity: CRITICAL|WARN|SUGGESTION, file, line, issue, fix}.",
				scope=("src/",), skills=("code-review", "security-audit", "performance-check"),
			),
		),
	),
	TaskTemplate(
		id="docs",
		keywords=("docs", "documentation", "readme", "jsdoc", "docstring"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.DOCS, "Generate documentation",
				"Generate documentation for: {{TASK}}. Scan exports, document public APIs, update README.",
				scope=("docs/", "src/"), skills=("technical-writing", "api-documentation"),
			),
		),
	),
	TaskTemplate(
		id="deploy",
		keywords=("deploy", "release", "ship", "ci"),
		subtasks=(
			SubTaskTemplate(
				AgentRole.DEVOPS, "Lint",
				"Run the project's linter and fix all issues.",
				scope=("src/",), skills=("ci-cd-patterns",),
			),
			SubTaskTemplate(
				AgentRole.DEVOPS, "Type check",
				"Run the project's type checker. Fix all type errors.",
				scope=("src/",), skills=("ci-cd-patterns",), deps=(0,),
			),
			SubTaskTemplate(
				AgentRole.TESTER, "Run tests",
				"Run full test suite. Fix any failures.",
				scope=("tests/",), skills=("unit-testing",), deps=(1,),
			),
			SubTaskTemplate(
				AgentRole.DEVOPS, "Build",
				"Run production build. Fix any build errors.",
				scope=("src/",), skills=("ci-cd-patterns",), deps=(2,),
			),
		),
	),
)


def match_template(task: str) -> Optional[TaskTemplate]:
	"""
	Pick the best-scoring template for a task.

	Ties go to the template listed first. Returns None when no keyword matches.
	"""
	best: Optional[TaskTemplate] = None
	best_score = 0
	for template in TASK_TEMPLATES:
		score = template.score(task)
		if score > best_score:
			best, best_score = template, score
	return best


def get_template(template_id: str) -> Optional[TaskTemplate]:
	for template in TASK_TEMPLATES:
		if template.id == template_id:
			return template
	return None
