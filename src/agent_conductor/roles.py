"""
Agent roles - the closed set of roles agents can be asked to play.

Role names arrive as strings from parsed model output, so every boundary
converts them with parse_role() and rejects anything outside the enum.
"""

from enum import Enum

from .errors import UnknownRoleError


class AgentRole(str, Enum):
	"""Known agent roles."""
	ORCHESTRATOR = "orchestrator"
	ARCHITECT = "architect"
	BACKEND = "backend"
	FRONTEND = "frontend"
	TESTER = "tester"
	REVIEWER = "reviewer"
	FULLSTACK = "fullstack"
	DEVOPS = "devops"
	SECURITY = "security"
	DOCS = "docs"
	REFACTORER = "refactorer"


# Roles that can own a leader node
LEADER_ROLES: tuple[AgentRole, ...] = tuple(
	role for role in AgentRole if role is not AgentRole.ORCHESTRATOR
)

# Behavioural contracts for one-shot subtask workers
WORKER_CONTRACTS: dict[AgentRole, str] = {
	AgentRole.ORCHESTRATOR: "ROLE: Orchestrator\nSKILLS: task-decomposition, batching, prompt-caching\nSCOPE: Coordinates all agents\nBAR: production-ready, efficient",
	AgentRole.ARCHITECT: "ROLE: Architect\nSKILLS: analyze-codebase, design-system, define-interfaces\nSCOPE: READ-ONLY -> specs\nFORBIDDEN: writing implementation code\nBAR: clear interfaces, data flow diagrams",
	AgentRole.BACKEND: "ROLE: Backend Dev\nSKILLS: api-design, error-handling, database-ops, auth-patterns\nSCOPE: src/ lib/ api/ db/\nBAR: production-ready, error-handled, match existing style",
	AgentRole.FRONTEND: "ROLE: Frontend Dev\nSKILLS: component-design, css-patterns, accessibility\nSCOPE: components/ pages/ styles/\nBAR: small components, no duplicated state",
	AgentRole.TESTER: "ROLE: Tester\nSKILLS: unit-testing, integration-testing, mocking\nSCOPE: tests/\nBAR: AAA pattern, mock externals, cover happy+error+edge",
	AgentRole.REVIEWER: "ROLE: Reviewer\nSKILLS: code-review, security-audit, performance-check\nSCOPE: READ-ONLY\nBAR: output {severity: CRITICAL|WARN|SUGGESTION, file, line, issue, fix}",
	AgentRole.FULLSTACK: "ROLE: Fullstack Dev\nSKILLS: api-design, component-design, error-handling\nSCOPE: all src/\nBAR: production-ready, consistent patterns",
	AgentRole.DEVOPS: "ROLE: DevOps\nSKILLS: ci-cd-patterns, env-management\nSCOPE: .github/ docker/ config/\nBAR: fail fast, test->lint->typecheck->build",
	AgentRole.SECURITY: "ROLE: Security Analyst\nSKILLS: security-audit, input-validation, dependency-check\nSCOPE: READ + advisory\nBAR: check injection, auth bypass, CSRF/XSS, insecure deps, secrets",
	AgentRole.DOCS: "ROLE: Docs Writer\nSKILLS: technical-writing, api-documentation\nSCOPE: docs/ *.md\nBAR: concise, accurate, public API coverage",
	AgentRole.REFACTORER: "ROLE: Refactorer\nSKILLS: refactoring-patterns, code-quality\nSCOPE: all src/ (no behavior change)\nBAR: all existing tests must pass",
}

# Behavioural contracts for hierarchy nodes
LEADER_CONTRACTS: dict[AgentRole, str] = {
	AgentRole.ORCHESTRATOR: "ROLE: Orchestrator\nSKILLS: task-decomposition, coordination, dependency-resolution\nYou are the project orchestrator. You decompose tasks and coordinate team leaders.",
	AgentRole.ARCHITECT: "ROLE: Architect Lead\nSKILLS: analyze-codebase, design-system, define-interfaces\nSCOPE: READ-ONLY -> specs",
	AgentRole.BACKEND: "ROLE: Backend Lead\nSKILLS: api-design, error-handling, database-ops\nSCOPE: src/ lib/ api/",
	AgentRole.FRONTEND: "ROLE: Frontend Lead\nSKILLS: component-design, css-patterns, accessibility\nSCOPE: components/ pages/ styles/",
	AgentRole.TESTER: "ROLE: Tester Lead\nSKILLS: unit-testing, integration-testing, mocking\nSCOPE: tests/",
	AgentRole.REVIEWER: "ROLE: Reviewer Lead\nSKILLS: code-review, security-audit, performance-check\nSCOPE: READ-ONLY",
	AgentRole.FULLSTACK: "ROLE: Fullstack Lead\nSKILLS: full-stack development\nSCOPE: all src/",
	AgentRole.DEVOPS: "ROLE: DevOps Lead\nSKILLS: ci-cd-patterns, env-management\nSCOPE: .github/ docker/ config/",
	AgentRole.SECURITY: "ROLE: Security Lead\nSKILLS: security-audit, input-validation\nSCOPE: READ + advisory",
	AgentRole.DOCS: "ROLE: Docs Lead\nSKILLS: technical-writing, api-documentation\nSCOPE: docs/ *.md",
	AgentRole.REFACTORER: "ROLE: Refactorer Lead\nSKILLS: refactoring-patterns, code-quality\nSCOPE: all src/",
}


def parse_role(value: "str | AgentRole") -> AgentRole:
	"""Convert a role name to an AgentRole, rejecting unknown names."""
	if isinstance(value, AgentRole):
		return value
	try:
		return AgentRole(str(value).strip().lower())
	except ValueError:
		raise UnknownRoleError(f"Unknown agent role: {value!r}") from None


def worker_contract(role: AgentRole) -> str:
	return WORKER_CONTRACTS.get(role, WORKER_CONTRACTS[AgentRole.FULLSTACK])


def leader_contract(role: AgentRole) -> str:
	return LEADER_CONTRACTS.get(role, LEADER_CONTRACTS[AgentRole.FULLSTACK])
