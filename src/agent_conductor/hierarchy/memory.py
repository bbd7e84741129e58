"""
Memory store - Per-(project, role) working memory for hierarchy agents.

Memories live in an in-memory cache and are mirrored to the
PersistenceMirror on every change. They are rendered to markdown and fed
back into prompts, trimmed to a token budget that favours recent work.
"""

import logging
import math
import re
from datetime import datetime
from typing import Optional

from ..models import AgentMemory, AgentMemoryEntry
from ..persistence import Collections, PersistenceMirror
from ..roles import AgentRole

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MAX_FILE_PATHS = 20

FILE_PATH_PATTERN = re.compile(
	r"(?:created?|modified?|updated?|wrote|edited)\s+[`\"']?([A-Za-z0-9_\-./\\]+\.[A-Za-z]+)[`\"']?",
	re.IGNORECASE,
)


def memory_key(project_id: str, role: AgentRole) -> str:
	return f"{project_id}:{role.value}"


def render_memory(memory: AgentMemory) -> str:
	"""Deterministic markdown rendering of a memory."""
	if memory.role == AgentRole.ORCHESTRATOR:
		title = "Orchestrator Memory"
	else:
		title = f"{memory.role.value.capitalize()} Leader Memory"
	lines = [
		f"# {title} - {memory.project_id}",
		f"Last updated: {memory.last_updated}",
		"",
	]

	if memory.recent_activity:
		lines.append(f"## Recent Activity ({len(memory.recent_activity)} tasks)")
		for entry in memory.recent_activity:
			lines.append(f"### [{entry.timestamp[:16]}] {entry.task_title}")
			lines.append(f"- Status: {entry.status}")
			if entry.files_modified:
				lines.append(f"- Files: {', '.join(entry.files_modified)}")
			for decision in entry.key_decisions:
				lines.append(f"- Decision: {decision}")
			lines.append(f"- Outcome: {entry.outcome}")
			if entry.employee_count > 0:
				lines.append(f"- Employees used: {entry.employee_count}")
			lines.append("")
	else:
		lines += ["## Recent Activity", "No tasks completed yet.", ""]

	for title, items in (
		("Domain Knowledge", memory.domain_knowledge),
		("Active Concerns", memory.active_concerns),
		("Working Agreements", memory.working_agreements),
	):
		if items:
			lines.append(f"## {title}")
			lines.extend(f"- {item}" for item in items)
			lines.append("")

	return "\n".join(lines)


def estimate_tokens(memory: AgentMemory) -> int:
	return math.ceil(len(render_memory(memory)) / CHARS_PER_TOKEN)


def summarize_to_budget(memory: AgentMemory, max_tokens: int) -> AgentMemory:
	"""
	Copy of the memory with the oldest activity dropped until it fits.

	At least one activity entry is always kept, so the result may still
	exceed the budget.
	"""
	copy = memory.model_copy(update={"recent_activity": list(memory.recent_activity)})
	while len(copy.recent_activity) > 1 and estimate_tokens(copy) > max_tokens:
		copy.recent_activity.pop()
	return copy


def extract_file_paths(output: str, limit: int = MAX_FILE_PATHS) -> list[str]:
	"""File paths an agent says it created or changed, in order of mention."""
	paths: list[str] = []
	for match in FILE_PATH_PATTERN.finditer(output):
		path = match.group(1)
		if path not in paths:
			paths.append(path)
	return paths[:limit]


class MemoryStore:
	"""Cache of AgentMemory records, mirrored to durable storage."""

	def __init__(
		self,
		mirror: Optional[PersistenceMirror] = None,
		ring_size: int = 10,
		domain_knowledge_cap: int = 20,
	):
		self.mirror = mirror or PersistenceMirror()
		self.ring_size = ring_size
		self.domain_knowledge_cap = domain_knowledge_cap
		self._cache: dict[str, AgentMemory] = {}

	async def hydrate(self, project_id: str) -> int:
		"""Load a project's persisted memories into the cache. Returns how many were new."""
		loaded = 0
		for memory in await self.mirror.list_all(Collections.MEMORY, AgentMemory, prefix=f"{project_id}:"):
			key = memory_key(memory.project_id, memory.role)
			if key not in self._cache:
				self._cache[key] = memory
				loaded += 1
		if loaded:
			logger.debug(f"Hydrated {loaded} memories for {project_id}")
		return loaded

	def get(self, project_id: str, role: AgentRole) -> Optional[AgentMemory]:
		return self._cache.get(memory_key(project_id, role))

	def get_or_create(self, project_id: str, role: AgentRole) -> AgentMemory:
		key = memory_key(project_id, role)
		memory = self._cache.get(key)
		if memory is None:
			memory = AgentMemory(project_id=project_id, role=role)
			self._cache[key] = memory
			self._save(memory)
		return memory

	def list_for_project(self, project_id: str) -> list[AgentMemory]:
		return [m for m in self._cache.values() if m.project_id == project_id]

	def update_after_task(self, project_id: str, role: AgentRole, entry: AgentMemoryEntry) -> AgentMemory:
		"""Prepend a task outcome, dropping the oldest beyond the ring size."""
		memory = self.get_or_create(project_id, role)
		memory.recent_activity.insert(0, entry)
		del memory.recent_activity[self.ring_size:]
		self._touch(memory)
		return memory

	def update_domain_knowledge(self, project_id: str, role: AgentRole, items: list[str]) -> AgentMemory:
		"""Add new facts (deduplicated), keeping only the newest up to the cap."""
		memory = self.get_or_create(project_id, role)
		for item in items:
			if item not in memory.domain_knowledge:
				memory.domain_knowledge.append(item)
		if len(memory.domain_knowledge) > self.domain_knowledge_cap:
			memory.domain_knowledge = memory.domain_knowledge[-self.domain_knowledge_cap:]
		self._touch(memory)
		return memory

	def add_concern(self, project_id: str, role: AgentRole, concern: str) -> AgentMemory:
		memory = self.get_or_create(project_id, role)
		if concern not in memory.active_concerns:
			memory.active_concerns.append(concern)
			self._touch(memory)
		return memory

	def resolve_concern(self, project_id: str, role: AgentRole, concern: str) -> bool:
		memory = self.get_or_create(project_id, role)
		if concern not in memory.active_concerns:
			return False
		memory.active_concerns.remove(concern)
		self._touch(memory)
		return True

	def add_working_agreement(self, project_id: str, role: AgentRole, agreement: str) -> AgentMemory:
		memory = self.get_or_create(project_id, role)
		if agreement not in memory.working_agreements:
			memory.working_agreements.append(agreement)
			self._touch(memory)
		return memory

	def render(self, project_id: str, role: AgentRole, max_tokens: Optional[int] = None) -> str:
		"""Rendered memory for a prompt, trimmed to max_tokens when given."""
		memory = self.get_or_create(project_id, role)
		if max_tokens is not None:
			memory = summarize_to_budget(memory, max_tokens)
		return render_memory(memory)

	def _touch(self, memory: AgentMemory) -> None:
		memory.last_updated = datetime.now().isoformat()
		self._save(memory)

	def _save(self, memory: AgentMemory) -> None:
		self.mirror.save(Collections.MEMORY, memory_key(memory.project_id, memory.role), memory)
