"""
Output parser - Pulls structured directives out of agent text output.

Agents embed directives as ```json fenced blocks or <json>...</json> tags
inside free-form text. Anything that is not valid JSON, or whose "type" is
not a known directive kind, is skipped: the text is model output and is
expected to be noisy.
"""

import json
import logging
import re
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..roles import AgentRole, LEADER_ROLES

logger = logging.getLogger(__name__)

BLOCK_PATTERN = re.compile(
	r"```json[ \t]*\r?\n(?P<fenced>[\s\S]*?)```|<json>(?P<tagged>[\s\S]*?)</json>"
)

# stream-json envelope types; other JSON lines are passed through as text
STREAM_ENVELOPE_TYPES = {"assistant", "user", "system", "result", "stream_event"}


class DirectiveKind(str, Enum):
	DISPATCH_PLAN = "dispatch_plan"
	TASK_COMPLETE = "task_complete"
	SPAWN_EMPLOYEE = "spawn_employee"


def _leader_role(value) -> AgentRole:
	if isinstance(value, str):
		value = value.strip().lower()
	role = AgentRole(value)
	if role not in LEADER_ROLES:
		raise ValueError(f"{role.value} cannot be assigned leader work")
	return role


class _Directive(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DispatchSubtask(_Directive):
	"""One leader's share of a dispatched task."""
	role: AgentRole
	title: str = ""
	prompt: str
	deps: list[str] = Field(default_factory=list, description="Roles that must finish first")
	priority: int = 1

	@field_validator("role", mode="before")
	@classmethod
	def _validate_role(cls, value):
		return _leader_role(value)

	@field_validator("deps", mode="before")
	@classmethod
	def _normalize_deps(cls, value):
		if value is None:
			return []
		return [str(dep).strip().lower() for dep in value]


class DispatchPlan(_Directive):
	type: Literal["dispatch_plan"] = "dispatch_plan"
	task_id: str = Field(alias="taskId")
	subtasks: list[DispatchSubtask] = Field(min_length=1)

	@property
	def kind(self) -> DirectiveKind:
		return DirectiveKind.DISPATCH_PLAN

	def dedup_key(self) -> tuple:
		return (self.kind, self.task_id)


class TaskComplete(_Directive):
	type: Literal["task_complete"] = "task_complete"
	task_id: str = Field(alias="taskId")
	summary: str = ""

	@property
	def kind(self) -> DirectiveKind:
		return DirectiveKind.TASK_COMPLETE

	def dedup_key(self) -> tuple:
		return (self.kind, self.task_id)


class SpawnEmployee(_Directive):
	type: Literal["spawn_employee"] = "spawn_employee"
	parent_leader_role: AgentRole = Field(alias="parentLeaderRole")
	task: str
	role: Optional[AgentRole] = None

	@field_validator("parent_leader_role", mode="before")
	@classmethod
	def _validate_parent(cls, value):
		return _leader_role(value)

	@field_validator("role", mode="before")
	@classmethod
	def _validate_role(cls, value):
		return None if value in (None, "") else _leader_role(value)

	@property
	def kind(self) -> DirectiveKind:
		return DirectiveKind.SPAWN_EMPLOYEE

	def dedup_key(self) -> tuple:
		return (self.kind, self.parent_leader_role, self.task)


Directive = Annotated[
	Union[DispatchPlan, TaskComplete, SpawnEmployee],
	Field(discriminator="type"),
]

_directive_adapter = TypeAdapter(Directive)


def parse_block(raw: str) -> Optional[Directive]:
	"""Parse one block body. Returns None for anything that is not a valid directive."""
	try:
		data = json.loads(raw.strip())
	except json.JSONDecodeError:
		return None
	if not isinstance(data, dict) or data.get("type") not in {k.value for k in DirectiveKind}:
		return None
	try:
		return _directive_adapter.validate_python(data)
	except ValidationError as e:
		logger.warning(f"Skipping malformed {data.get('type')} directive: {e.error_count()} errors")
		return None


def parse_directives(text: str) -> list[Directive]:
	"""Every directive in the text, in order of appearance."""
	directives = []
	for match in BLOCK_PATTERN.finditer(text):
		directive = parse_block(match.group("fenced") or match.group("tagged") or "")
		if directive is not None:
			directives.append(directive)
	return directives


class IncrementalDirectiveParser:
	"""
	Parser for a growing stream of text.

	Complete blocks are consumed as they are found, so each block is
	returned once and the retained buffer only holds the unfinished tail.
	"""

	def __init__(self, max_buffer_chars: int = 200_000):
		self.max_buffer_chars = max_buffer_chars
		self._buffer = ""

	@property
	def buffered(self) -> int:
		return len(self._buffer)

	def feed(self, text: str) -> list[Directive]:
		self._buffer += text

		directives = []
		consumed = 0
		for match in BLOCK_PATTERN.finditer(self._buffer):
			directive = parse_block(match.group("fenced") or match.group("tagged") or "")
			if directive is not None:
				directives.append(directive)
			consumed = match.end()

		self._buffer = self._buffer[consumed:]
		if len(self._buffer) > self.max_buffer_chars:
			self._buffer = self._buffer[-self.max_buffer_chars:]
		return directives


class StreamTextExtractor:
	"""
	Recovers assistant text from newline-delimited stream-json output.

	Lines that are not stream-json envelopes are passed through unchanged,
	so plain-text agents work too.
	"""

	def __init__(self):
		self._partial = ""

	def feed(self, chunk: str) -> str:
		self._partial += chunk
		*lines, self._partial = self._partial.split("\n")
		return "".join(self._extract(line) for line in lines)

	def flush(self) -> str:
		line, self._partial = self._partial, ""
		return self._extract(line) if line else ""

	@staticmethod
	def _extract(line: str) -> str:
		stripped = line.strip()
		if not stripped.startswith("{"):
			return line + "\n"
		try:
			event = json.loads(stripped)
		except json.JSONDecodeError:
			return line + "\n"
		if not isinstance(event, dict) or event.get("type") not in STREAM_ENVELOPE_TYPES:
			return line + "\n"

		if event["type"] != "assistant":
			return ""
		content = (event.get("message") or {}).get("content")
		if isinstance(content, str):
			return content + "\n"
		if not isinstance(content, list):
			return ""
		texts = [
			block.get("text", "")
			for block in content
			if isinstance(block, dict) and block.get("type") == "text"
		]
		return "".join(texts) + "\n" if texts else ""
