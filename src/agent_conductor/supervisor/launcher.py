"""
Agent launcher - Builds argv for the external coding agent.

The agent binary is opaque to the core. One-shot runs pass the prompt as
the last argument and get no stdin. Interactive runs stream newline
delimited JSON messages over stdin ("stream-json"), or plain text lines
for agents that speak the "lines" protocol.
"""

import json
import shlex
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class AgentLauncher:
	"""Command-line construction for the agent executable."""

	command: str = "claude"
	extra_args: list[str] = field(default_factory=list)
	model: Optional[str] = None

	def _base(self) -> list[str]:
		return shlex.split(self.command)

	def _common(self, mcp_config: Optional[str], max_turns: Optional[int]) -> list[str]:
		args = []
		if self.model:
			args += ["--model", self.model]
		if mcp_config:
			args += ["--mcp-config", mcp_config]
		if max_turns:
			args += ["--max-turns", str(max_turns)]
		return args + list(self.extra_args)

	def oneshot_argv(
		self,
		prompt: str,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
	) -> list[str]:
		"""argv for a single-prompt run; the prompt is the final argument."""
		return [*self._base(), "--print", *self._common(mcp_config, max_turns), prompt]

	def interactive_argv(
		self,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
	) -> list[str]:
		"""argv for a long-lived run that reads messages from stdin."""
		return [
			*self._base(),
			"--print",
			"--input-format", "stream-json",
			"--output-format", "stream-json",
			"--verbose",
			*self._common(mcp_config, max_turns),
		]

	def encode_message(self, text: str) -> bytes:
		"""Encode one user message for an interactive process's stdin."""
		message = {
			"type": "user",
			"message": {"role": "user", "content": text},
		}
		return (json.dumps(message) + "\n").encode("utf-8")


@dataclass
class RawLineLauncher(AgentLauncher):
	"""Launcher for agents that read plain text lines on stdin."""

	interactive_args: list[str] = field(default_factory=list)

	def _base(self) -> list[str]:
		return [self.command]

	def interactive_argv(
		self,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
	) -> list[str]:
		return [*self._base(), *self.interactive_args]

	def oneshot_argv(
		self,
		prompt: str,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
	) -> list[str]:
		return [*self._base(), *self.extra_args, prompt]

	def encode_message(self, text: str) -> bytes:
		return (text.rstrip("\n") + "\n").encode("utf-8")


PROTOCOLS = ("stream-json", "lines")


def make_launcher(command: str, protocol: str = "stream-json") -> AgentLauncher:
	"""
	Build the launcher for an agent command and stdin protocol.

	Args:
		command: Agent executable, optionally followed by arguments
		protocol: "stream-json" for Claude-style agents, "lines" for plain text

	Raises:
		ValueError: Unknown protocol
	"""
	if protocol == "stream-json":
		return AgentLauncher(command=command)
	if protocol == "lines":
		executable, *args = shlex.split(command)
		return RawLineLauncher(command=executable, extra_args=args, interactive_args=list(args))
	raise ValueError(f"Unknown agent protocol {protocol!r}, expected one of: {', '.join(PROTOCOLS)}")
