"""
Process Supervisor - Owns the lifecycle of external agent processes.

Responsibilities:
- Spawn one-shot (prompt argument, no stdin) and interactive (stdin) processes
- Stream stdout/stderr into an output buffer, the output log and the event bus
- Deliver exactly one exit event per process, including spawn failures
- Kill, remove, and reconcile persisted records after a restart

No knowledge of tasks or dependencies lives here.
"""

import asyncio
import codecs
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..events import Event, EventBus, EventKind, Subscription
from ..models import AgentProcessRecord, ProcessMode, ProcessStatus
from ..persistence import Collections, PersistenceMirror
from .launcher import AgentLauncher

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


@dataclass
class ExitInfo:
	"""How a process ended."""
	code: Optional[int]
	status: ProcessStatus

	@property
	def succeeded(self) -> bool:
		return self.status == ProcessStatus.DONE


class InputChannel:
	"""Writable stdin of an interactive process."""

	def __init__(self, writer: asyncio.StreamWriter, encode: Callable[[str], bytes]):
		self._writer = writer
		self._encode = encode

	def write(self, text: str) -> bool:
		"""Write one encoded message. Returns False if the pipe is gone."""
		if self._writer.is_closing():
			return False
		try:
			self._writer.write(self._encode(text))
		except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
			logger.debug(f"stdin write failed: {e}")
			return False
		return True

	def close(self) -> None:
		if not self._writer.is_closing():
			self._writer.close()


class AgentProcess:
	"""
	One external process instance.

	The record holds everything that is persisted; the handle and event
	bus only exist in the live registry. Use OneShotProcess or
	InteractiveProcess; only the latter has an input channel.
	"""

	def __init__(self, record: AgentProcessRecord, max_output_chars: int, event_queue_size: int = 1000):
		self.record = record
		self.handle: Optional[asyncio.subprocess.Process] = None
		self.events = EventBus(default_maxsize=event_queue_size)
		self.output = ""
		self.exit_event: Optional[Event] = None
		self._max_output_chars = max_output_chars
		self._exit_future: asyncio.Future[ExitInfo] = asyncio.get_running_loop().create_future()

	@property
	def id(self) -> str:
		return self.record.id

	@property
	def pid(self) -> Optional[int]:
		return self.record.pid

	@property
	def status(self) -> ProcessStatus:
		return self.record.status

	@property
	def exit_code(self) -> Optional[int]:
		return self.record.exit_code

	@property
	def exited(self) -> bool:
		return self._exit_future.done()

	@property
	def accepts_input(self) -> bool:
		return False

	def append_output(self, text: str) -> None:
		self.output += text
		if len(self.output) > self._max_output_chars:
			self.output = self.output[-self._max_output_chars:]

	def output_tail(self, chars: int = 500) -> str:
		return self.output[-chars:]

	async def wait(self) -> ExitInfo:
		"""Wait for the process's single exit signal."""
		return await asyncio.shield(self._exit_future)

	def subscribe(self, kinds: Optional[set[EventKind]] = None) -> Subscription:
		"""
		Subscribe to this process's events.

		A subscriber that arrives after the process ended still receives
		the exit event, so every subscriber observes exactly one.
		"""
		sub = self.events.subscribe(kinds=kinds)
		if self.exit_event is not None and sub.matches(self.exit_event):
			sub._offer(self.exit_event)
		return sub

	def to_dict(self) -> dict:
		data = self.record.model_dump(mode="json")
		data["output_chars"] = len(self.output)
		data["accepts_input"] = self.accepts_input
		return data


class OneShotProcess(AgentProcess):
	"""A process started with its whole prompt on the command line and no stdin."""


class InteractiveProcess(AgentProcess):
	"""A long-lived process that takes follow-up messages on stdin."""

	def __init__(self, record: AgentProcessRecord, max_output_chars: int, event_queue_size: int = 1000):
		super().__init__(record, max_output_chars, event_queue_size)
		self.input: Optional[InputChannel] = None

	@property
	def accepts_input(self) -> bool:
		return self.input is not None


def process_alive(pid: int) -> bool:
	"""Check if an OS process id is still running."""
	try:
		os.kill(pid, 0)
	except ProcessLookupError:
		return False
	except PermissionError:
		# Exists, owned by someone else
		return True
	except OSError:
		return False
	return True


class ProcessSupervisor:
	"""
	Live registry of agent processes.

	All methods run on the event loop; the registry needs no lock because
	every mutation happens there.
	"""

	def __init__(
		self,
		launcher: Optional[AgentLauncher] = None,
		mirror: Optional[PersistenceMirror] = None,
		kill_grace_period: float = 5.0,
		output_buffer_chars: int = 200_000,
		event_queue_size: int = 1000,
	):
		"""
		Initialize the supervisor.

		Args:
			launcher: Builds agent argv and encodes stdin messages
			mirror: Durable mirror for records and output logs
			kill_grace_period: Seconds between SIGTERM and SIGKILL
			output_buffer_chars: Tail of output retained per process
			event_queue_size: Queue bound for each process event subscriber
		"""
		self.launcher = launcher or AgentLauncher()
		self.mirror = mirror or PersistenceMirror()
		self.kill_grace_period = kill_grace_period
		self.output_buffer_chars = output_buffer_chars
		self.event_queue_size = event_queue_size

		self._processes: dict[str, AgentProcess] = {}
		self._watchers: dict[str, asyncio.Task] = {}

	# --- Spawning ---

	async def spawn_oneshot(
		self,
		prompt: str,
		cwd: str,
		process_id: Optional[str] = None,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
		**fields: Any,
	) -> OneShotProcess:
		"""
		Start an agent with a single prompt argument and no stdin.

		Args:
			prompt: Prompt passed as the final argument
			cwd: Working directory
			process_id: ID to register under (generated when omitted)
			mcp_config: Optional MCP config path for the agent
			max_turns: Optional turn cap for the agent
			**fields: Extra AgentProcessRecord fields (role, name, links)

		Returns:
			AgentProcess (already failed if the OS could not start it)
		"""
		argv = self.launcher.oneshot_argv(prompt, mcp_config=mcp_config, max_turns=max_turns)
		return await self._spawn(argv, cwd, ProcessMode.ONESHOT, process_id, shell=False, **fields)

	async def spawn_interactive(
		self,
		cwd: str,
		process_id: Optional[str] = None,
		mcp_config: Optional[str] = None,
		max_turns: Optional[int] = None,
		**fields: Any,
	) -> InteractiveProcess:
		"""Start an agent that takes follow-up messages on stdin."""
		argv = self.launcher.interactive_argv(mcp_config=mcp_config, max_turns=max_turns)
		return await self._spawn(argv, cwd, ProcessMode.INTERACTIVE, process_id, shell=False, **fields)

	async def spawn_command(
		self,
		command: str,
		cwd: str,
		process_id: Optional[str] = None,
		**fields: Any,
	) -> OneShotProcess:
		"""Run a raw shell command one-shot."""
		return await self._spawn([command], cwd, ProcessMode.ONESHOT, process_id, shell=True, **fields)

	async def _spawn(
		self,
		argv: list[str],
		cwd: str,
		mode: ProcessMode,
		process_id: Optional[str],
		shell: bool,
		**fields: Any,
	) -> AgentProcess:
		process_id = process_id or f"agent-{uuid.uuid4().hex[:8]}"
		if process_id in self._processes:
			raise ValueError(f"Process id already registered: {process_id}")

		record = AgentProcessRecord(
			id=process_id,
			command=argv[0] if shell else " ".join(argv[:-1] if mode == ProcessMode.ONESHOT else argv),
			cwd=str(cwd),
			mode=mode,
			**fields,
		)
		proc_cls = InteractiveProcess if mode == ProcessMode.INTERACTIVE else OneShotProcess
		proc = proc_cls(record, self.output_buffer_chars, self.event_queue_size)
		self._processes[process_id] = proc

		try:
			handle = await self._open_process(argv, str(cwd), mode, shell)
		except (OSError, ValueError) as e:
			logger.warning(f"Failed to spawn {process_id}: {e}")
			self._record_output(proc, EventKind.STDERR, f"Process error: {e}\n")
			self._finish(proc, -1)
			return proc

		proc.handle = handle
		record.pid = handle.pid
		if isinstance(proc, InteractiveProcess) and handle.stdin is not None:
			proc.input = InputChannel(handle.stdin, self.launcher.encode_message)

		logger.info(f"Spawned {mode.value} process {process_id} (pid {handle.pid}) in {cwd}")
		self.mirror.save(Collections.AGENTS, process_id, record)

		if proc.status == ProcessStatus.KILLED:
			# Killed while the OS was still starting it
			self._terminate(handle)

		self._watchers[process_id] = asyncio.create_task(self._watch(proc))
		return proc

	async def _open_process(
		self,
		argv: list[str],
		cwd: str,
		mode: ProcessMode,
		shell: bool,
	) -> asyncio.subprocess.Process:
		stdin = asyncio.subprocess.PIPE if mode == ProcessMode.INTERACTIVE else asyncio.subprocess.DEVNULL
		if shell:
			return await asyncio.create_subprocess_shell(
				argv[0],
				stdin=stdin,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=cwd,
			)
		return await asyncio.create_subprocess_exec(
			*argv,
			stdin=stdin,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
			cwd=cwd,
		)

	# --- Streaming ---

	async def _watch(self, proc: AgentProcess) -> None:
		"""Pump both output streams, then deliver the exit signal."""
		handle = proc.handle
		try:
			await asyncio.gather(
				self._pump(proc, handle.stdout, EventKind.STDOUT),
				self._pump(proc, handle.stderr, EventKind.STDERR),
			)
			code = await handle.wait()
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.error(f"Watcher error for {proc.id}: {e}")
			code = handle.returncode if handle.returncode is not None else -1
		finally:
			if isinstance(proc, InteractiveProcess) and proc.input:
				proc.input.close()
		self._finish(proc, code)

	async def _pump(
		self,
		proc: AgentProcess,
		stream: Optional[asyncio.StreamReader],
		kind: EventKind,
	) -> None:
		if stream is None:
			return
		decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
		while True:
			chunk = await stream.read(READ_CHUNK)
			if not chunk:
				tail = decoder.decode(b"", final=True)
				if tail:
					self._record_output(proc, kind, tail)
				return
			text = decoder.decode(chunk)
			if text:
				self._record_output(proc, kind, text)

	def _record_output(self, proc: AgentProcess, kind: EventKind, text: str) -> None:
		proc.append_output(text)
		if proc.id in self._processes:
			self.mirror.append_output(proc.id, text)
		proc.events.emit(kind, proc.id, text=text)

	def _finish(self, proc: AgentProcess, code: Optional[int]) -> None:
		"""Record the exit and emit the one and only exit event."""
		if proc.exited:
			return

		record = proc.record
		if record.status != ProcessStatus.KILLED:
			record.status = ProcessStatus.DONE if code == 0 else ProcessStatus.FAILED
		record.exit_code = code
		record.ended_at = record.ended_at or datetime.now().isoformat()

		proc.exit_event = proc.events.emit(
			EventKind.EXIT, proc.id, code=code, status=record.status.value,
		)
		proc._exit_future.set_result(ExitInfo(code=code, status=record.status))
		self._watchers.pop(proc.id, None)
		# Removed processes keep no durable record
		if self._processes.get(proc.id) is proc:
			self.mirror.save(Collections.AGENTS, proc.id, record)

		logger.info(f"Process {proc.id} exited with code {code} ({record.status.value})")

	# --- Control ---

	def send_input(self, process_id: str, text: str) -> bool:
		"""Send a message to a running interactive process."""
		proc = self._processes.get(process_id)
		if not isinstance(proc, InteractiveProcess) or proc.status != ProcessStatus.RUNNING or proc.input is None:
			return False
		return proc.input.write(text)

	def kill(self, process_id: str) -> bool:
		"""Terminate a running process. Returns False if it already ended."""
		proc = self._processes.get(process_id)
		if not proc or proc.status != ProcessStatus.RUNNING:
			return False

		proc.record.status = ProcessStatus.KILLED
		proc.record.ended_at = datetime.now().isoformat()
		self.mirror.save(Collections.AGENTS, process_id, proc.record)

		if proc.handle is not None:
			self._terminate(proc.handle)

		logger.info(f"Killed process {process_id}")
		return True

	def _terminate(self, handle: asyncio.subprocess.Process) -> None:
		try:
			handle.terminate()
		except ProcessLookupError:
			return
		asyncio.get_running_loop().create_task(self._escalate(handle))

	async def _escalate(self, handle: asyncio.subprocess.Process) -> None:
		"""SIGKILL a process that ignored SIGTERM for the grace period."""
		try:
			await asyncio.wait_for(handle.wait(), timeout=self.kill_grace_period)
		except asyncio.TimeoutError:
			try:
				handle.kill()
				logger.warning(f"Process {handle.pid} ignored SIGTERM, sent SIGKILL")
			except ProcessLookupError:
				pass

	async def remove(self, process_id: str) -> bool:
		"""Kill if running, then drop the registry entry and durable record."""
		proc = self._processes.get(process_id)
		if proc and proc.status == ProcessStatus.RUNNING:
			self.kill(process_id)
		existed = self._processes.pop(process_id, None) is not None
		self.mirror.delete(Collections.AGENTS, process_id)
		self.mirror.delete_output(process_id)
		return existed

	# --- Queries ---

	def get(self, process_id: str) -> Optional[AgentProcess]:
		return self._processes.get(process_id)

	def read_log(self, process_id: str, tail_lines: int = 100) -> list[str]:
		"""Durable output lines for a process, including past runs."""
		return self.mirror.read_output(process_id, tail_lines)

	# --- Recovery / shutdown ---

	async def reconcile_after_restart(self) -> list[AgentProcessRecord]:
		"""
		Mark persisted 'running' records from a previous run as disconnected.

		Output streaming cannot resume across a restart, so live orphans are
		disconnected as well as dead ones.

		Returns:
			Records that were changed
		"""
		records = await self.mirror.list_all(Collections.AGENTS, AgentProcessRecord)
		changed = []
		for record in records:
			if record.status != ProcessStatus.RUNNING or record.id in self._processes:
				continue

			if record.pid is not None and process_alive(record.pid):
				logger.warning(f"Orphaned process {record.id} (PID {record.pid}) cannot be reattached")
			else:
				logger.info(f"Process {record.id} no longer running")

			record.status = ProcessStatus.DISCONNECTED
			record.ended_at = datetime.now().isoformat()
			self.mirror.save(Collections.AGENTS, record.id, record)
			changed.append(record)

		return changed

	async def shutdown(self) -> None:
		"""Kill every running process and wait for their exit signals."""
		for proc in list(self._processes.values()):
			if proc.status == ProcessStatus.RUNNING:
				self.kill(proc.id)

		watchers = list(self._watchers.values())
		if watchers:
			done, pending = await asyncio.wait(watchers, timeout=self.kill_grace_period + 1)
			for task in pending:
				task.cancel()
		logger.info("Process supervisor stopped")

	# Defined last: the method name shadows the builtin in the class body
	def list(self) -> "list[AgentProcess]":
		return list(self._processes.values())
