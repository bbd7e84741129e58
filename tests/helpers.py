"""Shared test fixtures and helpers for agent-conductor tests."""

import asyncio
import itertools
from typing import Callable, Optional

from agent_conductor.models import ProcessMode
from agent_conductor.persistence import InMemoryStore, PersistenceMirror
from agent_conductor.supervisor import ProcessSupervisor, RawLineLauncher

# (prompt) -> (exit code, output), or None to leave the process running
OneShotScript = Callable[[str], Optional[tuple[int, str]]]
# (handle, message) -> None; may call handle.emit() / handle.exit()
InputScript = Callable[["FakeHandle", str], None]

_pids = itertools.count(40000)


class FakeStdin:
	"""Writer-like stdin that hands every message to the handle's input script."""

	def __init__(self, handle: "FakeHandle"):
		self.handle = handle
		self.messages: list[str] = []
		self.closed = False

	def is_closing(self) -> bool:
		return self.closed

	def write(self, data: bytes) -> None:
		if self.closed:
			raise BrokenPipeError("stdin closed")
		text = data.decode("utf-8").rstrip("\n")
		self.messages.append(text)
		if self.handle.on_input:
			self.handle.on_input(self.handle, text)

	def close(self) -> None:
		self.closed = True


class FakeHandle:
	"""In-memory stand-in for asyncio.subprocess.Process."""

	def __init__(self, argv: list[str], mode: ProcessMode, on_input: Optional[InputScript] = None):
		self.argv = argv
		self.mode = mode
		self.pid = next(_pids)
		self.returncode: Optional[int] = None
		self.stdout = asyncio.StreamReader()
		self.stderr = asyncio.StreamReader()
		self.stdin = FakeStdin(self) if mode == ProcessMode.INTERACTIVE else None
		self.on_input = on_input
		self.terminated = False
		self.killed = False
		self._exited = asyncio.Event()

	@property
	def prompt(self) -> str:
		return self.argv[-1]

	def emit(self, text: str) -> None:
		if self.returncode is None:
			self.stdout.feed_data(text.encode("utf-8"))

	def emit_stderr(self, text: str) -> None:
		if self.returncode is None:
			self.stderr.feed_data(text.encode("utf-8"))

	def exit(self, code: int = 0) -> None:
		if self.returncode is not None:
			return
		self.returncode = code
		self.stdout.feed_eof()
		self.stderr.feed_eof()
		self._exited.set()

	def finish(self, code: int, output: str = "") -> None:
		if output:
			self.emit(output)
		self.exit(code)

	async def wait(self) -> int:
		await self._exited.wait()
		return self.returncode

	def terminate(self) -> None:
		self.terminated = True
		self.exit(-15)

	def kill(self) -> None:
		self.killed = True
		self.exit(-9)


class FakeSupervisor(ProcessSupervisor):
	"""
	ProcessSupervisor whose processes are FakeHandles.

	One-shot processes are resolved by `oneshot` from their prompt on the
	next loop iteration; interactive processes hand stdin messages to
	`on_input`.
	"""

	def __init__(
		self,
		oneshot: Optional[OneShotScript] = None,
		on_input: Optional[InputScript] = None,
		mirror: Optional[PersistenceMirror] = None,
		**kwargs,
	):
		super().__init__(launcher=RawLineLauncher(command="agent"), mirror=mirror, **kwargs)
		self.oneshot = oneshot
		self.on_input = on_input
		self.handles: list[FakeHandle] = []
		self.fail_spawn = False

	async def _open_process(self, argv, cwd, mode, shell):
		if self.fail_spawn:
			raise FileNotFoundError(2, "No such file or directory", argv[0])
		handle = FakeHandle(argv, mode, on_input=self.on_input)
		self.handles.append(handle)
		if mode == ProcessMode.ONESHOT and self.oneshot is not None:
			result = self.oneshot(handle.prompt)
			if result is not None:
				asyncio.get_running_loop().call_soon(handle.finish, *result)
		return handle

	def prompts(self) -> list[str]:
		return [h.prompt for h in self.handles if h.mode == ProcessMode.ONESHOT]


def make_mirror(tmp_path=None, debounce: float = 0.01) -> PersistenceMirror:
	"""Mirror over an in-memory store, with output logs under tmp_path when given."""
	return PersistenceMirror(
		InMemoryStore(),
		output_log_dir=tmp_path / "output" if tmp_path else None,
		debounce=debounce,
	)


async def settle(rounds: int = 20) -> None:
	"""Let queued callbacks and tasks run."""
	for _ in range(rounds):
		await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
	"""Poll until predicate() is true."""
	loop = asyncio.get_running_loop()
	deadline = loop.time() + timeout
	while not predicate():
		if loop.time() > deadline:
			raise AssertionError("condition not met in time")
		await asyncio.sleep(0.005)
