"""Supervisor module - Spawning, streaming and terminating agent processes."""

from .launcher import PROTOCOLS, AgentLauncher, RawLineLauncher, make_launcher
from .process import (
	AgentProcess,
	ExitInfo,
	InputChannel,
	InteractiveProcess,
	OneShotProcess,
	ProcessSupervisor,
	process_alive,
)

__all__ = [
	"PROTOCOLS",
	"AgentLauncher",
	"RawLineLauncher",
	"make_launcher",
	"AgentProcess",
	"ExitInfo",
	"InputChannel",
	"InteractiveProcess",
	"OneShotProcess",
	"ProcessSupervisor",
	"process_alive",
]
