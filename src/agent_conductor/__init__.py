"""agent-conductor - Supervises coding-agent processes as task graphs and project hierarchies."""

from .config import Config, get_config, load_config
from .errors import ConductorError
from .events import Event, EventBus, EventKind
from .roles import AgentRole
from .runtime import Runtime

__version__ = "0.1.0"

__all__ = [
	"Config",
	"get_config",
	"load_config",
	"ConductorError",
	"Event",
	"EventBus",
	"EventKind",
	"AgentRole",
	"Runtime",
]
