"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "agent-conductor"
APP_AUTHOR = "agent-conductor"


@dataclass
class SchedulerSettings:
	"""Tunables for the task-graph scheduler."""
	watchdog_interval: float = 60.0
	max_retries: int = 3
	backoff_base: float = 1.0
	backoff_cap: float = 30.0
	dependency_output_chars: int = 2000


@dataclass
class HierarchySettings:
	"""Tunables for the hierarchy coordinator."""
	task_timeout: float = 600.0
	memory_token_budget: int = 1500
	registry_log_cap: int = 200
	node_log_cap: int = 50
	leader_max_turns: int = 30
	employee_max_turns: int = 15


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)
	output_log_dir: Path = field(init=False)

	# Agent process
	agent_command: str = "claude"
	# "stream-json" or "lines"
	agent_protocol: str = "stream-json"
	kill_grace_period: float = 5.0
	output_buffer_chars: int = 200_000

	# Scheduler
	watchdog_interval: float = 60.0
	max_retries: int = 3
	backoff_base: float = 1.0
	backoff_cap: float = 30.0
	dependency_output_chars: int = 2000

	# Hierarchy
	task_timeout: float = 600.0
	memory_ring_size: int = 10
	domain_knowledge_cap: int = 20
	memory_token_budget: int = 1500
	registry_log_cap: int = 200
	node_log_cap: int = 50

	# Persistence / events
	persist_debounce: float = 1.0
	event_queue_size: int = 1000

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "conductor.db"
		self.log_dir = self.data_dir / "logs"
		self.output_log_dir = self.data_dir / "output"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)
		self.output_log_dir.mkdir(parents=True, exist_ok=True)

	def scheduler_settings(self) -> SchedulerSettings:
		return SchedulerSettings(
			watchdog_interval=self.watchdog_interval,
			max_retries=self.max_retries,
			backoff_base=self.backoff_base,
			backoff_cap=self.backoff_cap,
			dependency_output_chars=self.dependency_output_chars,
		)

	def hierarchy_settings(self) -> HierarchySettings:
		return HierarchySettings(
			task_timeout=self.task_timeout,
			memory_token_budget=self.memory_token_budget,
			registry_log_cap=self.registry_log_cap,
			node_log_cap=self.node_log_cap,
		)


PATH_FIELDS = {"config_dir", "data_dir"}


def _coerce(config: Config, attr: str, val):
	"""Cast a raw toml/env value to the type of the existing attribute."""
	current = getattr(config, attr)
	if attr in PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if isinstance(current, bool):
		return str(val).lower() in ("1", "true", "yes")
	if isinstance(current, int):
		return int(val)
	if isinstance(current, float):
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply AGENT_CONDUCTOR_* environment variable overrides."""
	env_map = {
		"AGENT_CONDUCTOR_CONFIG_DIR": "config_dir",
		"AGENT_CONDUCTOR_DATA_DIR": "data_dir",
		"AGENT_CONDUCTOR_AGENT_COMMAND": "agent_command",
		"AGENT_CONDUCTOR_AGENT_PROTOCOL": "agent_protocol",
		"AGENT_CONDUCTOR_MAX_RETRIES": "max_retries",
		"AGENT_CONDUCTOR_WATCHDOG_INTERVAL": "watchdog_interval",
		"AGENT_CONDUCTOR_TASK_TIMEOUT": "task_timeout",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(config, attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key) and key not in ("db_path", "log_dir", "output_log_dir"):
			setattr(config, key, _coerce(config, key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config.toml lives in the config dir, which may itself come from the env
	config_dir = os.getenv("AGENT_CONDUCTOR_CONFIG_DIR")
	if config_dir:
		config.config_dir = _coerce(config, "config_dir", config_dir)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
