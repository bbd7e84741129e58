"""Tests for the CLI module."""

import argparse
import asyncio
import io
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from agent_conductor.cli import (
	build_parser,
	cmd_plans,
	cmd_processes,
	cmd_reconcile,
	cmd_run,
	cmd_tree,
	main,
)
from agent_conductor.config import Config
from agent_conductor.models import (
	AgentProcessRecord,
	HierarchyNode,
	HierarchyRegistry,
	MessageLogEntry,
	NodeTier,
	ProcessStatus,
)
from agent_conductor.persistence import Collections, SQLiteStore
from agent_conductor.roles import AgentRole
from agent_conductor.scheduler import build_plan


@pytest.fixture
def cli_env(tmp_path: Path):
	"""Point the CLI at a temp data dir and capture its console output."""
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	output = io.StringIO()
	with (
		patch("agent_conductor.cli.load_config", return_value=config),
		patch("agent_conductor.cli.setup_logging"),
		patch("agent_conductor.cli.console", Console(file=output, width=200)),
	):
		yield config, output


def seed(config: Config, collection: str, key: str, model) -> None:
	async def _save():
		store = SQLiteStore(config.db_path)
		await store.init()
		await store.save(collection, key, model.model_dump_json())
		await store.close()

	asyncio.run(_save())


def exit_code(command, args: argparse.Namespace) -> int:
	with pytest.raises(SystemExit) as exc_info:
		command(args)
	return exc_info.value.code


def test_parser_run():
	args = build_parser().parse_args(["run", "add a login page", "--project", "/tmp/proj"])
	assert args.func is cmd_run
	assert args.task == "add a login page"
	assert args.project == "/tmp/proj"


def test_parser_defaults():
	parser = build_parser()
	assert parser.parse_args(["plans"]).limit == 20
	assert parser.parse_args(["plans"]).plan_id is None
	assert parser.parse_args(["tree", "proj", "--log", "5"]).log == 5
	ask = parser.parse_args(["ask", "do it"])
	assert ask.project == "."
	assert ask.project_id is None


def test_main_without_command_exits():
	with patch("sys.argv", ["agent-conductor"]), patch("agent_conductor.cli.load_dotenv"):
		with pytest.raises(SystemExit) as exc_info:
			main()
	assert exc_info.value.code == 1


def test_main_dispatches(cli_env):
	_, output = cli_env
	with patch("sys.argv", ["agent-conductor", "plans"]), patch("agent_conductor.cli.load_dotenv"):
		with pytest.raises(SystemExit) as exc_info:
			main()
	assert exc_info.value.code == 0
	assert "No plans recorded." in output.getvalue()


def test_plans_table(cli_env):
	config, output = cli_env
	plan = build_plan("add a login page", "proj", "/tmp/proj")
	seed(config, Collections.PLANS, plan.id, plan)

	assert exit_code(cmd_plans, argparse.Namespace(plan_id=None, limit=20)) == 0
	assert plan.id in output.getvalue()


def test_plan_detail(cli_env):
	config, output = cli_env
	plan = build_plan("add a login page", "proj", "/tmp/proj")
	seed(config, Collections.PLANS, plan.id, plan)

	assert exit_code(cmd_plans, argparse.Namespace(plan_id=plan.id, limit=20)) == 0
	assert "Design feature architecture" in output.getvalue()


def test_plan_detail_missing(cli_env):
	_, output = cli_env
	assert exit_code(cmd_plans, argparse.Namespace(plan_id="orch-nope", limit=20)) == 1
	assert "Plan not found: orch-nope" in output.getvalue()


def test_tree(cli_env):
	config, output = cli_env
	registry = HierarchyRegistry(
		project_id="proj",
		project_path="/tmp/proj",
		project_name="Demo Project",
		orchestrator_node_id="orch-proj",
		message_log=[MessageLogEntry(id="msg-1", source="orch-proj", role="orchestrator", kind="info", content="hello log")],
	)
	orch = HierarchyNode(
		id="orch-proj", project_id="proj", tier=NodeTier.ORCHESTRATOR, role=AgentRole.ORCHESTRATOR,
		child_ids=["leader-backend-proj"],
	)
	leader = HierarchyNode(
		id="leader-backend-proj", project_id="proj", tier=NodeTier.LEADER, role=AgentRole.BACKEND,
		parent_id="orch-proj",
	)
	seed(config, Collections.REGISTRIES, "proj", registry)
	seed(config, Collections.NODES, "proj:orch-proj", orch)
	seed(config, Collections.NODES, "proj:leader-backend-proj", leader)

	assert exit_code(cmd_tree, argparse.Namespace(project_id="proj", log=5)) == 0
	text = output.getvalue()
	assert "Demo Project" in text
	assert "backend" in text
	assert "hello log" in text


def test_tree_missing(cli_env):
	_, output = cli_env
	assert exit_code(cmd_tree, argparse.Namespace(project_id="ghost", log=0)) == 1
	assert "No hierarchy for project: ghost" in output.getvalue()


def test_processes(cli_env):
	config, output = cli_env
	record = AgentProcessRecord(id="agent-1234", name="Backend Dev", status=ProcessStatus.DONE, exit_code=0)
	seed(config, Collections.AGENTS, record.id, record)

	assert exit_code(cmd_processes, argparse.Namespace(limit=50)) == 0
	assert "agent-1234" in output.getvalue()


def test_reconcile_nothing_stale(cli_env):
	_, output = cli_env
	assert exit_code(cmd_reconcile, argparse.Namespace()) == 0
	assert "No stale processes found." in output.getvalue()


def test_reconcile_marks_stale(cli_env):
	config, output = cli_env
	record = AgentProcessRecord(id="agent-stale", status=ProcessStatus.RUNNING)
	seed(config, Collections.AGENTS, record.id, record)

	assert exit_code(cmd_reconcile, argparse.Namespace()) == 0
	text = output.getvalue()
	assert "Marked 1 processes as disconnected:" in text
	assert "agent-stale" in text
