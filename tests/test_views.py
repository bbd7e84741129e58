"""Tests for rich views."""

import io

from rich.console import Console

from agent_conductor.events import Event, EventKind
from agent_conductor.models import (
	AgentProcessRecord,
	HierarchyNode,
	HierarchyRegistry,
	NodeStatus,
	NodeTier,
	ProcessStatus,
	SubTaskStatus,
)
from agent_conductor.roles import AgentRole
from agent_conductor.scheduler import build_plan
from agent_conductor.views import (
	format_event,
	format_timestamp,
	render_hierarchy,
	render_plan,
	render_plans_table,
	render_processes,
)


def capture() -> tuple[Console, io.StringIO]:
	output = io.StringIO()
	return Console(file=output, width=200), output


def test_render_plan_shows_deps_and_errors():
	console, output = capture()
	plan = build_plan("add user profiles", "proj", "/tmp/proj")
	backend = plan.subtasks[1]
	backend.status = SubTaskStatus.FAILED
	backend.error = "ImportError: no module"
	backend.retry_count = 2

	render_plan(plan, console)

	text = output.getvalue()
	assert "add user profiles" in text
	assert "after: Design feature architecture" in text
	assert "ImportError: no module" in text
	assert "retries: 2" in text


def test_render_plans_table_empty():
	console, output = capture()
	render_plans_table([], console)
	assert "No plans recorded." in output.getvalue()


def test_render_hierarchy_nests_children():
	console, output = capture()
	registry = HierarchyRegistry(
		project_id="proj", project_path="/tmp/proj", project_name="Demo", orchestrator_node_id="orch-proj",
	)
	orch = HierarchyNode(
		id="orch-proj", project_id="proj", tier=NodeTier.ORCHESTRATOR, role=AgentRole.ORCHESTRATOR,
		status=NodeStatus.IDLE, child_ids=["leader-tester-proj"],
	)
	leader = HierarchyNode(
		id="leader-tester-proj", project_id="proj", tier=NodeTier.LEADER, role=AgentRole.TESTER,
		status=NodeStatus.DORMANT, parent_id="orch-proj", tasks_completed=3, child_ids=["emp-1"],
	)
	employee = HierarchyNode(
		id="emp-1", project_id="proj", tier=NodeTier.EMPLOYEE, role=AgentRole.DOCS,
		status=NodeStatus.DONE, parent_id="leader-tester-proj",
	)

	render_hierarchy(registry, [orch, leader, employee], console)

	text = output.getvalue()
	assert "Demo" in text
	assert "tester" in text
	assert "(done 3, failed 0)" in text
	assert "docs" in text


def test_render_processes():
	console, output = capture()
	records = [
		AgentProcessRecord(id="agent-a", role=AgentRole.BACKEND, status=ProcessStatus.FAILED, exit_code=2, pid=123),
		AgentProcessRecord(id="agent-b"),
	]

	render_processes(records, console)

	text = output.getvalue()
	assert "agent-a" in text
	assert "backend" in text
	assert "agent-b" in text


def test_format_event():
	done = Event(kind=EventKind.TASK_DONE, source="orch-1", data={"subtask_id": "st-1"})
	assert format_event(done) == "[green]done[/green] st-1"

	log = Event(kind=EventKind.MESSAGE_LOG, source="proj", data={"entry": {"role": "backend", "content": "hi"}})
	assert format_event(log) == "[dim]backend[/dim] hi"

	assert format_event(Event(kind=EventKind.STDOUT, source="p", data={"text": "x"})) is None


def test_format_timestamp():
	assert format_timestamp(None) == "-"
	assert format_timestamp("not a date") == "not a date"
