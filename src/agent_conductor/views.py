"""Rich views for plans, hierarchy trees and agent processes."""

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .events import Event, EventKind
from .models import (
	AgentProcessRecord,
	HierarchyNode,
	HierarchyRegistry,
	NodeStatus,
	OrchestrationPlan,
	PlanStatus,
	ProcessStatus,
	SubTaskStatus,
)

SUBTASK_ICONS = {
	SubTaskStatus.PENDING: "[dim][ ][/dim]",
	SubTaskStatus.READY: "[dim][ ][/dim]",
	SubTaskStatus.RUNNING: "[yellow][~][/yellow]",
	SubTaskStatus.DONE: "[green][x][/green]",
	SubTaskStatus.FAILED: "[red][!][/red]",
}

PLAN_STYLES = {
	PlanStatus.DONE: "green",
	PlanStatus.FAILED: "red",
	PlanStatus.CANCELLED: "dim",
	PlanStatus.RUNNING: "yellow",
}

NODE_STYLES = {
	NodeStatus.ACTIVE: "yellow",
	NodeStatus.IDLE: "green",
	NodeStatus.DONE: "green",
	NodeStatus.FAILED: "red",
	NodeStatus.SHUTDOWN: "red",
	NodeStatus.DORMANT: "dim",
	NodeStatus.COLD: "dim",
	NodeStatus.PLACEHOLDER: "dim",
}

PROCESS_STYLES = {
	ProcessStatus.RUNNING: "yellow",
	ProcessStatus.DONE: "green",
	ProcessStatus.FAILED: "red",
	ProcessStatus.KILLED: "magenta",
	ProcessStatus.DISCONNECTED: "dim",
}


def format_timestamp(iso_str: Optional[str]) -> str:
	"""Format an ISO timestamp as relative time (e.g. '2m ago')."""
	if not iso_str:
		return "-"
	try:
		total_secs = int((datetime.now() - datetime.fromisoformat(iso_str)).total_seconds())
	except (ValueError, TypeError):
		return str(iso_str)[:19]
	if total_secs < 0:
		return iso_str[:19]
	if total_secs < 60:
		return f"{total_secs}s ago"
	if total_secs < 3600:
		return f"{total_secs // 60}m ago"
	if total_secs < 86400:
		return f"{total_secs // 3600}h ago"
	return f"{total_secs // 86400}d ago"


def render_plan(plan: OrchestrationPlan, console: Optional[Console] = None) -> None:
	"""Render a plan as a Rich Tree of subtasks with their dependencies."""
	console = console or Console()
	progress = plan.get_progress()
	style = PLAN_STYLES.get(plan.status, "white")

	tree = Tree(
		f"[bold]{plan.task_description}[/bold]  [{style}]{plan.status.value}[/{style}]  "
		f"[dim]({progress['done']}/{progress['total']} done, {progress['percent_complete']:.0f}%)[/dim]"
	)
	titles = {st.id: st.title for st in plan.subtasks}
	for st in plan.subtasks:
		icon = SUBTASK_ICONS.get(st.status, "[ ]")
		label = f"{icon} [bold]{st.title}[/bold] [dim]{st.role.value}[/dim]"
		if st.retry_count:
			label += f" [yellow]retries: {st.retry_count}[/yellow]"
		branch = tree.add(label)
		if st.deps:
			branch.add("[dim]after: " + ", ".join(titles.get(d, d) for d in st.deps) + "[/dim]")
		if st.status == SubTaskStatus.FAILED and st.error:
			branch.add(f"[red]{st.error[-200:].strip()}[/red]")

	console.print(tree)


def render_plans_table(plans: list[OrchestrationPlan], console: Optional[Console] = None) -> None:
	console = console or Console()
	if not plans:
		console.print("[dim]No plans recorded.[/dim]")
		return

	table = Table(title="Plans")
	table.add_column("ID", style="cyan")
	table.add_column("Task")
	table.add_column("Status")
	table.add_column("Subtasks", justify="right")
	table.add_column("Tokens", justify="right")
	table.add_column("Created")

	for plan in plans:
		progress = plan.get_progress()
		style = PLAN_STYLES.get(plan.status, "white")
		table.add_row(
			plan.id,
			plan.task_description[:60],
			f"[{style}]{plan.status.value}[/{style}]",
			f"{progress['done']}/{progress['total']}",
			str(plan.token_estimate),
			format_timestamp(plan.created_at),
		)
	console.print(table)


def _node_label(node: HierarchyNode) -> str:
	style = NODE_STYLES.get(node.status, "white")
	label = f"[bold]{node.role.value}[/bold] [dim]{node.tier.value}[/dim] [{style}]{node.status.value}[/{style}]"
	if node.tasks_completed or node.tasks_failed:
		label += f" [dim](done {node.tasks_completed}, failed {node.tasks_failed})[/dim]"
	if node.current_task_id:
		label += f" [yellow]{node.current_task_id}[/yellow]"
	return label


def render_hierarchy(
	registry: HierarchyRegistry,
	nodes: list[HierarchyNode],
	console: Optional[Console] = None,
) -> None:
	"""Render the orchestrator -> leader -> employee tree."""
	console = console or Console()
	by_id = {node.id: node for node in nodes}

	root_node = by_id.get(registry.orchestrator_node_id)
	header = f"[bold]{registry.project_name}[/bold] [dim]{registry.status.value}[/dim]"
	tree = Tree(header + (f"  {_node_label(root_node)}" if root_node else ""))

	def add_children(branch: Tree, node: HierarchyNode) -> None:
		for child_id in node.child_ids:
			child = by_id.get(child_id)
			if child is not None:
				add_children(branch.add(_node_label(child)), child)

	if root_node:
		add_children(tree, root_node)

	console.print(tree)


def render_message_log(registry: HierarchyRegistry, limit: int = 20, console: Optional[Console] = None) -> None:
	console = console or Console()
	entries = registry.message_log[-limit:]
	if not entries:
		return
	lines = [f"[dim]{format_timestamp(e.timestamp)}[/dim] [bold]{e.role}[/bold] {e.content}" for e in entries]
	console.print(Panel("\n".join(lines), title="Recent messages", border_style="cyan"))


def render_processes(records: list[AgentProcessRecord], console: Optional[Console] = None) -> None:
	console = console or Console()
	if not records:
		console.print("[dim]No agent processes recorded.[/dim]")
		return

	table = Table(title="Agent processes")
	table.add_column("ID", style="cyan")
	table.add_column("Name")
	table.add_column("Role")
	table.add_column("Status")
	table.add_column("Exit", justify="right")
	table.add_column("PID", justify="right")
	table.add_column("Started")

	for record in records:
		style = PROCESS_STYLES.get(record.status, "white")
		table.add_row(
			record.id,
			record.name[:40],
			record.role.value if record.role else "-",
			f"[{style}]{record.status.value}[/{style}]",
			"-" if record.exit_code is None else str(record.exit_code),
			"-" if record.pid is None else str(record.pid),
			format_timestamp(record.started_at),
		)
	console.print(table)


def format_event(event: Event) -> Optional[str]:
	"""One-line rendering of a core event for live output, or None to skip it."""
	data = event.data
	kind = event.kind
	if kind == EventKind.TASK_STARTED:
		return f"[yellow]started[/yellow] {data.get('subtask_id')} -> {data.get('agent_process_id')}"
	if kind == EventKind.TASK_RETRYING:
		return f"[yellow]retrying[/yellow] {data.get('subtask_id')} in {data.get('delay', 0):.0f}s (attempt {data.get('attempt')})"
	if kind == EventKind.TASK_DONE:
		return f"[green]done[/green] {data.get('subtask_id')}"
	if kind == EventKind.TASK_FAILED:
		return f"[red]failed[/red] {data.get('subtask_id')}: {str(data.get('error', ''))[-120:].strip()}"
	if kind == EventKind.ORCHESTRATION_DONE:
		return f"[bold]plan {data.get('status')}[/bold]"
	if kind == EventKind.MESSAGE_LOG:
		entry = data.get("entry", {})
		return f"[dim]{entry.get('role')}[/dim] {entry.get('content')}"
	return None
