"""CLI for agent-conductor: run, ask, plans, tree, processes, and reconcile commands."""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from .config import load_config
from .errors import ConductorError
from .events import EventKind
from .logging_config import setup_logging
from .models import PlanStatus
from .runtime import Runtime
from .views import (
	format_event,
	render_hierarchy,
	render_message_log,
	render_plan,
	render_plans_table,
	render_processes,
)

console = Console()

PLAN_EVENTS = {
	EventKind.TASK_STARTED,
	EventKind.TASK_RETRYING,
	EventKind.TASK_DONE,
	EventKind.TASK_FAILED,
	EventKind.ORCHESTRATION_DONE,
}


def _runtime() -> Runtime:
	config = load_config()
	setup_logging(log_dir=config.log_dir)
	return Runtime(config)


async def _run(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.start()
	try:
		subscription = runtime.events.subscribe(kinds=PLAN_EVENTS)
		scheduler = await runtime.start_plan(args.task, args.project)
		console.print(f"[bold]Plan {scheduler.plan.id}[/bold] ({len(scheduler.plan.subtasks)} subtasks)")
		render_plan(scheduler.plan, console)

		async for event in subscription:
			if event.source != scheduler.plan.id:
				continue
			line = format_event(event)
			if line:
				console.print(line)
			if event.kind == EventKind.ORCHESTRATION_DONE:
				break
		subscription.close()

		render_plan(scheduler.plan, console)
		return 0 if scheduler.plan.status == PlanStatus.DONE else 1
	finally:
		await runtime.shutdown()


async def _ask(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.start()
	try:
		project_path = str(Path(args.project).resolve())
		project_id = args.project_id or Path(project_path).name
		coordinator = runtime.get_or_create_hierarchy(project_id, project_path, args.name)

		subscription = runtime.events.subscribe(kinds={EventKind.MESSAGE_LOG}, source=project_id)
		printer = asyncio.create_task(_print_events(subscription))
		try:
			summary = await coordinator.send_task(args.task)
		except ConductorError as e:
			console.print(f"[red]{e}[/red]")
			return 1
		finally:
			printer.cancel()
			subscription.close()

		console.print(Panel(summary, title="Task complete", border_style="green"))
		return 0
	finally:
		await runtime.shutdown()


async def _print_events(subscription) -> None:
	async for event in subscription:
		line = format_event(event)
		if line:
			console.print(line)


async def _plans(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.open()
	try:
		plans = await runtime.load_plans()
		if args.plan_id:
			matches = [p for p in plans if p.id == args.plan_id]
			if not matches:
				console.print(f"[red]Plan not found: {args.plan_id}[/red]")
				return 1
			render_plan(matches[0], console)
		else:
			render_plans_table(plans[:args.limit], console)
		return 0
	finally:
		await runtime.close()


async def _tree(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.open()
	try:
		tree = await runtime.load_tree(args.project_id)
	except ConductorError as e:
		console.print(f"[red]{e}[/red]")
		return 1
	finally:
		await runtime.close()

	render_hierarchy(tree["registry"], tree["nodes"], console)
	if args.log:
		render_message_log(tree["registry"], limit=args.log, console=console)
	return 0


async def _processes(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.open()
	try:
		records = await runtime.load_process_records()
	finally:
		await runtime.close()
	render_processes(records[:args.limit], console)
	return 0


async def _reconcile(args: argparse.Namespace) -> int:
	runtime = _runtime()
	await runtime.start()
	try:
		reconciled = runtime.reconciled
	finally:
		await runtime.close()

	if not reconciled:
		console.print("No stale processes found.")
	else:
		console.print(f"Marked {len(reconciled)} processes as disconnected:")
		render_processes(reconciled, console)
	return 0


def cmd_run(args: argparse.Namespace) -> None:
	"""Decompose a task with a template and run it to completion."""
	sys.exit(asyncio.run(_run(args)))


def cmd_ask(args: argparse.Namespace) -> None:
	"""Send a task to the project's orchestrator hierarchy."""
	sys.exit(asyncio.run(_ask(args)))


def cmd_plans(args: argparse.Namespace) -> None:
	sys.exit(asyncio.run(_plans(args)))


def cmd_tree(args: argparse.Namespace) -> None:
	sys.exit(asyncio.run(_tree(args)))


def cmd_processes(args: argparse.Namespace) -> None:
	sys.exit(asyncio.run(_processes(args)))


def cmd_reconcile(args: argparse.Namespace) -> None:
	sys.exit(asyncio.run(_reconcile(args)))


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="agent-conductor",
		description="Run coding agents as dependency-aware task graphs or a persistent project hierarchy",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Run a task as a template plan")
	run_parser.add_argument("task", help="Task description")
	run_parser.add_argument("--project", default=".", help="Project directory (default: cwd)")
	run_parser.set_defaults(func=cmd_run)

	# ask
	ask_parser = subparsers.add_parser("ask", help="Send a task to the project orchestrator")
	ask_parser.add_argument("task", help="Task description")
	ask_parser.add_argument("--project", default=".", help="Project directory (default: cwd)")
	ask_parser.add_argument("--project-id", default=None, help="Project ID (default: directory name)")
	ask_parser.add_argument("--name", default=None, help="Project display name")
	ask_parser.set_defaults(func=cmd_ask)

	# plans
	plans_parser = subparsers.add_parser("plans", help="List recorded plans")
	plans_parser.add_argument("plan_id", nargs="?", default=None, help="Plan ID for detail view")
	plans_parser.add_argument("--limit", type=int, default=20, help="Max plans listed")
	plans_parser.set_defaults(func=cmd_plans)

	# tree
	tree_parser = subparsers.add_parser("tree", help="Show a project's hierarchy")
	tree_parser.add_argument("project_id", help="Project ID")
	tree_parser.add_argument("--log", type=int, default=0, help="Also show the last N messages")
	tree_parser.set_defaults(func=cmd_tree)

	# processes
	proc_parser = subparsers.add_parser("processes", help="List agent processes")
	proc_parser.add_argument("--limit", type=int, default=50, help="Max processes listed")
	proc_parser.set_defaults(func=cmd_processes)

	# reconcile
	reconcile_parser = subparsers.add_parser("reconcile", help="Mark processes from dead runs as disconnected")
	reconcile_parser.set_defaults(func=cmd_reconcile)

	return parser


def main() -> None:
	"""CLI entry point."""
	load_dotenv()
	parser = build_parser()
	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
