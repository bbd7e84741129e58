"""Hierarchy module - Persistent orchestrator, role leaders, employees and their memory."""

from .coordinator import HierarchyCoordinator, PendingTask
from .memory import (
	MemoryStore,
	estimate_tokens,
	extract_file_paths,
	render_memory,
	summarize_to_budget,
)
from .output_parser import (
	DirectiveKind,
	DispatchPlan,
	DispatchSubtask,
	IncrementalDirectiveParser,
	SpawnEmployee,
	StreamTextExtractor,
	TaskComplete,
	parse_directives,
)

__all__ = [
	"HierarchyCoordinator",
	"PendingTask",
	"MemoryStore",
	"estimate_tokens",
	"extract_file_paths",
	"render_memory",
	"summarize_to_budget",
	"DirectiveKind",
	"DispatchPlan",
	"DispatchSubtask",
	"IncrementalDirectiveParser",
	"SpawnEmployee",
	"StreamTextExtractor",
	"TaskComplete",
	"parse_directives",
]
