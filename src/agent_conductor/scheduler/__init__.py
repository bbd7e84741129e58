"""Scheduler module - Template plans and the dependency-aware task graph loop."""

from .loop import TaskGraphScheduler
from .plan_builder import build_plan, estimate_tokens
from .prompts import build_prompt
from .templates import TASK_TEMPLATES, SubTaskTemplate, TaskTemplate, get_template, match_template

__all__ = [
	"TaskGraphScheduler",
	"build_plan",
	"estimate_tokens",
	"build_prompt",
	"TASK_TEMPLATES",
	"SubTaskTemplate",
	"TaskTemplate",
	"get_template",
	"match_template",
]
