"""Tests for directive parsing from agent output."""

import json

from agent_conductor.hierarchy import (
	DispatchPlan,
	IncrementalDirectiveParser,
	SpawnEmployee,
	StreamTextExtractor,
	TaskComplete,
	parse_directives,
)
from agent_conductor.roles import AgentRole


def fenced(data: dict) -> str:
	return "```json\n" + json.dumps(data) + "\n```"


DISPATCH = {
	"type": "dispatch_plan",
	"taskId": "task-1",
	"subtasks": [
		{"role": "Backend", "title": "API", "prompt": "build the api"},
		{"role": "tester", "prompt": "test it", "deps": ["BACKEND"], "priority": 2},
	],
}


class TestParseDirectives:
	"""Tests for whole-text parsing."""

	def test_fenced_dispatch_plan(self):
		text = "Here is my plan:\n" + fenced(DISPATCH) + "\nLet me know."

		[directive] = parse_directives(text)

		assert isinstance(directive, DispatchPlan)
		assert directive.task_id == "task-1"
		assert [st.role for st in directive.subtasks] == [AgentRole.BACKEND, AgentRole.TESTER]
		assert directive.subtasks[0].priority == 1
		assert directive.subtasks[1].deps == ["backend"]

	def test_tagged_block(self):
		text = '<json>{"type": "task_complete", "taskId": "task-9", "summary": "all done"}</json>'

		[directive] = parse_directives(text)

		assert isinstance(directive, TaskComplete)
		assert directive.summary == "all done"

	def test_spawn_employee(self):
		text = fenced({"type": "spawn_employee", "parentLeaderRole": "frontend", "task": "style the button"})

		[directive] = parse_directives(text)

		assert isinstance(directive, SpawnEmployee)
		assert directive.parent_leader_role == AgentRole.FRONTEND
		assert directive.role is None

	def test_multiple_blocks_in_order(self):
		text = (
			fenced(DISPATCH)
			+ "\nnoise\n"
			+ fenced({"type": "task_complete", "taskId": "task-1"})
		)
		assert [type(d) for d in parse_directives(text)] == [DispatchPlan, TaskComplete]

	def test_invalid_json_skipped(self):
		text = "```json\n{not valid\n```\n" + fenced({"type": "task_complete", "taskId": "t"})
		assert len(parse_directives(text)) == 1

	def test_unknown_type_skipped(self):
		assert parse_directives(fenced({"type": "celebrate", "taskId": "t"})) == []

	def test_non_object_skipped(self):
		assert parse_directives("```json\n[1, 2, 3]\n```") == []

	def test_unknown_role_rejected(self):
		bad = {"type": "dispatch_plan", "taskId": "t", "subtasks": [{"role": "wizard", "prompt": "x"}]}
		assert parse_directives(fenced(bad)) == []

	def test_orchestrator_cannot_be_dispatched(self):
		bad = {"type": "dispatch_plan", "taskId": "t", "subtasks": [{"role": "orchestrator", "prompt": "x"}]}
		assert parse_directives(fenced(bad)) == []

	def test_empty_dispatch_rejected(self):
		assert parse_directives(fenced({"type": "dispatch_plan", "taskId": "t", "subtasks": []})) == []

	def test_missing_task_id_rejected(self):
		assert parse_directives(fenced({"type": "task_complete", "summary": "x"})) == []

	def test_dedup_keys(self):
		a = parse_directives(fenced({"type": "task_complete", "taskId": "t", "summary": "one"}))[0]
		b = parse_directives(fenced({"type": "task_complete", "taskId": "t", "summary": "two"}))[0]
		assert a.dedup_key() == b.dedup_key()


class TestIncrementalParser:
	"""Tests for parsing a growing stream."""

	def test_block_split_across_chunks(self):
		parser = IncrementalDirectiveParser()
		text = "intro " + fenced(DISPATCH) + " outro"

		first = parser.feed(text[:30])
		second = parser.feed(text[30:])

		assert first == []
		assert len(second) == 1

	def test_each_block_returned_once(self):
		parser = IncrementalDirectiveParser()
		block = fenced({"type": "task_complete", "taskId": "t"})

		assert len(parser.feed(block)) == 1
		assert parser.feed("more text") == []
		assert parser.buffered == len("more text")

	def test_buffer_is_bounded(self):
		parser = IncrementalDirectiveParser(max_buffer_chars=100)
		parser.feed("x" * 1000)
		assert parser.buffered == 100


class TestStreamTextExtractor:
	"""Tests for recovering text from stream-json output."""

	def test_assistant_text_extracted(self):
		extractor = StreamTextExtractor()
		line = json.dumps({
			"type": "assistant",
			"message": {"content": [
				{"type": "text", "text": "hello "},
				{"type": "tool_use", "name": "Read"},
				{"type": "text", "text": "world"},
			]},
		})

		assert extractor.feed(line + "\n") == "hello world\n"

	def test_other_envelopes_dropped(self):
		extractor = StreamTextExtractor()
		lines = [
			json.dumps({"type": "system", "subtype": "init"}),
			json.dumps({"type": "result", "result": "done"}),
		]
		assert extractor.feed("\n".join(lines) + "\n") == ""

	def test_plain_text_passes_through(self):
		extractor = StreamTextExtractor()
		assert extractor.feed("just text\n{broken json\n") == "just text\n{broken json\n"

	def test_partial_lines_wait_for_newline(self):
		extractor = StreamTextExtractor()
		assert extractor.feed("half a li") == ""
		assert extractor.feed("ne\nrest") == "half a line\n"
		assert extractor.flush() == "rest\n"

	def test_directive_json_line_passes_through(self):
		"""A bare directive object on its own line is not an envelope."""
		extractor = StreamTextExtractor()
		line = json.dumps({"type": "task_complete", "taskId": "t"})
		assert extractor.feed(line + "\n") == line + "\n"

	def test_extracted_text_feeds_parser(self):
		extractor = StreamTextExtractor()
		parser = IncrementalDirectiveParser()
		text = "Plan:\n" + fenced({"type": "task_complete", "taskId": "t", "summary": "s"})
		line = json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})

		directives = parser.feed(extractor.feed(line[:40]) + extractor.feed(line[40:] + "\n"))

		assert len(directives) == 1
