"""Tests for the event bus."""

import asyncio

import pytest

from agent_conductor.events import Event, EventBus, EventKind


class TestEventBus:
	"""Tests for subscription filtering and delivery."""

	@pytest.mark.asyncio
	async def test_emit_reaches_every_matching_subscriber(self):
		bus = EventBus()
		all_events = bus.subscribe()
		exits_only = bus.subscribe(kinds={EventKind.EXIT})

		bus.emit(EventKind.STDOUT, "p1", text="hi")
		bus.emit(EventKind.EXIT, "p1", code=0)

		assert all_events.pending() == 2
		assert exits_only.pending() == 1
		event = await exits_only.get()
		assert event.kind == EventKind.EXIT
		assert event.data == {"code": 0}

	@pytest.mark.asyncio
	async def test_source_filter(self):
		bus = EventBus()
		sub = bus.subscribe(source="plan-a")

		bus.emit(EventKind.TASK_DONE, "plan-b", subtask_id="x")
		bus.emit(EventKind.TASK_DONE, "plan-a", subtask_id="y")

		assert sub.pending() == 1
		assert sub.get_nowait().data["subtask_id"] == "y"

	@pytest.mark.asyncio
	async def test_full_queue_drops_oldest(self):
		"""A lagging subscriber loses its oldest events; publish never blocks."""
		bus = EventBus()
		sub = bus.subscribe(maxsize=2)

		for i in range(5):
			bus.emit(EventKind.STDOUT, "p1", text=str(i))

		assert sub.dropped == 3
		assert [sub.get_nowait().data["text"] for _ in range(2)] == ["3", "4"]

	@pytest.mark.asyncio
	async def test_close_unsubscribes(self):
		bus = EventBus()
		sub = bus.subscribe()
		assert bus.subscriber_count == 1

		sub.close()
		bus.emit(EventKind.STDOUT, "p1", text="ignored")

		assert bus.subscriber_count == 0
		assert sub.pending() == 0

	@pytest.mark.asyncio
	async def test_async_iteration(self):
		bus = EventBus()
		sub = bus.subscribe()

		async def produce():
			for i in range(3):
				bus.emit(EventKind.STDOUT, "p1", text=str(i))
				await asyncio.sleep(0)

		producer = asyncio.create_task(produce())
		received = []
		async for event in sub:
			received.append(event.data["text"])
			if len(received) == 3:
				break
		await producer

		assert received == ["0", "1", "2"]

	def test_event_to_dict(self):
		event = Event(kind=EventKind.EXIT, source="p1", data={"code": 1})
		data = event.to_dict()
		assert data["kind"] == "exit"
		assert data["source"] == "p1"
		assert data["data"] == {"code": 1}
		assert data["timestamp"]
