"""
Events - Typed event kinds and a broadcast bus with bounded subscriber queues.

Every subscriber gets its own asyncio.Queue. publish() never blocks: when a
subscriber falls behind, its oldest queued event is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
	"""Every event the core emits."""
	# Process
	STDOUT = "stdout"
	STDERR = "stderr"
	EXIT = "exit"

	# Scheduler
	PLAN_READY = "plan_ready"
	TASK_STARTED = "task_started"
	TASK_RETRYING = "task_retrying"
	TASK_DONE = "task_done"
	TASK_FAILED = "task_failed"
	ORCHESTRATION_DONE = "orchestration_done"

	# Hierarchy
	ORCHESTRATOR_SPAWNED = "orchestrator_spawned"
	ORCHESTRATOR_IDLE = "orchestrator_idle"
	ORCHESTRATOR_SHUTDOWN = "orchestrator_shutdown"
	TASK_RECEIVED = "task_received"
	PLAN_RECEIVED = "plan_received"
	LEADER_WAKING = "leader_waking"
	LEADER_ACTIVE = "leader_active"
	LEADER_DONE = "leader_done"
	LEADER_FAILED = "leader_failed"
	EMPLOYEE_SPAWNED = "employee_spawned"
	EMPLOYEE_DONE = "employee_done"
	TASK_COMPLETE = "task_complete"
	MESSAGE_LOG = "message_log"


@dataclass
class Event:
	"""A single emitted event."""
	kind: EventKind
	source: str
	data: dict[str, Any] = field(default_factory=dict)
	timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

	def to_dict(self) -> dict:
		return {
			"kind": self.kind.value,
			"source": self.source,
			"data": self.data,
			"timestamp": self.timestamp,
		}


class Subscription:
	"""A subscriber's private, bounded view of an EventBus."""

	def __init__(
		self,
		bus: "EventBus",
		maxsize: int,
		kinds: Optional[set[EventKind]] = None,
		source: Optional[str] = None,
	):
		self._bus = bus
		self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
		self.kinds = kinds
		self.source = source
		self.dropped = 0
		self.closed = False

	def matches(self, event: Event) -> bool:
		if self.kinds is not None and event.kind not in self.kinds:
			return False
		if self.source is not None and event.source != self.source:
			return False
		return True

	def _offer(self, event: Event) -> None:
		if self.closed:
			return
		if self._queue.full():
			self._queue.get_nowait()
			self.dropped += 1
			if self.dropped == 1 or self.dropped % 100 == 0:
				logger.warning(f"Event subscriber lagging, dropped {self.dropped} events")
		self._queue.put_nowait(event)

	async def get(self) -> Event:
		return await self._queue.get()

	def get_nowait(self) -> Event:
		return self._queue.get_nowait()

	def pending(self) -> int:
		return self._queue.qsize()

	def close(self) -> None:
		self.closed = True
		self._bus.unsubscribe(self)

	def __aiter__(self) -> AsyncIterator[Event]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Event]:
		while not self.closed or not self._queue.empty():
			yield await self._queue.get()


class EventBus:
	"""Broadcasts events to every matching subscription."""

	def __init__(self, default_maxsize: int = 1000):
		self.default_maxsize = default_maxsize
		self._subscriptions: list[Subscription] = []

	def subscribe(
		self,
		kinds: Optional[set[EventKind]] = None,
		source: Optional[str] = None,
		maxsize: Optional[int] = None,
	) -> Subscription:
		"""
		Subscribe to events.

		Args:
			kinds: Only deliver these kinds (all when None)
			source: Only deliver events from this source id
			maxsize: Queue bound for this subscriber

		Returns:
			Subscription to read events from
		"""
		sub = Subscription(self, maxsize or self.default_maxsize, kinds=kinds, source=source)
		self._subscriptions.append(sub)
		return sub

	def unsubscribe(self, sub: Subscription) -> None:
		if sub in self._subscriptions:
			self._subscriptions.remove(sub)

	def publish(self, event: Event) -> None:
		for sub in list(self._subscriptions):
			if sub.matches(event):
				sub._offer(event)

	def emit(self, kind: EventKind, source: str, **data: Any) -> Event:
		"""Build and publish an event."""
		event = Event(kind=kind, source=source, data=data)
		self.publish(event)
		return event

	@property
	def subscriber_count(self) -> int:
		return len(self._subscriptions)
