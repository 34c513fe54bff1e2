"""In-process change feed for table mutations.

Repositories publish one `ChangeEvent` per row write. Subscribers filter by
table, event type and column equality, and each subscription drains its own
queue on a dedicated task so a slow handler never blocks the writer. Delivery
is at-most-once and unordered across subscriptions; consumers are expected to
re-fetch instead of patching local state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

ChangeKind = str

EVENT_KINDS: tuple[ChangeKind, ...] = ("INSERT", "UPDATE", "DELETE")
ANY = "*"


@dataclass(slots=True)
class ChangeEvent:
	table: str
	event: ChangeKind
	new: Optional[Dict[str, Any]] = None
	old: Optional[Dict[str, Any]] = None

	@property
	def row(self) -> Dict[str, Any]:
		"""The row the event is about: the new image, or the old one for deletes."""
		if self.new is not None:
			return self.new
		return self.old or {}

	def to_payload(self) -> dict[str, Any]:
		return {"table": self.table, "event": self.event, "new": self.new, "old": self.old}


Handler = Callable[[ChangeEvent], Awaitable[None]]


@dataclass(slots=True)
class _Filter:
	table: str
	event: ChangeKind
	columns: Dict[str, str] = field(default_factory=dict)

	def accepts(self, change: ChangeEvent) -> bool:
		if self.table != ANY and self.table != change.table:
			return False
		if self.event != ANY and self.event != change.event:
			return False
		if not self.columns:
			return True
		row = change.row
		return all(str(row.get(key)) == value for key, value in self.columns.items())


class Subscription:
	"""A live registration on the feed. Close it to stop delivery."""

	def __init__(self, feed: "ChangeFeed", flt: _Filter, handler: Handler) -> None:
		self._feed = feed
		self._filter = flt
		self._handler = handler
		self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
		self._task: Optional[asyncio.Task] = asyncio.create_task(
			self._drain(), name=f"changefeed:{flt.table}:{flt.event}"
		)

	@property
	def closed(self) -> bool:
		return self._task is None

	def offer(self, change: ChangeEvent) -> None:
		if self._task is not None and self._filter.accepts(change):
			self._queue.put_nowait(change)

	async def _drain(self) -> None:
		while True:
			change = await self._queue.get()
			try:
				await self._handler(change)
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.exception(
					"changefeed_handler_failed",
					extra={"table": change.table, "event": change.event},
				)
			finally:
				self._queue.task_done()

	async def flush(self) -> None:
		"""Wait until every queued event has been handled."""
		if self._task is not None:
			await self._queue.join()

	async def close(self) -> None:
		task, self._task = self._task, None
		self._feed._discard(self)
		if task is None:
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass


class ChangeFeed:
	def __init__(self) -> None:
		self._subscriptions: List[Subscription] = []

	def subscribe(
		self,
		table: str,
		handler: Handler,
		*,
		event: ChangeKind = ANY,
		filters: Mapping[str, Any] | None = None,
	) -> Subscription:
		if event != ANY and event not in EVENT_KINDS:
			raise ValueError(f"unknown event kind: {event}")
		columns = {key: str(value) for key, value in (filters or {}).items()}
		subscription = Subscription(self, _Filter(table=table, event=event, columns=columns), handler)
		self._subscriptions.append(subscription)
		return subscription

	def publish(
		self,
		table: str,
		event: ChangeKind,
		*,
		new: Mapping[str, Any] | None = None,
		old: Mapping[str, Any] | None = None,
	) -> ChangeEvent:
		change = ChangeEvent(
			table=table,
			event=event,
			new=dict(new) if new is not None else None,
			old=dict(old) if old is not None else None,
		)
		for subscription in list(self._subscriptions):
			subscription.offer(change)
		return change

	async def flush(self) -> None:
		for subscription in list(self._subscriptions):
			await subscription.flush()

	def subscriber_count(self) -> int:
		return len(self._subscriptions)

	def _discard(self, subscription: Subscription) -> None:
		try:
			self._subscriptions.remove(subscription)
		except ValueError:
			pass

	async def reset(self) -> None:
		for subscription in list(self._subscriptions):
			await subscription.close()


change_feed = ChangeFeed()
