"""Live views fed by change notifications and a fallback poll.

A `LiveView` owns its subscriptions and its poll task for the lifetime of an
`async with` block. Both channels call `refresh()`, which re-fetches the full
state and hands it to a single `apply` callback, so whichever channel fires
first wins and the other converges on the same state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Mapping, Optional, Protocol, Sequence, TypeVar

from wordparty.infra.changefeed import ANY, ChangeEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Closeable(Protocol):
	async def close(self) -> None:
		...


class ChangeSource(Protocol):
	def subscribe(
		self,
		table: str,
		handler: Callable[[ChangeEvent], Awaitable[None]],
		*,
		event: str = ANY,
		filters: Mapping[str, Any] | None = None,
	) -> Closeable:
		...


@dataclass(slots=True)
class Watch:
	table: str
	event: str = ANY
	filters: Dict[str, Any] = field(default_factory=dict)


class LiveView(Generic[T]):
	def __init__(
		self,
		source: ChangeSource,
		*,
		fetch: Callable[[], Awaitable[T]],
		apply: Callable[[T], Any],
		watches: Sequence[Watch],
		poll_interval: Optional[float] = None,
		while_: Callable[[], bool] | None = None,
		name: str = "live",
	) -> None:
		self._source = source
		self._fetch = fetch
		self._apply = apply
		self._watches = list(watches)
		self._poll_interval = poll_interval
		self._while = while_
		self.name = name
		self._subscriptions: List[Closeable] = []
		self._poll_task: Optional[asyncio.Task] = None
		self._refresh_lock = asyncio.Lock()
		self._open = False
		self.refresh_count = 0

	@property
	def polling(self) -> bool:
		return self._poll_task is not None and not self._poll_task.done()

	async def __aenter__(self) -> "LiveView[T]":
		self._open = True
		try:
			for watch in self._watches:
				self._subscriptions.append(
					self._source.subscribe(watch.table, self._on_change, event=watch.event, filters=watch.filters)
				)
			await self.refresh()
		except BaseException:
			await self.close()
			raise
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def refresh(self) -> None:
		"""Fetch the current state and apply it."""
		async with self._refresh_lock:
			state = await self._fetch()
			result = self._apply(state)
			if inspect.isawaitable(result):
				await result
			self.refresh_count += 1
		self._sync_polling()

	async def close(self) -> None:
		self._open = False
		task, self._poll_task = self._poll_task, None
		if task is not None and task is not asyncio.current_task():
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		subscriptions, self._subscriptions = self._subscriptions, []
		for subscription in subscriptions:
			await subscription.close()

	def resume_polling(self) -> None:
		"""Re-evaluate the wait condition after outside state changed."""
		self._sync_polling()

	def _should_poll(self) -> bool:
		if not self._open or not self._poll_interval:
			return False
		return self._while is None or bool(self._while())

	def _sync_polling(self) -> None:
		if self._should_poll():
			if not self.polling:
				self._poll_task = asyncio.create_task(self._poll(self._poll_interval), name=f"{self.name}:poll")
		elif self.polling and self._poll_task is not asyncio.current_task():
			self._poll_task.cancel()
			self._poll_task = None

	async def _on_change(self, change: ChangeEvent) -> None:
		if not self._open:
			return
		try:
			await self.refresh()
		except Exception:
			logger.exception("live_refresh_failed", extra={"view": self.name, "table": change.table, "source": "push"})

	async def _poll(self, interval: float) -> None:
		while True:
			await asyncio.sleep(interval)
			if not self._should_poll():
				return
			try:
				await self.refresh()
			except Exception:
				logger.exception("live_refresh_failed", extra={"view": self.name, "source": "poll"})
			if not self._should_poll():
				return
