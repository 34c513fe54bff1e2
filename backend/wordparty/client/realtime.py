"""Change source backed by the `/games` Socket.IO namespace."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Set

import socketio

from wordparty.infra.changefeed import ANY, ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

NAMESPACE = "/games"
CHANGE_EVENT = "db:change"


class SocketChangeSource:
	"""Re-publishes server change events on a local feed.

	Subscriptions filtered on `game_id` or `room_id` join the matching server
	channel; events for the user's own rows arrive on the per-user channel the
	server joins at connect time.
	"""

	def __init__(self, url: str, *, token: Optional[str] = None, user_id: Optional[str] = None) -> None:
		self._url = url
		self._auth = {"token": token} if token else {"userId": user_id}
		self._client = socketio.AsyncClient(reconnection=True)
		self._feed = ChangeFeed()
		self._joined: Set[tuple[str, str]] = set()
		self._pending: Set[asyncio.Task] = set()
		self._client.on(CHANGE_EVENT, self._on_change, namespace=NAMESPACE)
		self._client.on("connect", self._on_connect, namespace=NAMESPACE)

	async def connect(self) -> None:
		await self._client.connect(self._url, namespaces=[NAMESPACE], auth=self._auth)

	async def close(self) -> None:
		for task in list(self._pending):
			task.cancel()
		await self._feed.reset()
		await self._client.disconnect()

	async def __aenter__(self) -> "SocketChangeSource":
		await self.connect()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	def subscribe(
		self,
		table: str,
		handler: Callable[[ChangeEvent], Awaitable[None]],
		*,
		event: str = ANY,
		filters: Mapping[str, Any] | None = None,
	) -> Subscription:
		filters = dict(filters or {})
		if "game_id" in filters:
			self._join("game_join", "game_id", str(filters["game_id"]))
		elif table == "games" and "id" in filters:
			self._join("game_join", "game_id", str(filters["id"]))
		if "room_id" in filters:
			self._join("room_join", "room_id", str(filters["room_id"]))
		return self._feed.subscribe(table, handler, event=event, filters=filters)

	def _join(self, event: str, key: str, value: str) -> None:
		if (event, value) in self._joined:
			return
		self._joined.add((event, value))
		if self._client.connected:
			self._spawn(self._client.emit(event, {key: value}, namespace=NAMESPACE))

	def _spawn(self, coro: Awaitable[Any]) -> None:
		task = asyncio.ensure_future(coro)
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _on_connect(self) -> None:
		for event, value in self._joined:
			key = "game_id" if event == "game_join" else "room_id"
			await self._client.emit(event, {key: value}, namespace=NAMESPACE)

	async def _on_change(self, payload: dict) -> None:
		table = payload.get("table")
		kind = payload.get("event")
		if not table or not kind:
			logger.warning("socket_change_malformed", extra={"payload_keys": sorted(payload)})
			return
		self._feed.publish(table, kind, new=payload.get("new"), old=payload.get("old"))
