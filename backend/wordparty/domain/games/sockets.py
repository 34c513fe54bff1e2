"""Socket.IO namespace relaying change-feed events to remote clients."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import socketio
from fastapi import HTTPException

from wordparty.infra.auth import AuthenticatedUser, verify_access_jwt
from wordparty.infra.changefeed import ChangeEvent, ChangeFeed, Subscription, change_feed
from wordparty.obs import metrics as obs_metrics
from wordparty.settings import settings

logger = logging.getLogger(__name__)

CHANGE_EVENT = "db:change"

_namespace: "GamesNamespace" | None = None


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _authenticate(auth_payload: dict, scope: dict) -> AuthenticatedUser:
	token = auth_payload.get("token")
	if token:
		try:
			return verify_access_jwt(token)
		except HTTPException as exc:
			raise ConnectionRefusedError("invalid_token") from exc
	if settings.is_dev():
		user_id = auth_payload.get("userId") or _header(scope, "x-user-id")
		if user_id:
			return AuthenticatedUser(id=str(user_id), username=auth_payload.get("username"))
	raise ConnectionRefusedError("missing token")


class GamesNamespace(socketio.AsyncNamespace):
	def __init__(self) -> None:
		super().__init__("/games")
		self._sessions: Dict[str, AuthenticatedUser] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		scope = environ.get("asgi.scope", environ)
		try:
			user = _authenticate(auth or environ.get("auth") or {}, scope)
		except ConnectionRefusedError:
			obs_metrics.socket_disconnected(self.namespace)
			raise
		self._sessions[sid] = user
		await self.enter_room(sid, self.user_room(user.id))
		await self.emit("games:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		user = self._sessions.pop(sid, None)
		if user:
			await self.leave_room(sid, self.user_room(user.id))

	def _require_user(self, sid: str) -> AuthenticatedUser:
		user = self._sessions.get(sid)
		if not user:
			raise ConnectionRefusedError("unauthenticated")
		return user

	async def on_game_join(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, "game_join")
		self._require_user(sid)
		game_id = str(payload.get("game_id") or "")
		if game_id:
			await self.enter_room(sid, self.game_room(game_id))

	async def on_game_leave(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, "game_leave")
		self._require_user(sid)
		game_id = str(payload.get("game_id") or "")
		if game_id:
			await self.leave_room(sid, self.game_room(game_id))

	async def on_room_join(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, "room_join")
		self._require_user(sid)
		room_id = str(payload.get("room_id") or "")
		if room_id:
			await self.enter_room(sid, self.lobby_room(room_id))

	async def on_room_leave(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, "room_leave")
		self._require_user(sid)
		room_id = str(payload.get("room_id") or "")
		if room_id:
			await self.leave_room(sid, self.lobby_room(room_id))

	@staticmethod
	def user_room(user_id: str) -> str:
		return f"user:{user_id}"

	@staticmethod
	def game_room(game_id: str) -> str:
		return f"game:{game_id}"

	@staticmethod
	def lobby_room(room_id: str) -> str:
		return f"room:{room_id}"


def channels_for(change: ChangeEvent) -> List[str]:
	"""Socket rooms that should hear about a row change."""
	row = change.row
	if change.table == "games":
		return [GamesNamespace.game_room(str(row.get("id"))), GamesNamespace.lobby_room(str(row.get("room_id")))]
	if change.table == "game_participants":
		return [GamesNamespace.game_room(str(row.get("game_id"))), GamesNamespace.user_room(str(row.get("user_id")))]
	if change.table in ("word_submissions", "completed_stories"):
		return [GamesNamespace.game_room(str(row.get("game_id")))]
	if change.table == "room_participants":
		return [GamesNamespace.lobby_room(str(row.get("room_id")))]
	if change.table == "rooms":
		return [GamesNamespace.lobby_room(str(row.get("id")))]
	return []


def set_namespace(namespace: GamesNamespace | None) -> None:
	global _namespace
	_namespace = namespace


async def relay_change(change: ChangeEvent) -> None:
	if _namespace is None:
		return
	payload = change.to_payload()
	for channel in channels_for(change):
		obs_metrics.socket_event(_namespace.namespace, CHANGE_EVENT)
		await _namespace.emit(CHANGE_EVENT, payload, room=channel)


def start_relay(feed: ChangeFeed | None = None) -> Subscription:
	return (feed or change_feed).subscribe("*", relay_change)
