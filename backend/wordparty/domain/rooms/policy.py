"""Policy helpers for rooms."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from wordparty.domain.rooms import codes, models
from wordparty.infra.redis import redis_client
from wordparty.settings import settings


class RoomPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


async def _touch_limit(key: str, ttl_seconds: int) -> int:
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, ttl_seconds)
		count, _ = await pipe.execute()
	return int(count)


async def enforce_create_limit(user_id: str) -> None:
	now = datetime.now(timezone.utc)
	bucket = now.strftime("%Y%m%d")
	key = f"rl:room:create:{user_id}:{bucket}"
	if await _touch_limit(key, 86_400) > settings.room_create_limit_per_day:
		raise RoomPolicyError("rate_limited:create", status_code=429)


def ensure_valid_code(code: str) -> str:
	normalised = codes.normalise_room_code(code)
	if not codes.is_valid_room_code(normalised):
		raise RoomPolicyError("invalid_room_code", status_code=422)
	return normalised


def ensure_room(room: Optional[models.Room]) -> models.Room:
	if room is None:
		raise RoomPolicyError("room_not_found", status_code=404)
	return room


def ensure_active(room: models.Room) -> None:
	if not room.active:
		raise RoomPolicyError("room_inactive", status_code=410)


def ensure_participant(participant: Optional[models.RoomParticipant]) -> models.RoomParticipant:
	if participant is None:
		raise RoomPolicyError("not_participant", status_code=403)
	return participant
