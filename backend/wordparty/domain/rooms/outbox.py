"""Outbox helpers for room-domain events."""

from __future__ import annotations

from typing import Any, Mapping

from wordparty.infra.redis import redis_client

ROOM_EVENT_STREAM = "x:rooms.events"


async def append_room_event(event: str, room_id: str, *, user_id: str | None = None, meta: Mapping[str, Any] | None = None) -> None:
	fields: dict[str, Any] = {
		"event": event,
		"room_id": room_id,
	}
	if user_id:
		fields["user_id"] = str(user_id)
	if meta:
		for key, value in meta.items():
			fields[f"meta_{key}"] = str(value)
	await redis_client.xadd(ROOM_EVENT_STREAM, fields)
