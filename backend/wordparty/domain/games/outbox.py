"""Redis Stream outbox writers for the games domain."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from wordparty.infra.redis import redis_client

GAME_EVENT_STREAM = "x:games.events"


def _stringify_fields(fields: Mapping[str, Any]) -> dict[str, str]:
	return {key: str(value) for key, value in fields.items() if value is not None}


async def append_game_event(
	event: str,
	*,
	game_id: str,
	user_id: Optional[str] = None,
	meta: Mapping[str, Any] | None = None,
) -> None:
	fields: dict[str, Any] = {"event": event, "game_id": game_id, "user_id": user_id}
	if meta:
		for key, value in meta.items():
			fields[f"meta_{key}"] = value
	await redis_client.xadd(GAME_EVENT_STREAM, _stringify_fields(fields))
