"""Room registry service layer."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

import asyncpg

from wordparty.domain.common.normalize import related_field
from wordparty.domain.rooms import codes, models, outbox, policy, schemas
from wordparty.infra import postgres
from wordparty.infra.auth import AuthenticatedUser
from wordparty.infra.changefeed import change_feed
from wordparty.obs import metrics as obs_metrics
from wordparty.settings import settings

logger = logging.getLogger(__name__)


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, models.Room] = {}
		self.participants: Dict[str, Dict[str, models.RoomParticipant]] = {}
		self.usernames: Dict[str, str] = {}

	def _count(self, room: models.Room) -> models.Room:
		return replace(room, participants_count=len(self.participants.get(room.id, {})))

	async def create_room(self, room: models.Room, host: models.RoomParticipant) -> bool:
		async with self._lock:
			if any(existing.room_code == room.room_code for existing in self.rooms.values()):
				return False
			self.rooms[room.id] = room
			self.participants[room.id] = {host.user_id: host}
			return True

	async def get_room(self, room_id: str) -> Optional[models.Room]:
		async with self._lock:
			room = self.rooms.get(room_id)
			return self._count(room) if room else None

	async def get_room_by_code(self, room_code: str) -> Optional[models.Room]:
		async with self._lock:
			for room in self.rooms.values():
				if room.room_code == room_code:
					return self._count(room)
			return None

	async def add_participant(self, participant: models.RoomParticipant) -> bool:
		async with self._lock:
			members = self.participants.setdefault(participant.room_id, {})
			if participant.user_id in members:
				return False
			members[participant.user_id] = participant
			return True

	async def remove_participant(self, room_id: str, user_id: str) -> Optional[models.RoomParticipant]:
		async with self._lock:
			return self.participants.get(room_id, {}).pop(user_id, None)

	async def set_active(self, room_id: str, active: bool) -> Optional[models.Room]:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None:
				return None
			room.active = active
			return self._count(room)

	async def get_participant(self, room_id: str, user_id: str) -> Optional[models.RoomParticipant]:
		async with self._lock:
			participant = self.participants.get(room_id, {}).get(user_id)
			if participant is None:
				return None
			return replace(participant, username=self.usernames.get(user_id))

	async def list_participants(self, room_id: str) -> List[models.RoomParticipant]:
		async with self._lock:
			members = sorted(self.participants.get(room_id, {}).values(), key=lambda p: (p.joined_at, p.user_id))
			return [replace(p, username=self.usernames.get(p.user_id)) for p in members]

	async def list_rooms_for_user(self, user_id: str) -> List[models.Room]:
		async with self._lock:
			rooms = [
				self._count(room)
				for room in self.rooms.values()
				if user_id in self.participants.get(room.id, {})
			]
			return sorted(rooms, key=lambda r: r.created_at, reverse=True)

	async def upsert_user(self, user_id: str, username: Optional[str]) -> None:
		async with self._lock:
			if username:
				self.usernames[user_id] = username


_MEMORY = _MemoryStore()


def reset_memory_state() -> None:
	global _MEMORY
	_MEMORY = _MemoryStore()


class RoomRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		self._pool_instance = await postgres.pool_or_none()
		return self._pool_instance

	async def upsert_user(self, user: AuthenticatedUser) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.upsert_user(user.id, user.username)
			return
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO users (id, username) VALUES ($1, $2)
				ON CONFLICT (id) DO UPDATE SET username = COALESCE(EXCLUDED.username, users.username)
				""",
				user.id,
				user.username,
			)

	async def create_room(self, *, host_id: str, room_code: str) -> Optional[models.Room]:
		"""Insert a room with its host as first participant. None when the code is taken."""
		now = datetime.now(timezone.utc)
		room = models.Room(
			id=str(uuid.uuid4()),
			room_code=room_code,
			host_id=host_id,
			active=True,
			created_at=now,
			participants_count=1,
		)
		host = models.RoomParticipant(room_id=room.id, user_id=host_id, joined_at=now)
		pool = await self._get_pool()
		if pool is None:
			if not await _MEMORY.create_room(room, host):
				return None
		else:
			async with pool.acquire() as conn:
				try:
					async with conn.transaction():
						await conn.execute(
							"INSERT INTO rooms (id, room_code, host_id, active, created_at) VALUES ($1,$2,$3,TRUE,$4)",
							room.id,
							room_code,
							host_id,
							now,
						)
						await conn.execute(
							"INSERT INTO room_participants (room_id, user_id, joined_at) VALUES ($1,$2,$3)",
							room.id,
							host_id,
							now,
						)
				except asyncpg.UniqueViolationError:
					return None
		change_feed.publish("rooms", "INSERT", new=room.to_row())
		change_feed.publish("room_participants", "INSERT", new=host.to_row())
		return room

	async def get_room(self, room_id: str) -> Optional[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_room(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT r.*, (SELECT COUNT(*) FROM room_participants p WHERE p.room_id = r.id) AS participants_count
				FROM rooms r WHERE r.id = $1
				""",
				room_id,
			)
			return _row_to_room(row) if row else None

	async def get_room_by_code(self, room_code: str) -> Optional[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_room_by_code(room_code)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT r.*, (SELECT COUNT(*) FROM room_participants p WHERE p.room_id = r.id) AS participants_count
				FROM rooms r WHERE r.room_code = $1
				""",
				room_code,
			)
			return _row_to_room(row) if row else None

	async def list_rooms_for_user(self, user_id: str) -> List[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_rooms_for_user(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT r.*, COUNT(p2.user_id) AS participants_count
				FROM rooms r
				JOIN room_participants p ON p.room_id = r.id AND p.user_id = $1
				LEFT JOIN room_participants p2 ON p2.room_id = r.id
				GROUP BY r.id
				ORDER BY r.created_at DESC
				""",
				user_id,
			)
			return [_row_to_room(row) for row in rows]

	async def get_participant(self, room_id: str, user_id: str) -> Optional[models.RoomParticipant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_participant(room_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_PARTICIPANT_COLUMNS} FROM room_participants p WHERE p.room_id=$1 AND p.user_id=$2",
				room_id,
				user_id,
			)
			return _row_to_participant(row) if row else None

	async def list_participants(self, room_id: str) -> List[models.RoomParticipant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_participants(room_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"SELECT {_PARTICIPANT_COLUMNS} FROM room_participants p WHERE p.room_id=$1 ORDER BY p.joined_at, p.user_id",
				room_id,
			)
			return [_row_to_participant(row) for row in rows]

	async def add_participant(self, participant: models.RoomParticipant) -> bool:
		"""Insert a participant row. False when the user is already in the room."""
		pool = await self._get_pool()
		if pool is None:
			inserted = await _MEMORY.add_participant(participant)
		else:
			async with pool.acquire() as conn:
				status = await conn.execute(
					"""
					INSERT INTO room_participants (room_id, user_id, joined_at) VALUES ($1,$2,$3)
					ON CONFLICT (room_id, user_id) DO NOTHING
					""",
					participant.room_id,
					participant.user_id,
					participant.joined_at,
				)
				inserted = status.endswith(" 1")
		if inserted:
			change_feed.publish("room_participants", "INSERT", new=participant.to_row())
		return inserted

	async def remove_participant(self, room_id: str, user_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			removed = await _MEMORY.remove_participant(room_id, user_id)
			old = removed.to_row() if removed else None
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"DELETE FROM room_participants WHERE room_id=$1 AND user_id=$2 RETURNING room_id, user_id, joined_at",
					room_id,
					user_id,
				)
				old = _row_to_participant(row).to_row() if row else None
		if old is None:
			return False
		change_feed.publish("room_participants", "DELETE", old=old)
		return True

	async def set_active(self, room_id: str, active: bool) -> None:
		pool = await self._get_pool()
		if pool is None:
			room = await _MEMORY.set_active(room_id, active)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"UPDATE rooms SET active=$2 WHERE id=$1 RETURNING *, 0 AS participants_count",
					room_id,
					active,
				)
				room = _row_to_room(row) if row else None
		if room is not None:
			change_feed.publish("rooms", "UPDATE", new=room.to_row())


_PARTICIPANT_COLUMNS = """
	p.room_id, p.user_id, p.joined_at,
	(SELECT json_agg(json_build_object('username', u.username)) FROM users u WHERE u.id = p.user_id) AS users
"""


def _row_to_room(row: asyncpg.Record) -> models.Room:
	return models.Room(
		id=str(row["id"]),
		room_code=row["room_code"],
		host_id=str(row["host_id"]),
		active=bool(row["active"]),
		created_at=row["created_at"],
		participants_count=int(row.get("participants_count") or 0),
	)


def _row_to_participant(row: asyncpg.Record) -> models.RoomParticipant:
	return models.RoomParticipant(
		room_id=str(row["room_id"]),
		user_id=str(row["user_id"]),
		joined_at=row["joined_at"],
		username=related_field(row.get("users"), "username"),
	)


class RoomService:
	def __init__(self, repository: RoomRepository | None = None) -> None:
		self._repo = repository or RoomRepository()

	@property
	def repository(self) -> RoomRepository:
		return self._repo

	async def create_room(self, auth_user: AuthenticatedUser) -> schemas.RoomSummary:
		await policy.enforce_create_limit(auth_user.id)
		await self._repo.upsert_user(auth_user)
		room: Optional[models.Room] = None
		for attempt in range(1, settings.room_code_max_attempts + 1):
			room = await self._repo.create_room(host_id=auth_user.id, room_code=codes.generate_room_code())
			if room is not None:
				break
			logger.info("room_code_collision", extra={"attempt": attempt, "user_id": auth_user.id})
		if room is None:
			raise policy.RoomPolicyError("room_code_exhausted", status_code=503)
		await outbox.append_room_event("room_created", room.id, user_id=auth_user.id)
		obs_metrics.inc_room_created()
		logger.info("room_created", extra={"room_id": room.id, "room_code": room.room_code, "user_id": auth_user.id})
		return schemas.RoomSummary(**room.to_summary(auth_user.id))

	async def join_by_code(self, auth_user: AuthenticatedUser, payload: schemas.JoinByCodeRequest) -> schemas.RoomSummary:
		room_code = policy.ensure_valid_code(payload.room_code)
		room = policy.ensure_room(await self._repo.get_room_by_code(room_code))
		policy.ensure_active(room)
		await self._repo.upsert_user(auth_user)
		participant = models.RoomParticipant(
			room_id=room.id,
			user_id=auth_user.id,
			joined_at=datetime.now(timezone.utc),
		)
		if await self._repo.add_participant(participant):
			room.participants_count += 1
			await outbox.append_room_event("participant_joined", room.id, user_id=auth_user.id)
			obs_metrics.inc_room_join()
		return schemas.RoomSummary(**room.to_summary(auth_user.id))

	async def leave_room(self, auth_user: AuthenticatedUser, room_id: str) -> None:
		room = policy.ensure_room(await self._repo.get_room(room_id))
		policy.ensure_participant(await self._repo.get_participant(room_id, auth_user.id))
		await self._repo.remove_participant(room_id, auth_user.id)
		await outbox.append_room_event("participant_left", room_id, user_id=auth_user.id)
		if room.participants_count <= 1 and room.active:
			await self._repo.set_active(room_id, False)
			await outbox.append_room_event("room_deactivated", room_id)

	async def leave_room_quietly(self, auth_user: AuthenticatedUser, room_id: str) -> None:
		"""Navigation cleanup: leave if possible, never raise."""
		try:
			await self.leave_room(auth_user, room_id)
		except policy.RoomPolicyError as exc:
			logger.info("room_leave_skipped", extra={"room_id": room_id, "reason": exc.code})
		except (asyncpg.PostgresError, OSError):
			logger.warning("room_leave_failed", extra={"room_id": room_id}, exc_info=True)

	async def get_room_by_code(self, auth_user: AuthenticatedUser, room_code: str) -> schemas.RoomDetail:
		room_code = policy.ensure_valid_code(room_code)
		room = policy.ensure_room(await self._repo.get_room_by_code(room_code))
		participants = await self._repo.list_participants(room.id)
		return schemas.RoomDetail(
			**room.to_summary(auth_user.id),
			participants=[
				schemas.RoomParticipantSummary(user_id=p.user_id, username=p.username, joined_at=p.joined_at)
				for p in participants
			],
		)

	async def list_my_rooms(self, auth_user: AuthenticatedUser) -> List[schemas.RoomSummary]:
		rooms = await self._repo.list_rooms_for_user(auth_user.id)
		return [schemas.RoomSummary(**room.to_summary(auth_user.id)) for room in rooms]

	async def get_room(self, room_id: str) -> models.Room:
		return policy.ensure_room(await self._repo.get_room(room_id))

	async def list_participants(self, room_id: str) -> List[models.RoomParticipant]:
		return await self._repo.list_participants(room_id)
