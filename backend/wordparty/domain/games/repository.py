"""Storage access for games, templates, participants and submissions.

Every write publishes the affected rows on the change feed after it lands, so
live views see the same mutations regardless of whether Postgres or the
in-memory store backs the repository.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

import asyncpg

from wordparty.domain.common.normalize import json_list, related_field
from wordparty.domain.games import models, template_bank
from wordparty.infra import postgres
from wordparty.infra.changefeed import change_feed


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.templates: Dict[str, models.StoryTemplate] = {t.id: t for t in template_bank.builtin_templates()}
		self.word_bank: Dict[str, models.WordBankEntry] = {w.id: w for w in template_bank.builtin_word_bank()}
		self.games: Dict[str, models.Game] = {}
		self.participants: Dict[str, Dict[str, models.GameParticipant]] = {}
		self.submissions: Dict[str, Dict[int, models.WordSubmission]] = {}

	async def list_templates(self, category: Optional[str]) -> List[models.StoryTemplate]:
		async with self._lock:
			return [
				t for t in self.templates.values()
				if t.active and (category is None or t.category == category)
			]

	async def get_template(self, template_id: str) -> Optional[models.StoryTemplate]:
		async with self._lock:
			return self.templates.get(template_id)

	async def add_template(self, template: models.StoryTemplate) -> None:
		async with self._lock:
			self.templates[template.id] = template

	async def create_game(self, game: models.Game, participants: Sequence[models.GameParticipant]) -> None:
		async with self._lock:
			self.games[game.id] = replace(game)
			self.participants[game.id] = {p.user_id: replace(p) for p in participants}
			self.submissions[game.id] = {}

	async def get_game(self, game_id: str) -> Optional[models.Game]:
		async with self._lock:
			game = self.games.get(game_id)
			return replace(game) if game else None

	async def list_participants(self, game_id: str) -> List[models.GameParticipant]:
		async with self._lock:
			rows = self.participants.get(game_id, {}).values()
			return [replace(p, words_assigned=list(p.words_assigned)) for p in sorted(rows, key=lambda p: (p.joined_at, p.user_id))]

	async def get_participant(self, game_id: str, user_id: str) -> Optional[models.GameParticipant]:
		async with self._lock:
			participant = self.participants.get(game_id, {}).get(user_id)
			return replace(participant, words_assigned=list(participant.words_assigned)) if participant else None

	async def set_ready(self, game_id: str, user_id: str) -> Optional[models.GameParticipant]:
		async with self._lock:
			participant = self.participants.get(game_id, {}).get(user_id)
			if participant is None or participant.is_ready:
				return None
			participant.is_ready = True
			return replace(participant)

	async def remove_participants(self, game_id: str, *, user_id: Optional[str], only_unready: bool) -> List[models.GameParticipant]:
		async with self._lock:
			members = self.participants.get(game_id, {})
			doomed = [
				p for p in members.values()
				if (user_id is None or p.user_id == user_id) and (not only_unready or not p.is_ready)
			]
			for participant in doomed:
				members.pop(participant.user_id, None)
			return doomed

	async def delete_game(self, game_id: str) -> Optional[models.Game]:
		async with self._lock:
			self.participants.pop(game_id, None)
			self.submissions.pop(game_id, None)
			return self.games.pop(game_id, None)

	async def start_game(
		self, game_id: str, allocations: Mapping[str, List[int]], started_at: datetime
	) -> Optional[tuple[models.Game, List[models.GameParticipant]]]:
		async with self._lock:
			game = self.games.get(game_id)
			if game is None or game.status != "waiting":
				return None
			game.status = "playing"
			game.started_at = started_at
			updated: List[models.GameParticipant] = []
			for user_id, positions in allocations.items():
				participant = self.participants.get(game_id, {}).get(user_id)
				if participant is not None:
					participant.words_assigned = list(positions)
					updated.append(replace(participant))
			return replace(game), updated

	async def transition(self, game_id: str, from_status: str, to_status: str) -> Optional[models.Game]:
		async with self._lock:
			game = self.games.get(game_id)
			if game is None or game.status != from_status:
				return None
			game.status = to_status
			return replace(game)

	async def insert_submission(self, submission: models.WordSubmission) -> bool:
		async with self._lock:
			bucket = self.submissions.setdefault(submission.game_id, {})
			if submission.position in bucket:
				return False
			bucket[submission.position] = submission
			return True

	async def list_submissions(self, game_id: str) -> List[models.WordSubmission]:
		async with self._lock:
			return sorted(self.submissions.get(game_id, {}).values(), key=lambda s: s.position)

	async def list_word_bank(self, word_type: str) -> List[models.WordBankEntry]:
		async with self._lock:
			return [w for w in self.word_bank.values() if w.active and w.type == word_type]

	async def get_word(self, word_id: str) -> Optional[models.WordBankEntry]:
		async with self._lock:
			return self.word_bank.get(word_id)

	async def list_games_for_user(self, user_id: str) -> List[models.Game]:
		async with self._lock:
			return [
				replace(game)
				for game_id, game in self.games.items()
				if user_id in self.participants.get(game_id, {})
				or any(s.user_id == user_id for s in self.submissions.get(game_id, {}).values())
			]


_MEMORY = _MemoryStore()


def reset_memory_state() -> None:
	global _MEMORY
	_MEMORY = _MemoryStore()


def memory_store() -> _MemoryStore:
	return _MEMORY


class GameRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		self._pool_instance = await postgres.pool_or_none()
		return self._pool_instance

	# Templates and word bank

	async def list_templates(self, category: Optional[str] = None) -> List[models.StoryTemplate]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_templates(category)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM story_templates
				WHERE active = TRUE AND ($1::text IS NULL OR category = $1)
				ORDER BY category, title
				""",
				category,
			)
			return [_row_to_template(row) for row in rows]

	async def get_template(self, template_id: str) -> Optional[models.StoryTemplate]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_template(template_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM story_templates WHERE id=$1", template_id)
			return _row_to_template(row) if row else None

	async def list_word_bank(self, word_type: str) -> List[models.WordBankEntry]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_word_bank(word_type)
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT id, word, type, active FROM word_bank WHERE type=$1 AND active = TRUE", word_type)
			return [models.WordBankEntry(id=str(r["id"]), word=r["word"], type=r["type"], active=bool(r["active"])) for r in rows]

	async def get_word(self, word_id: str) -> Optional[models.WordBankEntry]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_word(word_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT id, word, type, active FROM word_bank WHERE id=$1", word_id)
			if not row:
				return None
			return models.WordBankEntry(id=str(row["id"]), word=row["word"], type=row["type"], active=bool(row["active"]))

	# Games

	async def create_game(self, game: models.Game, participants: Sequence[models.GameParticipant]) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.create_game(game, participants)
		else:
			async with pool.acquire() as conn:
				async with conn.transaction():
					await conn.execute(
						"""
						INSERT INTO games (id, room_id, template_id, host_id, status, created_at)
						VALUES ($1,$2,$3,$4,$5,$6)
						""",
						game.id,
						game.room_id,
						game.template_id,
						game.host_id,
						game.status,
						game.created_at,
					)
					await conn.executemany(
						"""
						INSERT INTO game_participants (game_id, user_id, is_ready, words_assigned, joined_at)
						VALUES ($1,$2,$3,$4,$5)
						""",
						[(p.game_id, p.user_id, p.is_ready, list(p.words_assigned), p.joined_at) for p in participants],
					)
		change_feed.publish("games", "INSERT", new=game.to_row())
		for participant in participants:
			change_feed.publish("game_participants", "INSERT", new=participant.to_row())

	async def get_game(self, game_id: str) -> Optional[models.Game]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_game(game_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM games WHERE id=$1", game_id)
			return _row_to_game(row) if row else None

	async def list_games_for_user(self, user_id: str) -> List[models.Game]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_games_for_user(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT DISTINCT g.* FROM games g
				LEFT JOIN game_participants p ON p.game_id = g.id AND p.user_id = $1
				LEFT JOIN word_submissions s ON s.game_id = g.id AND s.user_id = $1
				WHERE p.user_id IS NOT NULL OR s.user_id IS NOT NULL
				""",
				user_id,
			)
			return [_row_to_game(row) for row in rows]

	async def start_game(self, game_id: str, allocations: Mapping[str, List[int]], started_at: datetime) -> Optional[models.Game]:
		"""Move a waiting game to playing and store allocations. None if another caller won."""
		pool = await self._get_pool()
		if pool is None:
			result = await _MEMORY.start_game(game_id, allocations, started_at)
			if result is None:
				return None
			game, updated = result
		else:
			async with pool.acquire() as conn:
				async with conn.transaction():
					row = await conn.fetchrow(
						"""
						UPDATE games SET status='playing', started_at=$2
						WHERE id=$1 AND status='waiting'
						RETURNING *
						""",
						game_id,
						started_at,
					)
					if row is None:
						return None
					game = _row_to_game(row)
					updated = []
					for user_id, positions in allocations.items():
						prow = await conn.fetchrow(
							"""
							UPDATE game_participants SET words_assigned=$3
							WHERE game_id=$1 AND user_id=$2
							RETURNING game_id, user_id, is_ready, words_assigned, joined_at
							""",
							game_id,
							user_id,
							list(positions),
						)
						if prow is not None:
							updated.append(_row_to_participant(prow))
		for participant in updated:
			change_feed.publish("game_participants", "UPDATE", new=participant.to_row())
		change_feed.publish("games", "UPDATE", new=game.to_row())
		return game

	async def transition(self, game_id: str, from_status: str, to_status: str) -> Optional[models.Game]:
		pool = await self._get_pool()
		if pool is None:
			game = await _MEMORY.transition(game_id, from_status, to_status)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"UPDATE games SET status=$3 WHERE id=$1 AND status=$2 RETURNING *",
					game_id,
					from_status,
					to_status,
				)
				game = _row_to_game(row) if row else None
		if game is not None:
			change_feed.publish("games", "UPDATE", new=game.to_row())
		return game

	async def delete_game(self, game_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			game = await _MEMORY.delete_game(game_id)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow("DELETE FROM games WHERE id=$1 RETURNING *", game_id)
				game = _row_to_game(row) if row else None
		if game is None:
			return False
		change_feed.publish("games", "DELETE", old=game.to_row())
		return True

	# Participants

	async def list_participants(self, game_id: str) -> List[models.GameParticipant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_participants(game_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"SELECT {_PARTICIPANT_COLUMNS} FROM game_participants p WHERE p.game_id=$1 ORDER BY p.joined_at, p.user_id",
				game_id,
			)
			return [_row_to_participant(row) for row in rows]

	async def get_participant(self, game_id: str, user_id: str) -> Optional[models.GameParticipant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_participant(game_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_PARTICIPANT_COLUMNS} FROM game_participants p WHERE p.game_id=$1 AND p.user_id=$2",
				game_id,
				user_id,
			)
			return _row_to_participant(row) if row else None

	async def set_ready(self, game_id: str, user_id: str) -> bool:
		"""Flip is_ready to true. False when it already was (or the row is gone)."""
		pool = await self._get_pool()
		if pool is None:
			participant = await _MEMORY.set_ready(game_id, user_id)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE game_participants SET is_ready = TRUE
					WHERE game_id=$1 AND user_id=$2 AND is_ready = FALSE
					RETURNING game_id, user_id, is_ready, words_assigned, joined_at
					""",
					game_id,
					user_id,
				)
				participant = _row_to_participant(row) if row else None
		if participant is None:
			return False
		change_feed.publish("game_participants", "UPDATE", new=participant.to_row())
		return True

	async def remove_participant(self, game_id: str, user_id: str) -> bool:
		removed = await self._remove(game_id, user_id=user_id, only_unready=False)
		return bool(removed)

	async def remove_unready(self, game_id: str) -> List[str]:
		removed = await self._remove(game_id, user_id=None, only_unready=True)
		return [p.user_id for p in removed]

	async def remove_all_participants(self, game_id: str) -> List[str]:
		removed = await self._remove(game_id, user_id=None, only_unready=False)
		return [p.user_id for p in removed]

	async def _remove(self, game_id: str, *, user_id: Optional[str], only_unready: bool) -> List[models.GameParticipant]:
		pool = await self._get_pool()
		if pool is None:
			removed = await _MEMORY.remove_participants(game_id, user_id=user_id, only_unready=only_unready)
		else:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"""
					DELETE FROM game_participants
					WHERE game_id=$1
					  AND ($2::text IS NULL OR user_id = $2)
					  AND (NOT $3::boolean OR is_ready = FALSE)
					RETURNING game_id, user_id, is_ready, words_assigned, joined_at
					""",
					game_id,
					user_id,
					only_unready,
				)
				removed = [_row_to_participant(row) for row in rows]
		for participant in removed:
			change_feed.publish("game_participants", "DELETE", old=participant.to_row())
		return removed

	# Submissions

	async def insert_submission(self, submission: models.WordSubmission) -> bool:
		"""Insert a word. False when the position already has one."""
		pool = await self._get_pool()
		if pool is None:
			inserted = await _MEMORY.insert_submission(submission)
		else:
			async with pool.acquire() as conn:
				try:
					await conn.execute(
						"""
						INSERT INTO word_submissions (game_id, position, user_id, word, word_bank_id, auto_submitted, created_at)
						VALUES ($1,$2,$3,$4,$5,$6,$7)
						""",
						submission.game_id,
						submission.position,
						submission.user_id,
						submission.word,
						submission.word_bank_id,
						submission.auto_submitted,
						submission.created_at,
					)
					inserted = True
				except asyncpg.UniqueViolationError:
					inserted = False
		if inserted:
			change_feed.publish("word_submissions", "INSERT", new=submission.to_row())
		return inserted

	async def list_submissions(self, game_id: str) -> List[models.WordSubmission]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_submissions(game_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT * FROM word_submissions WHERE game_id=$1 ORDER BY position", game_id)
			return [
				models.WordSubmission(
					game_id=str(r["game_id"]),
					position=int(r["position"]),
					user_id=str(r["user_id"]),
					word=r["word"],
					word_bank_id=str(r["word_bank_id"]) if r["word_bank_id"] else None,
					auto_submitted=bool(r["auto_submitted"]),
					created_at=r["created_at"],
				)
				for r in rows
			]


_PARTICIPANT_COLUMNS = """
	p.game_id, p.user_id, p.is_ready, p.words_assigned, p.joined_at,
	(SELECT json_agg(json_build_object('username', u.username)) FROM users u WHERE u.id = p.user_id) AS users
"""


def _row_to_template(row: asyncpg.Record) -> models.StoryTemplate:
	return models.StoryTemplate(
		id=str(row["id"]),
		category=row["category"],
		title=row["title"],
		body=row["body"],
		placeholders=[
			models.Placeholder(position=int(item["position"]), type=str(item["type"]))
			for item in json_list(row["placeholders"])
		],
		active=bool(row["active"]),
	)


def _row_to_game(row: asyncpg.Record) -> models.Game:
	return models.Game(
		id=str(row["id"]),
		room_id=str(row["room_id"]),
		template_id=str(row["template_id"]),
		host_id=str(row["host_id"]),
		status=row["status"],
		created_at=row["created_at"],
		started_at=row["started_at"],
	)


def _row_to_participant(row: asyncpg.Record) -> models.GameParticipant:
	return models.GameParticipant(
		game_id=str(row["game_id"]),
		user_id=str(row["user_id"]),
		is_ready=bool(row["is_ready"]),
		words_assigned=[int(p) for p in (row["words_assigned"] or [])],
		joined_at=row["joined_at"],
		username=related_field(row.get("users"), "username"),
	)
