"""Game lifecycle: ready check, force start, cancel and word submission.

A game is created in `waiting` with the room's participants copied over. The
host starts ready. Whenever the participant set or a ready flag changes, the
quorum check runs: once every remaining participant is ready, positions are
allocated and the game moves to `playing` through a conditional update, so
concurrent callers allocate at most once.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from wordparty.domain.games import allocator, models, outbox, policy, schemas
from wordparty.domain.games.repository import GameRepository
from wordparty.domain.rooms.service import RoomRepository
from wordparty.domain.stories.service import StoryService
from wordparty.infra.auth import AuthenticatedUser
from wordparty.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class GameService:
	def __init__(
		self,
		repository: GameRepository | None = None,
		rooms: RoomRepository | None = None,
		stories: StoryService | None = None,
		*,
		rng: random.Random | None = None,
	) -> None:
		self._repo = repository or GameRepository()
		self._rooms = rooms or RoomRepository()
		self._stories = stories or StoryService(games=self._repo)
		self._rng = rng or random.SystemRandom()

	# Reads

	async def list_categories(self) -> List[str]:
		templates = await self._repo.list_templates()
		return sorted({t.category for t in templates})

	async def get_game(self, auth_user: AuthenticatedUser, game_id: str) -> schemas.GameDetail:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		return await self._detail(game, auth_user.id)

	async def list_participants(self, game_id: str) -> List[schemas.GameParticipantSummary]:
		policy.ensure_game(await self._repo.get_game(game_id))
		participants = await self._repo.list_participants(game_id)
		return [_participant_summary(p) for p in participants]

	async def suggest_words(
		self,
		word_type: str,
		exclude_ids: Sequence[str] = (),
		limit: int = 5,
	) -> List[schemas.WordSuggestion]:
		excluded = set(exclude_ids)
		entries = [w for w in await self._repo.list_word_bank(word_type) if w.id not in excluded]
		picked = self._rng.sample(entries, k=min(limit, len(entries)))
		return [schemas.WordSuggestion(id=w.id, word=w.word, type=w.type) for w in picked]

	# Lifecycle

	async def create_game(self, auth_user: AuthenticatedUser, room_id: str, category: str) -> schemas.GameDetail:
		room = await self._rooms.get_room(room_id)
		if room is None or not room.active:
			raise policy.GamePolicyError("room_not_found", status_code=404)
		if not room.is_host(auth_user.id):
			raise policy.GamePolicyError("forbidden", status_code=403)
		templates = await self._repo.list_templates(category)
		if not templates:
			raise policy.GamePolicyError("no_templates", status_code=404)
		template = self._rng.choice(templates)
		room_participants = await self._rooms.list_participants(room_id)
		now = datetime.now(timezone.utc)
		game = models.Game(
			id=str(uuid.uuid4()),
			room_id=room_id,
			template_id=template.id,
			host_id=auth_user.id,
			status="waiting",
			created_at=now,
		)
		participants = [
			models.GameParticipant(
				game_id=game.id,
				user_id=p.user_id,
				is_ready=p.user_id == auth_user.id,
				joined_at=p.joined_at,
				username=p.username,
			)
			for p in room_participants
		]
		if not any(p.user_id == auth_user.id for p in participants):
			participants.append(
				models.GameParticipant(
					game_id=game.id,
					user_id=auth_user.id,
					is_ready=True,
					joined_at=now,
					username=auth_user.username,
				)
			)
		await self._repo.create_game(game, participants)
		obs_metrics.inc_game_transition("waiting")
		await outbox.append_game_event(
			"game_created",
			game_id=game.id,
			user_id=auth_user.id,
			meta={"room_id": room_id, "template_id": template.id, "participants": len(participants)},
		)
		logger.info(
			"game_created",
			extra={"game_id": game.id, "room_id": room_id, "category": category, "participants": len(participants)},
		)
		game = await self._start_if_quorum(game.id) or game
		return await self._detail(game, auth_user.id)

	async def mark_ready(self, auth_user: AuthenticatedUser, game_id: str) -> schemas.GameDetail:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		participant = policy.ensure_participant(await self._repo.get_participant(game_id, auth_user.id))
		if participant.is_ready:
			return await self._detail(game, auth_user.id)
		policy.ensure_state(game, "waiting")
		if await self._repo.set_ready(game_id, auth_user.id):
			await outbox.append_game_event("participant_ready", game_id=game_id, user_id=auth_user.id)
		game = await self._start_if_quorum(game_id) or game
		return await self._detail(game, auth_user.id)

	async def decline(self, auth_user: AuthenticatedUser, game_id: str) -> None:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		policy.ensure_not_host(game, auth_user.id)
		policy.ensure_participant(await self._repo.get_participant(game_id, auth_user.id))
		policy.ensure_state(game, "waiting")
		await self._repo.remove_participant(game_id, auth_user.id)
		await outbox.append_game_event("participant_declined", game_id=game_id, user_id=auth_user.id)
		await self._start_if_quorum(game_id)

	async def force_start(
		self,
		auth_user: AuthenticatedUser,
		game_id: str,
		now: Optional[datetime] = None,
	) -> schemas.ForceStartResponse:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		policy.ensure_host(game, auth_user.id)
		policy.ensure_state(game, "waiting")
		policy.ensure_countdown_elapsed(game, now or datetime.now(timezone.utc))
		removed = await self._repo.remove_unready(game_id)
		await outbox.append_game_event(
			"game_force_started",
			game_id=game_id,
			user_id=auth_user.id,
			meta={"removed": len(removed)},
		)
		logger.info("game_force_started", extra={"game_id": game_id, "removed": len(removed)})
		game = await self._start_if_quorum(game_id) or game
		return schemas.ForceStartResponse(removed_user_ids=removed, game=await self._detail(game, auth_user.id))

	async def cancel_game(self, auth_user: AuthenticatedUser, game_id: str) -> schemas.CancelGameResponse:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		policy.ensure_host(game, auth_user.id)
		policy.ensure_state(game, "waiting")
		await self._repo.remove_all_participants(game_id)
		await self._repo.delete_game(game_id)
		obs_metrics.inc_game_transition("canceled")
		await outbox.append_game_event("game_canceled", game_id=game_id, user_id=auth_user.id)
		logger.info("game_canceled", extra={"game_id": game_id, "room_id": game.room_id})
		room = await self._rooms.get_room(game.room_id)
		return schemas.CancelGameResponse(room_code=room.room_code if room else None)

	async def leave_game(self, auth_user: AuthenticatedUser, game_id: str) -> None:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		policy.ensure_participant(await self._repo.get_participant(game_id, auth_user.id))
		policy.ensure_state(game, "waiting", "playing")
		await self._repo.remove_participant(game_id, auth_user.id)
		await outbox.append_game_event(
			"participant_left",
			game_id=game_id,
			user_id=auth_user.id,
			meta={"host": game.is_host(auth_user.id), "status": game.status},
		)
		if game.status == "waiting" and not game.is_host(auth_user.id):
			await self._start_if_quorum(game_id)

	async def submit_word(
		self,
		auth_user: AuthenticatedUser,
		game_id: str,
		position: int,
		word: str,
		word_bank_id: Optional[str] = None,
	) -> schemas.WordSubmissionSummary:
		game = policy.ensure_game(await self._repo.get_game(game_id))
		policy.ensure_state(game, "playing")
		participant = policy.ensure_participant(await self._repo.get_participant(game_id, auth_user.id))
		policy.ensure_position_assigned(participant, position)
		policy.ensure_word_source(word_bank_id)
		if word_bank_id:
			entry = await self._repo.get_word(word_bank_id)
			if entry is None:
				raise policy.GamePolicyError("word_not_found", status_code=404)
		submission = models.WordSubmission(
			game_id=game_id,
			position=position,
			user_id=auth_user.id,
			word=policy.clean_word(word),
			word_bank_id=word_bank_id,
			created_at=datetime.now(timezone.utc),
		)
		if not await self._repo.insert_submission(submission):
			raise policy.GamePolicyError("already_submitted", status_code=409)
		obs_metrics.inc_word_submitted("bank" if word_bank_id else "custom")
		await self._stories.assemble_if_complete(game_id)
		return schemas.WordSubmissionSummary(
			game_id=submission.game_id,
			position=submission.position,
			user_id=submission.user_id,
			word=submission.word,
			word_bank_id=submission.word_bank_id,
			auto_submitted=submission.auto_submitted,
			created_at=submission.created_at,
		)

	# Internals

	async def _start_if_quorum(self, game_id: str) -> Optional[models.Game]:
		"""Allocate positions and start when every remaining participant is ready."""
		game = await self._repo.get_game(game_id)
		if game is None or game.status != "waiting":
			return None
		participants = await self._repo.list_participants(game_id)
		if not participants or not all(p.is_ready for p in participants):
			return None
		template = await self._repo.get_template(game.template_id)
		if template is None:
			raise policy.GamePolicyError("no_templates", status_code=404)
		allocations = allocator.allocate_positions(template.total_positions, [p.user_id for p in participants])
		started = await self._repo.start_game(game_id, allocations, datetime.now(timezone.utc))
		if started is None:
			return None
		obs_metrics.inc_game_transition("playing")
		await outbox.append_game_event(
			"game_started",
			game_id=game_id,
			meta={"players": len(participants), "positions": template.total_positions},
		)
		logger.info(
			"game_started",
			extra={"game_id": game_id, "players": len(participants), "positions": template.total_positions},
		)
		return started

	async def _detail(self, game: models.Game, user_id: str) -> schemas.GameDetail:
		template = await self._repo.get_template(game.template_id)
		participants = await self._repo.list_participants(game.id)
		submissions = await self._repo.list_submissions(game.id) if game.status != "waiting" else []
		return schemas.GameDetail(
			id=game.id,
			room_id=game.room_id,
			template_id=game.template_id,
			host_id=game.host_id,
			status=game.status,
			created_at=game.created_at,
			started_at=game.started_at,
			is_host=game.is_host(user_id),
			template=_template_summary(template) if template else None,
			participants=[_participant_summary(p) for p in participants],
			submitted_positions=[s.position for s in submissions],
		)


def _participant_summary(participant: models.GameParticipant) -> schemas.GameParticipantSummary:
	return schemas.GameParticipantSummary(
		user_id=participant.user_id,
		username=participant.username,
		is_ready=participant.is_ready,
		words_assigned=list(participant.words_assigned),
		joined_at=participant.joined_at,
	)


def _template_summary(template: models.StoryTemplate) -> schemas.TemplateSummary:
	return schemas.TemplateSummary(
		id=template.id,
		category=template.category,
		title=template.title,
		placeholders=[schemas.PlaceholderSchema(position=p.position, type=p.type) for p in template.placeholders],
	)
