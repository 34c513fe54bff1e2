"""Policy and guard helpers for games."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from wordparty.domain.games import models
from wordparty.settings import settings


class GamePolicyError(RuntimeError):
	def __init__(
		self,
		code: str,
		*,
		status_code: int = 400,
		message: str | None = None,
		retry_after: int | None = None,
	) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code
		self.retry_after = retry_after


def ensure_game(game: Optional[models.Game]) -> models.Game:
	if game is None:
		raise GamePolicyError("game_not_found", status_code=404)
	return game


def ensure_host(game: models.Game, user_id: str) -> None:
	if not game.is_host(user_id):
		raise GamePolicyError("forbidden", status_code=403)


def ensure_not_host(game: models.Game, user_id: str) -> None:
	if game.is_host(user_id):
		raise GamePolicyError("forbidden", status_code=403, message="host_cannot_decline")


def ensure_state(game: models.Game, *states: str) -> None:
	if game.status not in states:
		raise GamePolicyError("invalid_state", status_code=409)


def ensure_participant(participant: Optional[models.GameParticipant]) -> models.GameParticipant:
	if participant is None:
		raise GamePolicyError("not_participant", status_code=403)
	return participant


def ensure_countdown_elapsed(game: models.Game, now: datetime) -> None:
	deadline = game.created_at + timedelta(seconds=settings.force_start_countdown_seconds)
	if now < deadline:
		remaining = math.ceil((deadline - now).total_seconds())
		raise GamePolicyError("countdown_active", status_code=409, retry_after=remaining)


def ensure_position_assigned(participant: models.GameParticipant, position: int) -> None:
	if position not in participant.words_assigned:
		raise GamePolicyError("position_not_assigned", status_code=403)


def ensure_word_source(word_bank_id: Optional[str]) -> None:
	if not settings.enable_custom_words and not word_bank_id:
		raise GamePolicyError("custom_words_disabled", status_code=422)


def clean_word(word: str) -> str:
	cleaned = (word or "").strip()
	if not cleaned:
		raise GamePolicyError("word_empty", status_code=422)
	if len(cleaned) > settings.max_word_length:
		raise GamePolicyError("word_too_long", status_code=422)
	return cleaned
