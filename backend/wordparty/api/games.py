"""FastAPI routes for games."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from wordparty.domain.games import policy, schemas
from wordparty.domain.games.service import GameService
from wordparty.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/games", tags=["games"])

_game_service = GameService()


def _as_http_error(exc: policy.GamePolicyError) -> HTTPException:
	headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
	return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=headers)


@router.get("/categories", response_model=List[str])
async def categories_endpoint(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[str]:
	return await _game_service.list_categories()


@router.get("/words/suggestions", response_model=List[schemas.WordSuggestion])
async def word_suggestions_endpoint(
	word_type: str = Query(..., alias="type", min_length=1, max_length=32),
	exclude: List[str] = Query(default=[]),
	limit: int = Query(5, ge=1, le=20),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[schemas.WordSuggestion]:
	return await _game_service.suggest_words(word_type, exclude, limit)


@router.post("/create", response_model=schemas.GameDetail, status_code=status.HTTP_201_CREATED)
async def create_game_endpoint(
	payload: schemas.GameCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.GameDetail:
	try:
		return await _game_service.create_game(auth_user, payload.room_id, payload.category)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{game_id}", response_model=schemas.GameDetail)
async def get_game_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.GameDetail:
	try:
		return await _game_service.get_game(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{game_id}/participants", response_model=List[schemas.GameParticipantSummary])
async def participants_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[schemas.GameParticipantSummary]:
	try:
		return await _game_service.list_participants(game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{game_id}/ready", response_model=schemas.GameDetail)
async def ready_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.GameDetail:
	try:
		return await _game_service.mark_ready(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{game_id}/decline")
async def decline_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		await _game_service.decline(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}


@router.post("/{game_id}/force-start", response_model=schemas.ForceStartResponse)
async def force_start_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ForceStartResponse:
	try:
		return await _game_service.force_start(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{game_id}/cancel", response_model=schemas.CancelGameResponse)
async def cancel_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CancelGameResponse:
	try:
		return await _game_service.cancel_game(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{game_id}/leave")
async def leave_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		await _game_service.leave_game(auth_user, game_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}


@router.post("/{game_id}/words", response_model=schemas.WordSubmissionSummary, status_code=status.HTTP_201_CREATED)
async def submit_word_endpoint(
	game_id: str,
	payload: schemas.WordSubmitRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.WordSubmissionSummary:
	try:
		return await _game_service.submit_word(auth_user, game_id, payload.position, payload.word, payload.word_bank_id)
	except policy.GamePolicyError as exc:
		raise _as_http_error(exc) from exc
