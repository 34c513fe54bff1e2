"""FastAPI routes for completed stories."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from wordparty.domain.stories import schemas
from wordparty.domain.stories.service import StoryNotFound, StoryService, to_schema
from wordparty.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/stories", tags=["stories"])

_story_service = StoryService()


@router.get("/history", response_model=List[schemas.StoryHistoryItem])
async def history_endpoint(
	limit: int = Query(50, ge=1, le=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[schemas.StoryHistoryItem]:
	return await _story_service.history(auth_user, limit=limit)


@router.get("/{game_id}", response_model=schemas.CompletedStorySchema)
async def story_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CompletedStorySchema:
	try:
		story = await _story_service.get_completed_story(game_id)
	except StoryNotFound as exc:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="story_not_found") from exc
	return to_schema(story)
