"""Server-side functions invoked by clients (illustration generation)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from wordparty.api.request_id import get_request_id
from wordparty.domain.illustrations.generator import ImageGenerationError
from wordparty.domain.illustrations.service import IllustrationService, IllustrationServiceError
from wordparty.infra.auth import AuthenticatedUser, get_current_user
from wordparty.infra.object_store import ObjectStoreError
from wordparty.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["functions"])

_illustrations: IllustrationService | None = None


def get_illustration_service() -> IllustrationService:
	global _illustrations
	if _illustrations is None:
		_illustrations = IllustrationService()
	return _illustrations


class GenerateStoryImagesRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	game_id: str = Field("", alias="gameId")
	story_text: str = Field("", alias="storyText")


def _error(status_code: int, code: str) -> JSONResponse:
	return JSONResponse(status_code=status_code, content={"error": code, "request_id": get_request_id()})


@router.post("/generate-story-images")
async def generate_story_images_endpoint(
	payload: GenerateStoryImagesRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: IllustrationService = Depends(get_illustration_service),
) -> JSONResponse:
	if not payload.game_id or not payload.story_text:
		return _error(400, "Missing gameId or storyText")
	try:
		outcome = await service.generate(payload.game_id, payload.story_text)
	except IllustrationServiceError as exc:
		return _error(exc.status_code, exc.code)
	except ImageGenerationError as exc:
		obs_metrics.inc_illustration("failed")
		logger.warning("illustration_generation_failed", extra={"game_id": payload.game_id, "code": exc.code})
		return _error(exc.status_code, exc.code)
	except ObjectStoreError as exc:
		obs_metrics.inc_illustration("failed")
		logger.error("illustration_upload_failed", extra={"game_id": payload.game_id, "code": str(exc)})
		return _error(500, str(exc))
	return JSONResponse(status_code=200, content=outcome.to_payload())
