"""Server-side illustration generation for completed stories."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from wordparty.domain.illustrations.generator import HttpImageGenerator, ImageGenerator, build_prompt
from wordparty.domain.stories.service import StoryNotFound, StoryService
from wordparty.infra.object_store import LocalObjectStore, image_key
from wordparty.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class IllustrationServiceError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400) -> None:
		super().__init__(code)
		self.code = code
		self.status_code = status_code


@dataclass(slots=True)
class IllustrationOutcome:
	image_urls: List[str] = field(default_factory=list)
	skipped: bool = False
	message: Optional[str] = None

	def to_payload(self) -> dict:
		return {
			"success": True,
			"image_urls": list(self.image_urls),
			"image_url": self.image_urls[0] if self.image_urls else None,
			"message": self.message,
		}


class IllustrationService:
	def __init__(
		self,
		stories: StoryService | None = None,
		store: LocalObjectStore | None = None,
		generator: ImageGenerator | None = None,
	) -> None:
		self._stories = stories or StoryService()
		self._store = store or LocalObjectStore()
		self._generator = generator or HttpImageGenerator()

	async def generate(self, game_id: str, story_text: str) -> IllustrationOutcome:
		if not game_id or not story_text:
			raise IllustrationServiceError("missing_game_or_story", status_code=400)
		story = await self._load(game_id)
		if story.images_generated:
			logger.info("illustration_already_generated", extra={"game_id": game_id})
			obs_metrics.inc_illustration("skipped")
			return IllustrationOutcome(image_urls=story.image_urls, skipped=True, message="Images already generated")

		key = image_key(game_id)
		if await self._store.exists(key):
			logger.info("illustration_object_exists", extra={"game_id": game_id})
			return await self._persist(game_id, [self._store.public_url(key)], "Image already exists in storage")

		started = time.perf_counter()
		image = await self._generator.generate(build_prompt(story_text))
		obs_metrics.observe_illustration_latency(time.perf_counter() - started)

		story = await self._load(game_id)
		if story.images_generated:
			obs_metrics.inc_illustration("skipped")
			return IllustrationOutcome(image_urls=story.image_urls, skipped=True, message="Images already generated")
		url = await self._store.upload(key, image, content_type="image/png", upsert=True)
		return await self._persist(game_id, [url], None)

	async def _load(self, game_id: str):
		try:
			return await self._stories.get_completed_story(game_id)
		except StoryNotFound as exc:
			raise IllustrationServiceError("story_not_found", status_code=404) from exc

	async def _persist(self, game_id: str, urls: List[str], message: Optional[str]) -> IllustrationOutcome:
		if await self._stories.mark_images_generated(game_id, urls):
			obs_metrics.inc_illustration("generated")
			logger.info("illustration_stored", extra={"game_id": game_id, "images": len(urls)})
			return IllustrationOutcome(image_urls=urls, message=message)
		# Another writer landed first; report what it stored.
		story = await self._load(game_id)
		obs_metrics.inc_illustration("skipped")
		return IllustrationOutcome(image_urls=story.image_urls, skipped=True, message="Images already generated")
