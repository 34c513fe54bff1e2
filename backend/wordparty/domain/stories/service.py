"""Completed stories: assembly, reads and the image flag."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import asyncpg

from wordparty.domain.common.normalize import json_list, single_related
from wordparty.domain.games.repository import GameRepository
from wordparty.domain.stories import assembly, models, schemas
from wordparty.infra import postgres
from wordparty.infra.auth import AuthenticatedUser
from wordparty.infra.changefeed import change_feed
from wordparty.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class StoryNotFound(LookupError):
	pass


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.stories: Dict[str, models.CompletedStory] = {}

	async def insert(self, story: models.CompletedStory) -> bool:
		async with self._lock:
			if story.game_id in self.stories:
				return False
			self.stories[story.game_id] = replace(story, image_urls=list(story.image_urls))
			return True

	async def get(self, game_id: str) -> Optional[models.CompletedStory]:
		async with self._lock:
			story = self.stories.get(game_id)
			return replace(story, image_urls=list(story.image_urls)) if story else None

	async def list_for_games(self, game_ids: Sequence[str]) -> List[models.CompletedStory]:
		async with self._lock:
			return [replace(self.stories[g]) for g in game_ids if g in self.stories]

	async def mark_images_generated(self, game_id: str, image_urls: List[str]) -> Optional[models.CompletedStory]:
		async with self._lock:
			story = self.stories.get(game_id)
			if story is None or story.images_generated:
				return None
			story.images_generated = True
			story.image_urls = list(image_urls)
			return replace(story, image_urls=list(image_urls))


_MEMORY = _MemoryStore()


def reset_memory_state() -> None:
	global _MEMORY
	_MEMORY = _MemoryStore()


class StoryRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		self._pool_instance = await postgres.pool_or_none()
		return self._pool_instance

	async def insert(self, story: models.CompletedStory) -> bool:
		"""Insert once per game. False when the story already exists."""
		pool = await self._get_pool()
		if pool is None:
			inserted = await _MEMORY.insert(story)
		else:
			async with pool.acquire() as conn:
				status = await conn.execute(
					"""
					INSERT INTO completed_stories (game_id, story_text, title, images_generated, image_urls, created_at)
					VALUES ($1,$2,$3,FALSE,'{}',$4)
					ON CONFLICT (game_id) DO NOTHING
					""",
					story.game_id,
					story.story_text,
					story.title,
					story.created_at,
				)
				inserted = status.endswith(" 1")
		if inserted:
			change_feed.publish("completed_stories", "INSERT", new=story.to_row())
		return inserted

	async def get(self, game_id: str) -> Optional[models.CompletedStory]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get(game_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_STORY_COLUMNS} FROM completed_stories cs WHERE cs.game_id=$1", game_id)
			return _row_to_story(row) if row else None

	async def list_for_games(self, game_ids: Sequence[str]) -> List[models.CompletedStory]:
		if not game_ids:
			return []
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_for_games(game_ids)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"SELECT {_STORY_COLUMNS} FROM completed_stories cs WHERE cs.game_id = ANY($1::text[])",
				list(game_ids),
			)
			return [_row_to_story(row) for row in rows]

	async def mark_images_generated(self, game_id: str, image_urls: List[str]) -> Optional[models.CompletedStory]:
		"""Set the image fields unless another writer already did. None when nothing changed."""
		pool = await self._get_pool()
		if pool is None:
			story = await _MEMORY.mark_images_generated(game_id, image_urls)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE completed_stories cs SET images_generated = TRUE, image_urls = $2
					WHERE cs.game_id = $1 AND cs.images_generated = FALSE
					RETURNING cs.game_id, cs.story_text, cs.title, cs.images_generated, cs.image_urls, cs.created_at
					""",
					game_id,
					list(image_urls),
				)
				story = _row_to_story(row) if row else None
		if story is not None:
			change_feed.publish("completed_stories", "UPDATE", new=story.to_row())
		return story


_STORY_COLUMNS = """
	cs.game_id, cs.story_text, cs.title, cs.images_generated, cs.image_urls, cs.created_at,
	(
		SELECT json_agg(json_build_object('category', t.category))
		FROM games g JOIN story_templates t ON t.id = g.template_id
		WHERE g.id = cs.game_id
	) AS template
"""


def _row_to_story(row: asyncpg.Record) -> models.CompletedStory:
	template = single_related(row.get("template"))
	return models.CompletedStory(
		game_id=str(row["game_id"]),
		story_text=row["story_text"],
		title=row["title"],
		images_generated=bool(row["images_generated"]),
		image_urls=[str(url) for url in json_list(row["image_urls"])],
		created_at=row["created_at"],
		category=template.get("category") if template else None,
	)


class StoryService:
	def __init__(
		self,
		repository: StoryRepository | None = None,
		games: GameRepository | None = None,
	) -> None:
		self._repo = repository or StoryRepository()
		self._games = games or GameRepository()

	async def assemble_if_complete(self, game_id: str) -> Optional[models.CompletedStory]:
		"""Build the story once every placeholder has a word, then finish the game."""
		game = await self._games.get_game(game_id)
		if game is None or game.status not in ("playing", "finished"):
			return None
		template = await self._games.get_template(game.template_id)
		if template is None:
			logger.warning("story_template_missing", extra={"game_id": game_id, "template_id": game.template_id})
			return None
		submissions = await self._games.list_submissions(game_id)
		if len(submissions) < template.total_positions:
			return None
		words = {s.position: s.word for s in submissions}
		story = models.CompletedStory(
			game_id=game_id,
			story_text=assembly.assemble_story(template.body, words),
			title=template.title,
			category=template.category,
			created_at=datetime.now(timezone.utc),
		)
		if await self._repo.insert(story):
			logger.info("story_assembled", extra={"game_id": game_id, "positions": template.total_positions})
		if await self._games.transition(game_id, "playing", "finished") is not None:
			obs_metrics.inc_game_transition("finished")
		return await self._repo.get(game_id)

	async def get_completed_story(self, game_id: str) -> models.CompletedStory:
		story = await self._repo.get(game_id)
		if story is None:
			raise StoryNotFound(game_id)
		if story.category is None:
			game = await self._games.get_game(game_id)
			template = await self._games.get_template(game.template_id) if game else None
			story.category = template.category if template else None
		return story

	async def mark_images_generated(self, game_id: str, image_urls: List[str]) -> bool:
		return await self._repo.mark_images_generated(game_id, image_urls) is not None

	async def history(self, auth_user: AuthenticatedUser, *, limit: int = 50) -> List[schemas.StoryHistoryItem]:
		games = await self._games.list_games_for_user(auth_user.id)
		finished = [g.id for g in games if g.status == "finished"]
		stories = await self._repo.list_for_games(finished)
		stories.sort(key=lambda s: s.created_at, reverse=True)
		return [
			schemas.StoryHistoryItem(
				game_id=s.game_id,
				title=s.title,
				category=s.category,
				excerpt=assembly.excerpt(s.story_text),
				image_url=s.image_urls[0] if s.image_urls else None,
				created_at=s.created_at,
			)
			for s in stories[:limit]
		]


def to_schema(story: models.CompletedStory) -> schemas.CompletedStorySchema:
	return schemas.CompletedStorySchema(
		game_id=story.game_id,
		story_text=story.story_text,
		title=story.title,
		category=story.category,
		images_generated=story.images_generated,
		image_urls=list(story.image_urls),
		created_at=story.created_at,
	)
