"""Live views for the game screens.

Each view is an async context manager. Entering it subscribes and fetches;
leaving it closes every subscription and timer it owns (and, for the story
view, aborts any illustration request still in flight).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from wordparty.client.live import ChangeSource, Closeable, LiveView, Watch
from wordparty.client.requester import CooldownError, IllustrationError, IllustrationRequester, IllustrationResult
from wordparty.infra.changefeed import ChangeEvent
from wordparty.settings import settings

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class GameApi(Protocol):
	async def get_game(self, game_id: str) -> Optional[Mapping[str, Any]]:
		...

	async def list_game_participants(self, game_id: str) -> List[Mapping[str, Any]]:
		...

	async def get_completed_story(self, game_id: str) -> Optional[Mapping[str, Any]]:
		...


async def _call(callback: Optional[Callback], *args: Any) -> None:
	if callback is None:
		return
	result = callback(*args)
	if inspect.isawaitable(result):
		await result


@dataclass(slots=True)
class ReadyState:
	status: Optional[str]
	participants: List[Mapping[str, Any]] = field(default_factory=list)

	@property
	def canceled(self) -> bool:
		return self.status is None or self.status == "canceled"

	@property
	def ready_count(self) -> int:
		return sum(1 for p in self.participants if p.get("is_ready"))


class ReadyCheckView:
	"""Ready-check screen: participants, their ready flags and the game status."""

	def __init__(
		self,
		api: GameApi,
		source: ChangeSource,
		game_id: str,
		*,
		on_update: Optional[Callback] = None,
		on_started: Optional[Callback] = None,
		on_canceled: Optional[Callback] = None,
		poll_interval: Optional[float] = None,
	) -> None:
		self._api = api
		self.game_id = game_id
		self.state = ReadyState(status="waiting")
		self._on_update = on_update
		self._on_started = on_started
		self._on_canceled = on_canceled
		self._finished = False
		self._live: LiveView[ReadyState] = LiveView(
			source,
			fetch=self._fetch,
			apply=self._apply,
			watches=[
				Watch("games", filters={"id": game_id}),
				Watch("game_participants", filters={"game_id": game_id}),
			],
			poll_interval=poll_interval or settings.ready_poll_interval_seconds,
			while_=lambda: self.state.status == "waiting",
			name=f"ready:{game_id}",
		)

	@property
	def live(self) -> LiveView[ReadyState]:
		return self._live

	async def __aenter__(self) -> "ReadyCheckView":
		await self._live.__aenter__()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self._live.close()

	async def _fetch(self) -> ReadyState:
		game = await self._api.get_game(self.game_id)
		if game is None:
			return ReadyState(status=None)
		participants = await self._api.list_game_participants(self.game_id)
		return ReadyState(status=game.get("status"), participants=list(participants))

	async def _apply(self, state: ReadyState) -> None:
		self.state = state
		await _call(self._on_update, state)
		if self._finished:
			return
		if state.canceled:
			self._finished = True
			await _call(self._on_canceled)
		elif state.status in ("playing", "finished"):
			self._finished = True
			await _call(self._on_started)


@dataclass(slots=True)
class SubmissionState:
	status: Optional[str]
	assigned: List[int] = field(default_factory=list)
	submitted: List[int] = field(default_factory=list)

	@property
	def done(self) -> bool:
		return all(position in self.submitted for position in self.assigned)


class WordSubmissionView:
	"""Word entry screen. Once the player's words are in, polls until the story is finished."""

	def __init__(
		self,
		api: GameApi,
		source: ChangeSource,
		game_id: str,
		user_id: str,
		*,
		on_update: Optional[Callback] = None,
		on_finished: Optional[Callback] = None,
		poll_interval: Optional[float] = None,
	) -> None:
		self._api = api
		self.game_id = game_id
		self.user_id = user_id
		self.state = SubmissionState(status="playing")
		self._on_update = on_update
		self._on_finished = on_finished
		self._notified = False
		self._live: LiveView[SubmissionState] = LiveView(
			source,
			fetch=self._fetch,
			apply=self._apply,
			watches=[Watch("games", event="UPDATE", filters={"id": game_id})],
			poll_interval=poll_interval or settings.ready_poll_interval_seconds,
			while_=lambda: self.state.status == "playing" and self.state.done,
			name=f"words:{game_id}",
		)

	@property
	def live(self) -> LiveView[SubmissionState]:
		return self._live

	async def __aenter__(self) -> "WordSubmissionView":
		await self._live.__aenter__()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self._live.close()

	async def mark_submitted(self, position: int) -> None:
		"""Record a local submission and re-check whether to start waiting."""
		if position not in self.state.submitted:
			self.state.submitted.append(position)
		self._live.resume_polling()

	async def _fetch(self) -> SubmissionState:
		game = await self._api.get_game(self.game_id)
		if game is None:
			return SubmissionState(status=None)
		assigned: List[int] = []
		for participant in game.get("participants") or []:
			if participant.get("user_id") == self.user_id:
				assigned = [int(p) for p in participant.get("words_assigned") or []]
		submitted = [int(p) for p in game.get("submitted_positions") or [] if int(p) in assigned]
		return SubmissionState(status=game.get("status"), assigned=assigned, submitted=submitted)

	async def _apply(self, state: SubmissionState) -> None:
		self.state = state
		await _call(self._on_update, state)
		if state.status == "finished" and not self._notified:
			self._notified = True
			await _call(self._on_finished)


@dataclass(slots=True)
class StoryState:
	story: Optional[Dict[str, Any]] = None
	generating: bool = False
	error: Optional[IllustrationError] = None

	@property
	def image_urls(self) -> List[str]:
		if not self.story:
			return []
		return list(self.story.get("image_urls") or [])

	@property
	def images_ready(self) -> bool:
		return bool(self.story and self.story.get("images_generated"))


class CompletedStoryView:
	"""Finished story screen. Requests the illustration and waits for it to land."""

	def __init__(
		self,
		api: GameApi,
		source: ChangeSource,
		requester: IllustrationRequester,
		game_id: str,
		*,
		on_update: Optional[Callback] = None,
		poll_interval: Optional[float] = None,
	) -> None:
		self._api = api
		self._requester = requester
		self.game_id = game_id
		self.state = StoryState()
		self._on_update = on_update
		self._generation: Optional[asyncio.Task] = None
		self._live: LiveView[Optional[Dict[str, Any]]] = LiveView(
			source,
			fetch=self._fetch,
			apply=self._apply,
			watches=[Watch("completed_stories", event="UPDATE", filters={"game_id": game_id})],
			poll_interval=poll_interval or settings.story_poll_interval_seconds,
			while_=lambda: self.state.generating,
			name=f"story:{game_id}",
		)

	@property
	def live(self) -> LiveView[Optional[Dict[str, Any]]]:
		return self._live

	async def __aenter__(self) -> "CompletedStoryView":
		await self._live.__aenter__()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self._live.close()
		task, self._generation = self._generation, None
		if task is not None and not task.done():
			await self._requester.cancel(self.game_id)
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass

	async def wait_for_generation(self) -> None:
		if self._generation is not None:
			await asyncio.shield(self._generation)

	async def retry(self, now: Optional[float] = None) -> None:
		"""Manual retry. Raises `CooldownError` inside the cooldown window."""
		story = self.state.story
		if not story or self.state.images_ready:
			return
		self.state.error = None
		self.state.generating = True
		self._live.resume_polling()
		try:
			result = await self._requester.retry_manually(self.game_id, story["story_text"], now=now)
		except CooldownError:
			self.state.generating = False
			raise
		except IllustrationError as exc:
			self.state.error = exc
			self.state.generating = False
			return
		await self._after_result(result)

	async def _fetch(self) -> Optional[Dict[str, Any]]:
		story = await self._api.get_completed_story(self.game_id)
		return dict(story) if story is not None else None

	async def _apply(self, story: Optional[Dict[str, Any]]) -> None:
		self.state.story = story
		if story is None:
			self.state.generating = False
		elif story.get("images_generated"):
			self.state.generating = False
			self.state.error = None
		elif self._generation is None and self.state.error is None:
			self.state.generating = True
			self._generation = asyncio.create_task(self._generate(story["story_text"]), name=f"story:{self.game_id}:generate")
		await _call(self._on_update, self.state)

	async def _generate(self, story_text: str) -> None:
		try:
			result = await self._requester.ensure_illustration(self.game_id, story_text)
		except IllustrationError as exc:
			logger.warning("story_illustration_failed", extra={"game_id": self.game_id, "category": exc.category})
			self.state.error = exc
			self.state.generating = False
			await _call(self._on_update, self.state)
			return
		await self._after_result(result)

	async def _after_result(self, result: IllustrationResult) -> None:
		if result.pending:
			# Another session is generating; keep polling until the story flips.
			self.state.generating = True
			self._live.resume_polling()
			return
		await self._live.refresh()


class HostDepartureWatcher:
	"""Fires once when the host's participant row is deleted from the game."""

	def __init__(
		self,
		source: ChangeSource,
		game_id: str,
		host_id: str,
		on_host_left: Callback,
	) -> None:
		self._source = source
		self.game_id = game_id
		self.host_id = host_id
		self._on_host_left = on_host_left
		self._subscription: Optional[Closeable] = None
		self.fired = False

	async def __aenter__(self) -> "HostDepartureWatcher":
		self._subscription = self._source.subscribe(
			"game_participants",
			self._handle,
			event="DELETE",
			filters={"game_id": self.game_id},
		)
		return self

	async def __aexit__(self, *exc_info) -> None:
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			await subscription.close()

	async def _handle(self, change: ChangeEvent) -> None:
		old = change.old or {}
		if self.fired or str(old.get("user_id")) != self.host_id:
			return
		self.fired = True
		await _call(self._on_host_left, self.game_id)


class GameInvitationWatcher:
	"""Notifies a user when they are added to a game someone else is hosting."""

	def __init__(
		self,
		api: GameApi,
		source: ChangeSource,
		user_id: str,
		on_invited: Callback,
	) -> None:
		self._api = api
		self._source = source
		self.user_id = user_id
		self._on_invited = on_invited
		self._subscription: Optional[Closeable] = None
		self._seen: set[str] = set()

	async def __aenter__(self) -> "GameInvitationWatcher":
		self._subscription = self._source.subscribe(
			"game_participants",
			self._handle,
			event="INSERT",
			filters={"user_id": self.user_id},
		)
		return self

	async def __aexit__(self, *exc_info) -> None:
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			await subscription.close()

	async def _handle(self, change: ChangeEvent) -> None:
		game_id = str((change.new or {}).get("game_id") or "")
		if not game_id or game_id in self._seen:
			return
		self._seen.add(game_id)
		game = await self._api.get_game(game_id)
		if game is None or game.get("status") != "waiting" or game.get("host_id") == self.user_id:
			return
		await _call(self._on_invited, game)
