"""Client-side illustration requester.

Asks the generation function for a story illustration with bounded retries and
exponential backoff, at most one in-flight request per game, a persistent
"already attempted" flag and a cooldown on manual retries. The idempotency
guard (`images_generated` on the completed story) is checked before every
attempt so a story illustrated by someone else is never requested again.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

import httpx

from wordparty.client.local_state import ClientStateStore
from wordparty.settings import settings

logger = logging.getLogger(__name__)

AUTH = "auth"
TIMEOUT = "timeout"
SERVER = "server"
GENERIC = "generic"

_MESSAGES = {
	AUTH: "Your session has expired. Please sign in again.",
	TIMEOUT: "Generating the illustration took too long. Please try again.",
	SERVER: "The illustration service had a problem. Please try again later.",
	GENERIC: "Could not generate the illustration.",
}


class StorySource(Protocol):
	async def get_completed_story(self, game_id: str) -> Optional[Mapping[str, Any]]:
		...


TokenProvider = Callable[[], Awaitable[Optional[str]]]


class IllustrationError(RuntimeError):
	"""Generation failed after all attempts (or could not be attempted)."""

	def __init__(self, category: str, message: str | None = None, *, attempts: int = 0) -> None:
		super().__init__(message or _MESSAGES.get(category, _MESSAGES[GENERIC]))
		self.category = category
		self.message = str(self)
		self.attempts = attempts


class CooldownError(RuntimeError):
	def __init__(self, remaining_seconds: int) -> None:
		super().__init__(f"Please wait {remaining_seconds} seconds before retrying.")
		self.remaining_seconds = remaining_seconds


class _AttemptFailed(Exception):
	def __init__(self, category: str, detail: str) -> None:
		super().__init__(detail)
		self.category = category


@dataclass(slots=True)
class IllustrationResult:
	image_urls: List[str] = field(default_factory=list)
	retry_attempt: int = 0
	skipped: bool = False

	@property
	def pending(self) -> bool:
		"""Skipped without images: another session's request is still running."""
		return self.skipped and not self.image_urls


def classify_status(status_code: int) -> str:
	if status_code in (401, 403):
		return AUTH
	if status_code in (408, 504):
		return TIMEOUT
	if status_code >= 500:
		return SERVER
	return GENERIC


def backoff_seconds(attempt: int, base_ms: int | None = None) -> float:
	"""Delay after failed attempt `attempt` (1-based): 2s, 4s, 8s..."""
	base = settings.image_backoff_base_ms if base_ms is None else base_ms
	return (2 ** (attempt - 1)) * base / 1000.0


class IllustrationRequester:
	def __init__(
		self,
		stories: StorySource,
		*,
		token_provider: TokenProvider | None = None,
		state: ClientStateStore | None = None,
		function_url: str | None = None,
		transport: httpx.AsyncBaseTransport | None = None,
		max_attempts: int | None = None,
		timeout_seconds: float | None = None,
		backoff_base_ms: int | None = None,
		cooldown_seconds: int | None = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._stories = stories
		self._token_provider = token_provider
		self._state = state or ClientStateStore()
		self._url = function_url or settings.image_function_url
		self._max_attempts = max_attempts or settings.image_max_attempts
		self._timeout = timeout_seconds or settings.image_request_timeout_seconds
		self._backoff_base_ms = settings.image_backoff_base_ms if backoff_base_ms is None else backoff_base_ms
		self._cooldown = settings.manual_retry_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
		self._sleep = sleep
		self._clock = clock
		self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=transport)
		self._inflight: Dict[str, asyncio.Task[IllustrationResult]] = {}

	def in_progress(self, game_id: str) -> bool:
		task = self._inflight.get(game_id)
		return task is not None and not task.done()

	async def ensure_illustration(self, game_id: str, story_text: str) -> IllustrationResult:
		task = self._inflight.get(game_id)
		if task is None or task.done():
			task = asyncio.create_task(self._run(game_id, story_text), name=f"illustration:{game_id}")
			self._inflight[game_id] = task
			task.add_done_callback(lambda t, key=game_id: self._forget(key, t))
		return await asyncio.shield(task)

	async def retry_manually(self, game_id: str, story_text: str, now: float | None = None) -> IllustrationResult:
		now = self._clock() if now is None else now
		last = self._state.last_manual_retry(game_id)
		if last is not None and now - last < self._cooldown:
			remaining = math.ceil(self._cooldown - (now - last))
			logger.info("illustration_retry_cooldown", extra={"game_id": game_id, "remaining_seconds": remaining})
			raise CooldownError(remaining)
		if self.in_progress(game_id):
			return await self.ensure_illustration(game_id, story_text)
		self._state.record_manual_retry(game_id, now)
		self._state.clear_attempted(game_id)
		return await self.ensure_illustration(game_id, story_text)

	async def cancel(self, game_id: str) -> None:
		task = self._inflight.pop(game_id, None)
		if task is None or task.done():
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass
		logger.info("illustration_request_cancelled", extra={"game_id": game_id})

	async def aclose(self) -> None:
		for game_id in list(self._inflight):
			await self.cancel(game_id)
		await self._http.aclose()

	def _forget(self, game_id: str, task: asyncio.Task) -> None:
		if self._inflight.get(game_id) is task:
			self._inflight.pop(game_id, None)

	async def _existing(self, game_id: str) -> Optional[IllustrationResult]:
		story = await self._stories.get_completed_story(game_id)
		if story and story.get("images_generated"):
			return IllustrationResult(image_urls=list(story.get("image_urls") or []), skipped=True)
		return None

	async def _run(self, game_id: str, story_text: str) -> IllustrationResult:
		existing = await self._existing(game_id)
		if existing is not None:
			return existing
		if self._state.was_attempted(game_id):
			failed = self._state.failure(game_id)
			if failed is not None:
				logger.info("illustration_previously_failed", extra={"game_id": game_id, "category": failed})
				raise IllustrationError(failed)
			logger.info("illustration_already_attempted", extra={"game_id": game_id})
			return IllustrationResult(skipped=True)
		self._state.mark_attempted(game_id)
		try:
			return await self._attempts(game_id, story_text)
		except asyncio.CancelledError:
			# nothing is running for this game any more
			self._state.clear_attempted(game_id)
			raise
		except IllustrationError as exc:
			self._state.record_failure(game_id, exc.category)
			raise

	async def _attempts(self, game_id: str, story_text: str) -> IllustrationResult:
		attempt = 1
		while True:
			try:
				urls = await asyncio.wait_for(self._call(game_id, story_text), timeout=self._timeout)
			except asyncio.TimeoutError:
				failure = _AttemptFailed(TIMEOUT, "request timed out")
			except _AttemptFailed as exc:
				failure = exc
			else:
				logger.info("illustration_generated", extra={"game_id": game_id, "attempt": attempt})
				return IllustrationResult(image_urls=urls, retry_attempt=attempt)
			logger.warning(
				"illustration_attempt_failed",
				extra={"game_id": game_id, "attempt": attempt, "category": failure.category, "detail": str(failure)},
			)
			if failure.category == AUTH or attempt >= self._max_attempts:
				logger.error(
					"illustration_failed",
					extra={"game_id": game_id, "attempts": attempt, "category": failure.category},
				)
				raise IllustrationError(failure.category, attempts=attempt)
			await self._sleep(backoff_seconds(attempt, self._backoff_base_ms))
			attempt += 1
			existing = await self._existing(game_id)
			if existing is not None:
				return existing

	async def _call(self, game_id: str, story_text: str) -> List[str]:
		token = await self._token_provider() if self._token_provider else None
		if not token:
			raise _AttemptFailed(AUTH, "no session")
		try:
			response = await self._http.post(
				self._url,
				json={"gameId": game_id, "storyText": story_text},
				headers={"Authorization": f"Bearer {token}"},
			)
		except httpx.TimeoutException as exc:
			raise _AttemptFailed(TIMEOUT, "request timed out") from exc
		except httpx.HTTPError as exc:
			raise _AttemptFailed(GENERIC, str(exc) or type(exc).__name__) from exc
		if response.status_code >= 400:
			raise _AttemptFailed(classify_status(response.status_code), response.text[:200])
		try:
			payload = response.json()
		except ValueError as exc:
			raise _AttemptFailed(GENERIC, "invalid response body") from exc
		urls = payload.get("image_urls") or [u for u in (payload.get("image_url") or payload.get("imageUrl"),) if u]
		if not payload.get("success") or not urls:
			raise _AttemptFailed(GENERIC, str(payload.get("error") or "no image returned"))
		return [str(u) for u in urls]
