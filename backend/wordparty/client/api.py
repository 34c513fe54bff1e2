"""Async HTTP client for the Word Party API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from wordparty.domain.common.normalize import related_field, single_related

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
	def __init__(self, status_code: int, code: str) -> None:
		super().__init__(f"{status_code}: {code}")
		self.status_code = status_code
		self.code = code


def _normalise_story(payload: Dict[str, Any]) -> Dict[str, Any]:
	"""Flatten a story payload so `title` and `category` are always top-level."""
	story = dict(payload)
	game = single_related(story.pop("game", None))
	if game is not None:
		story.setdefault("title", related_field(game.get("template"), "title"))
		story.setdefault("category", related_field(game.get("template"), "category"))
	story["image_urls"] = list(story.get("image_urls") or [])
	story["images_generated"] = bool(story.get("images_generated"))
	return story


class WordPartyClient:
	def __init__(
		self,
		base_url: str,
		*,
		token: Optional[str] = None,
		user_id: Optional[str] = None,
		username: Optional[str] = None,
		transport: httpx.AsyncBaseTransport | None = None,
		timeout: float = 10.0,
	) -> None:
		headers: Dict[str, str] = {}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		elif user_id:
			headers["X-User-Id"] = user_id
			if username:
				headers["X-Username"] = username
		self._token = token
		self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

	async def access_token(self) -> Optional[str]:
		return self._token

	async def aclose(self) -> None:
		await self._client.aclose()

	async def __aenter__(self) -> "WordPartyClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
		response = await self._client.request(method, path, **kwargs)
		if response.status_code >= 400:
			try:
				detail = response.json().get("detail")
			except ValueError:
				detail = None
			code = detail if isinstance(detail, str) else response.reason_phrase
			raise ApiError(response.status_code, code)
		if response.status_code == 204 or not response.content:
			return None
		return response.json()

	# Rooms

	async def create_room(self) -> Dict[str, Any]:
		return await self._request("POST", "/rooms/create")

	async def join_room(self, room_code: str) -> Dict[str, Any]:
		return await self._request("POST", "/rooms/join/by-code", json={"room_code": room_code.strip().upper()})

	async def get_room_by_code(self, room_code: str) -> Dict[str, Any]:
		return await self._request("GET", f"/rooms/code/{room_code}")

	async def leave_room(self, room_id: str) -> None:
		await self._request("POST", f"/rooms/{room_id}/leave")

	async def my_rooms(self) -> List[Dict[str, Any]]:
		return await self._request("GET", "/rooms/my")

	# Games

	async def list_categories(self) -> List[str]:
		return await self._request("GET", "/games/categories")

	async def create_game(self, room_id: str, category: str) -> Dict[str, Any]:
		return await self._request("POST", "/games/create", json={"room_id": room_id, "category": category})

	async def get_game(self, game_id: str) -> Optional[Dict[str, Any]]:
		try:
			return await self._request("GET", f"/games/{game_id}")
		except ApiError as exc:
			if exc.status_code == 404:
				return None
			raise

	async def list_game_participants(self, game_id: str) -> List[Dict[str, Any]]:
		try:
			return await self._request("GET", f"/games/{game_id}/participants")
		except ApiError as exc:
			if exc.status_code == 404:
				return []
			raise

	async def mark_ready(self, game_id: str) -> Dict[str, Any]:
		return await self._request("POST", f"/games/{game_id}/ready")

	async def decline(self, game_id: str) -> None:
		await self._request("POST", f"/games/{game_id}/decline")

	async def force_start(self, game_id: str) -> Dict[str, Any]:
		return await self._request("POST", f"/games/{game_id}/force-start")

	async def cancel_game(self, game_id: str) -> Dict[str, Any]:
		return await self._request("POST", f"/games/{game_id}/cancel")

	async def leave_game(self, game_id: str) -> None:
		await self._request("POST", f"/games/{game_id}/leave")

	async def submit_word(self, game_id: str, position: int, word: str, word_bank_id: Optional[str] = None) -> Dict[str, Any]:
		return await self._request(
			"POST",
			f"/games/{game_id}/words",
			json={"position": position, "word": word, "word_bank_id": word_bank_id},
		)

	async def suggest_words(self, word_type: str, exclude_ids: Sequence[str] = (), limit: int = 5) -> List[Dict[str, Any]]:
		params: List[tuple[str, Any]] = [("type", word_type), ("limit", limit)]
		params.extend(("exclude", word_id) for word_id in exclude_ids)
		return await self._request("GET", "/games/words/suggestions", params=params)

	# Stories

	async def get_completed_story(self, game_id: str) -> Optional[Dict[str, Any]]:
		try:
			payload = await self._request("GET", f"/stories/{game_id}")
		except ApiError as exc:
			if exc.status_code == 404:
				return None
			raise
		return _normalise_story(payload)

	async def story_history(self) -> List[Dict[str, Any]]:
		return await self._request("GET", "/stories/history")
