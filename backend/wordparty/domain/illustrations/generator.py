"""Image generation backends."""

from __future__ import annotations

import base64
from typing import Optional, Protocol

import httpx

from wordparty.settings import settings

PROMPT_PREFIX = (
	"Create a whimsical, fun illustration for this humorous story. The image should be "
	"colorful, family-friendly, and capture the playful spirit of the narrative:\n\n"
)


class ImageGenerationError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 502) -> None:
		super().__init__(code)
		self.code = code
		self.status_code = status_code


class ImageGenerator(Protocol):
	async def generate(self, prompt: str) -> bytes:
		...


def build_prompt(story_text: str) -> str:
	return PROMPT_PREFIX + story_text


class HttpImageGenerator:
	"""Calls an image model over HTTP.

	The model endpoint receives `{"prompt": ..., "aspect_ratio": "16:9"}` and
	answers either with raw image bytes or with JSON carrying base64 images under
	`images` (a list of strings or of `{"data": ...}` objects).
	"""

	def __init__(
		self,
		url: Optional[str] = None,
		*,
		api_key: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: httpx.AsyncBaseTransport | None = None,
	) -> None:
		self._url = url or settings.image_model_url
		self._api_key = api_key if api_key is not None else settings.image_model_api_key
		self._timeout = timeout or settings.image_model_timeout_seconds
		self._transport = transport

	async def generate(self, prompt: str) -> bytes:
		if not self._url:
			raise ImageGenerationError("image_model_not_configured", status_code=500)
		headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
		async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=self._transport) as client:
			try:
				response = await client.post(self._url, json={"prompt": prompt, "aspect_ratio": "16:9"}, headers=headers)
			except httpx.TimeoutException as exc:
				raise ImageGenerationError("image_model_timeout", status_code=504) from exc
			except httpx.HTTPError as exc:
				raise ImageGenerationError("image_model_unreachable") from exc
		if response.status_code >= 400:
			raise ImageGenerationError(f"image_model_http_{response.status_code}")
		if response.headers.get("content-type", "").startswith("image/"):
			return response.content
		return _first_image(response.json())


def _first_image(payload: dict) -> bytes:
	for item in payload.get("images") or []:
		data = item.get("data") if isinstance(item, dict) else item
		if data:
			return base64.b64decode(data)
	raise ImageGenerationError("no_images_generated")
