"""Filesystem-backed object store for generated story images.

Objects live under `<storage_root>/<bucket>/<key>` and are served by the API at
`<storage_public_url>/<bucket>/<key>`.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import List, Optional

from wordparty.settings import settings

ALLOWED_CONTENT_TYPES = {"image/png", "image/jpeg", "image/webp"}


class ObjectStoreError(RuntimeError):
	"""Raised when an object cannot be written."""


class LocalObjectStore:
	def __init__(
		self,
		root: str | Path | None = None,
		*,
		bucket: Optional[str] = None,
		public_base_url: Optional[str] = None,
	) -> None:
		self.bucket = bucket or settings.storage_bucket
		self.root = Path(root or settings.storage_root).resolve()
		self.public_base_url = (public_base_url or settings.storage_public_url).rstrip("/")

	def _path(self, key: str) -> Path:
		base = (self.root / self.bucket).resolve()
		target = (base / key).resolve()
		if base not in target.parents:
			raise ObjectStoreError("invalid_key")
		return target

	def public_url(self, key: str) -> str:
		return f"{self.public_base_url}/{self.bucket}/{key}"

	async def exists(self, key: str) -> bool:
		return await asyncio.to_thread(self._path(key).is_file)

	async def list(self, prefix: str = "") -> List[str]:
		base = self.root / self.bucket

		def _scan() -> List[str]:
			if not base.is_dir():
				return []
			return sorted(p.name for p in base.iterdir() if p.is_file() and p.name.startswith(prefix))

		return await asyncio.to_thread(_scan)

	async def upload(self, key: str, data: bytes, *, content_type: str, upsert: bool = True) -> str:
		if content_type not in ALLOWED_CONTENT_TYPES:
			raise ObjectStoreError("content_type_invalid")
		target = self._path(key)

		def _write() -> None:
			if target.exists() and not upsert:
				raise ObjectStoreError("object_exists")
			target.parent.mkdir(parents=True, exist_ok=True)
			tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
			tmp.write_bytes(data)
			tmp.replace(target)

		await asyncio.to_thread(_write)
		return self.public_url(key)


def image_key(game_id: str, index: Optional[int] = None) -> str:
	"""Object key for a game's illustration: `<gameId>.png` or `<gameId>-<index>.png`."""
	if index is None:
		return f"{game_id}.png"
	return f"{game_id}-{index}.png"
