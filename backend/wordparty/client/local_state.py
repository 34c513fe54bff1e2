"""Small durable key-value store for per-game client flags.

Values survive process restarts (the JSON file plays the role browser local
storage plays for a web client). Losing the file only loses the advisory guard;
the server-side `images_generated` check still prevents duplicate images.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from wordparty.settings import settings

logger = logging.getLogger(__name__)

ATTEMPTED_PREFIX = "illustration:attempted:"
MANUAL_RETRY_PREFIX = "illustration:last_manual_retry:"
FAILED_PREFIX = "illustration:failed:"


def attempted_key(game_id: str) -> str:
	return f"{ATTEMPTED_PREFIX}{game_id}"


def manual_retry_key(game_id: str) -> str:
	return f"{MANUAL_RETRY_PREFIX}{game_id}"


def failed_key(game_id: str) -> str:
	return f"{FAILED_PREFIX}{game_id}"


class ClientStateStore:
	def __init__(self, path: str | Path | None = None) -> None:
		self.path = Path(path or settings.client_state_path)
		self._lock = threading.Lock()

	def _read(self) -> Dict[str, Any]:
		try:
			raw = self.path.read_text(encoding="utf-8")
		except FileNotFoundError:
			return {}
		try:
			data = json.loads(raw)
		except json.JSONDecodeError:
			logger.warning("client_state_corrupt", extra={"path": str(self.path)})
			return {}
		return data if isinstance(data, dict) else {}

	def _write(self, data: Dict[str, Any]) -> None:
		self.path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
		tmp.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
		tmp.replace(self.path)

	def get(self, key: str, default: Any = None) -> Any:
		with self._lock:
			return self._read().get(key, default)

	def set(self, key: str, value: Any) -> None:
		with self._lock:
			data = self._read()
			data[key] = value
			self._write(data)

	def delete(self, key: str) -> None:
		with self._lock:
			data = self._read()
			if data.pop(key, None) is not None:
				self._write(data)

	# Per-game helpers

	def was_attempted(self, game_id: str) -> bool:
		return bool(self.get(attempted_key(game_id), False))

	def mark_attempted(self, game_id: str) -> None:
		self.set(attempted_key(game_id), True)

	def clear_attempted(self, game_id: str) -> None:
		self.delete(attempted_key(game_id))
		self.delete(failed_key(game_id))

	def failure(self, game_id: str) -> Optional[str]:
		"""Category of the last exhausted run, if any."""
		value = self.get(failed_key(game_id))
		return str(value) if value else None

	def record_failure(self, game_id: str, category: str) -> None:
		self.set(failed_key(game_id), category)

	def last_manual_retry(self, game_id: str) -> Optional[float]:
		value = self.get(manual_retry_key(game_id))
		return float(value) if value is not None else None

	def record_manual_retry(self, game_id: str, timestamp: float) -> None:
		self.set(manual_retry_key(game_id), timestamp)
