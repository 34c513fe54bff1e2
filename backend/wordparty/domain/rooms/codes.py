"""Room code generation and validation."""

from __future__ import annotations

import re
import secrets

ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_LENGTH = 8

_ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{8}$")


def generate_room_code() -> str:
	"""Return a random 8-character code such as `A3K9M2P7`."""
	return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def is_valid_room_code(code: str) -> bool:
	return bool(_ROOM_CODE_RE.fullmatch(code or ""))


def normalise_room_code(code: str) -> str:
	return (code or "").strip().upper()
