"""Substitute submitted words into a template body."""

from __future__ import annotations

import re
from typing import Mapping

_PLACEHOLDER_RE = re.compile(r"\{(\d+)\}")


def assemble_story(body: str, words: Mapping[int, str]) -> str:
	"""Replace each `{n}` with the word for position n. Unknown slots are left as-is."""

	def _sub(match: re.Match[str]) -> str:
		word = words.get(int(match.group(1)))
		return word if word is not None else match.group(0)

	return _PLACEHOLDER_RE.sub(_sub, body)


def excerpt(text: str, limit: int = 140) -> str:
	if len(text) <= limit:
		return text
	return text[: limit - 1].rstrip() + "…"
