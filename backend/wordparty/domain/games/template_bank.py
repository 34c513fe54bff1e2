"""Built-in story templates and word bank used when no database is configured."""

from __future__ import annotations

from typing import List

from wordparty.domain.games.models import Placeholder, StoryTemplate, WordBankEntry


def _placeholders(*types: str) -> List[Placeholder]:
	return [Placeholder(position=index, type=kind) for index, kind in enumerate(types)]


_TEMPLATES: List[StoryTemplate] = [
	StoryTemplate(
		id="tpl-adventure-1",
		category="adventure",
		title="The Lost Map",
		body=(
			"Captain {0} unrolled a {1} map and shouted, \"To the {2} island!\" "
			"The crew {3} all night until a giant {4} blocked the way. "
			"Luckily the cabin boy had packed a {5}."
		),
		placeholders=_placeholders("name", "adjective", "adjective", "verb", "noun", "noun"),
	),
	StoryTemplate(
		id="tpl-adventure-2",
		category="adventure",
		title="Summit Day",
		body=(
			"At dawn we {0} up the mountain carrying a {1} {2}. "
			"Halfway up, {3} insisted we stop to {4}."
		),
		placeholders=_placeholders("verb", "adjective", "noun", "name", "verb"),
	),
	StoryTemplate(
		id="tpl-silly-1",
		category="silly",
		title="Breakfast Disaster",
		body=(
			"This morning my toaster turned into a {0} {1}. "
			"It {2} across the kitchen yelling \"{3}!\" until the cat {4} it."
		),
		placeholders=_placeholders("adjective", "animal", "verb", "exclamation", "verb"),
	),
	StoryTemplate(
		id="tpl-spooky-1",
		category="spooky",
		title="The House on the Hill",
		body=(
			"Nobody had entered the {0} house since {1} vanished there. "
			"Inside, a {2} whispered \"{3}\" and every {4} in the hallway began to {5}."
		),
		placeholders=_placeholders("adjective", "name", "noun", "exclamation", "noun", "verb"),
	),
]


def _entries(kind: str, *words: str) -> List[WordBankEntry]:
	return [WordBankEntry(id=f"wb-{kind}-{index}", word=word, type=kind) for index, word in enumerate(words)]


_WORD_BANK: List[WordBankEntry] = [
	*_entries("adjective", "sparkly", "grumpy", "enormous", "soggy", "mysterious", "wobbly", "ancient"),
	*_entries("noun", "pickle", "umbrella", "trombone", "volcano", "sandwich", "lighthouse", "sock"),
	*_entries("verb", "danced", "sneezed", "tiptoed", "galloped", "whispered", "juggled", "wiggle"),
	*_entries("name", "Gertrude", "Captain Waffles", "Aunt Moira", "Señor Bubbles", "Dr. Noodle"),
	*_entries("animal", "llama", "penguin", "hedgehog", "octopus", "giraffe"),
	*_entries("exclamation", "Yikes", "Holy guacamole", "Bazinga", "Oh no", "Hooray"),
]


def builtin_templates() -> List[StoryTemplate]:
	return list(_TEMPLATES)


def builtin_word_bank() -> List[WordBankEntry]:
	return list(_WORD_BANK)
