"""Domain models for games, templates and word submissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

GameStatus = Literal["waiting", "playing", "finished", "canceled"]

GAME_STATUSES: tuple[str, ...] = ("waiting", "playing", "finished", "canceled")


@dataclass(slots=True)
class Placeholder:
    position: int
    type: str

    def to_dict(self) -> dict:
        return {"position": self.position, "type": self.type}


@dataclass(slots=True)
class StoryTemplate:
    id: str
    category: str
    title: str
    body: str
    placeholders: List[Placeholder] = field(default_factory=list)
    active: bool = True

    @property
    def total_positions(self) -> int:
        return len(self.placeholders)


@dataclass(slots=True)
class Game:
    id: str
    room_id: str
    template_id: str
    host_id: str
    status: GameStatus
    created_at: datetime
    started_at: Optional[datetime] = None

    def is_host(self, user_id: str) -> bool:
        return self.host_id == user_id

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "template_id": self.template_id,
            "host_id": self.host_id,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


@dataclass(slots=True)
class GameParticipant:
    game_id: str
    user_id: str
    is_ready: bool
    joined_at: datetime
    words_assigned: List[int] = field(default_factory=list)
    username: Optional[str] = None

    def to_row(self) -> dict:
        return {
            "game_id": self.game_id,
            "user_id": self.user_id,
            "is_ready": self.is_ready,
            "words_assigned": list(self.words_assigned),
            "joined_at": self.joined_at.isoformat(),
        }


@dataclass(slots=True)
class WordSubmission:
    game_id: str
    position: int
    user_id: str
    word: str
    created_at: datetime
    word_bank_id: Optional[str] = None
    auto_submitted: bool = False

    def to_row(self) -> dict:
        return {
            "game_id": self.game_id,
            "position": self.position,
            "user_id": self.user_id,
            "word": self.word,
            "word_bank_id": self.word_bank_id,
            "auto_submitted": self.auto_submitted,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class WordBankEntry:
    id: str
    word: str
    type: str
    active: bool = True
