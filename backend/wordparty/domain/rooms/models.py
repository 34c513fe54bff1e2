"""Domain models for rooms (lobbies) and their participants."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class Room:
    """Persisted representation of a lobby."""

    id: str
    room_code: str
    host_id: str
    active: bool
    created_at: datetime
    participants_count: int = 0

    def is_host(self, user_id: str) -> bool:
        return self.host_id == user_id

    def to_summary(self, user_id: str) -> dict:
        return {
            "id": self.id,
            "room_code": self.room_code,
            "host_id": self.host_id,
            "active": self.active,
            "created_at": self.created_at,
            "participants_count": self.participants_count,
            "is_host": self.is_host(user_id),
        }

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "room_code": self.room_code,
            "host_id": self.host_id,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class RoomParticipant:
    room_id: str
    user_id: str
    joined_at: datetime
    username: Optional[str] = None

    def to_row(self) -> dict:
        return {
            "room_id": self.room_id,
            "user_id": self.user_id,
            "joined_at": self.joined_at.isoformat(),
        }
