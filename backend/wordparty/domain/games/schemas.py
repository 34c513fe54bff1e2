"""Pydantic schemas for the games API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PlaceholderSchema(BaseModel):
    position: int
    type: str


class TemplateSummary(BaseModel):
    id: str
    category: str
    title: str
    placeholders: List[PlaceholderSchema] = Field(default_factory=list)


class GameSummary(BaseModel):
    id: str
    room_id: str
    template_id: str
    host_id: str
    status: Literal["waiting", "playing", "finished", "canceled"]
    created_at: datetime
    started_at: Optional[datetime] = None
    is_host: bool = False


class GameParticipantSummary(BaseModel):
    user_id: str
    username: Optional[str] = None
    is_ready: bool
    words_assigned: List[int] = Field(default_factory=list)
    joined_at: datetime


class GameDetail(GameSummary):
    template: Optional[TemplateSummary] = None
    participants: List[GameParticipantSummary] = Field(default_factory=list)
    submitted_positions: List[int] = Field(default_factory=list)


class GameCreateRequest(BaseModel):
    room_id: str
    category: str = Field(..., min_length=1, max_length=64)


class CancelGameResponse(BaseModel):
    room_code: Optional[str] = None


class ForceStartResponse(BaseModel):
    removed_user_ids: List[str] = Field(default_factory=list)
    game: GameDetail


class WordSubmitRequest(BaseModel):
    position: int = Field(..., ge=0)
    word: str = Field(..., min_length=1, max_length=256)
    word_bank_id: Optional[str] = None


class WordSubmissionSummary(BaseModel):
    game_id: str
    position: int
    user_id: str
    word: str
    word_bank_id: Optional[str] = None
    auto_submitted: bool = False
    created_at: datetime


class WordSuggestion(BaseModel):
    id: str
    word: str
    type: str
