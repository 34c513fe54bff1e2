"""Pydantic schemas for the rooms API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RoomSummary(BaseModel):
    id: str
    room_code: str
    host_id: str
    active: bool
    created_at: datetime
    participants_count: int
    is_host: bool


class RoomParticipantSummary(BaseModel):
    user_id: str
    username: Optional[str] = None
    joined_at: datetime


class RoomDetail(RoomSummary):
    participants: List[RoomParticipantSummary] = Field(default_factory=list)


class JoinByCodeRequest(BaseModel):
    room_code: str = Field(..., min_length=8, max_length=8)
