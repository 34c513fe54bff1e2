"""Pydantic schemas for completed stories."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CompletedStorySchema(BaseModel):
    game_id: str
    story_text: str
    title: str
    category: Optional[str] = None
    images_generated: bool = False
    image_urls: List[str] = Field(default_factory=list)
    created_at: datetime


class StoryHistoryItem(BaseModel):
    game_id: str
    title: str
    category: Optional[str] = None
    excerpt: str
    image_url: Optional[str] = None
    created_at: datetime
