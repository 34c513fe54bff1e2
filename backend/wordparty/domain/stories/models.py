from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(slots=True)
class CompletedStory:
    game_id: str
    story_text: str
    title: str
    created_at: datetime
    images_generated: bool = False
    image_urls: List[str] = field(default_factory=list)
    category: Optional[str] = None

    def to_row(self) -> dict:
        return {
            "game_id": self.game_id,
            "story_text": self.story_text,
            "title": self.title,
            "images_generated": self.images_generated,
            "image_urls": list(self.image_urls),
            "created_at": self.created_at.isoformat(),
        }
