from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from daeli.models.records import Suggestion


class ViewModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary"""
        return self.model_dump(by_alias=True, mode="json")


class ResolvedView(ViewModel):
    """Display attributes of a suggestion after the override fallback"""

    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SuggestionView(ViewModel):
    suggestion: Suggestion
    up_count: int = 0
    down_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload = self.suggestion.to_record()
        payload.setdefault("votes", {})
        payload["upCount"] = self.up_count
        payload["downCount"] = self.down_count
        return payload


class EventView(ViewModel):
    """An event with every display attribute derived from its suggestion"""

    id: str
    suggestion_id: str
    couple_token: Optional[str] = None
    tags: Optional[List[str]] = None
    is_surprise: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_utc: Optional[datetime] = None
    end_utc: Optional[datetime] = None


class AcceptResult(ViewModel):
    suggestion: SuggestionView
    event: EventView
    display: ResolvedView
    created: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "created": self.created,
            "suggestion": self.suggestion.to_dict(),
            "event": self.event.to_dict(),
            "display": self.display.to_dict(),
        }
