from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from daeli.models.records import IdeaSource, UtcDatetime, Vote, check_timeslot


class RequestModel(BaseModel):
    """Pydantic model for API request validation"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class UpdateModel(RequestModel):
    model_config = ConfigDict(extra="forbid")

    def changes(self) -> dict:
        """Only the fields the caller actually sent, keyed as stored"""
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True)


class IdeaCreate(RequestModel):
    couple_token: Optional[str] = None
    source: IdeaSource = IdeaSource.MANUAL
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None


class IdeaUpdate(UpdateModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None
    source: Optional[IdeaSource] = None


class SuggestionCreate(RequestModel):
    couple_token: Optional[str] = None
    idea_id: str = Field(min_length=1)
    tags: Optional[List[str]] = None
    start_utc: UtcDatetime
    end_utc: UtcDatetime
    title_override: Optional[str] = None
    description_override: Optional[str] = None
    location_override: Optional[str] = None

    @model_validator(mode="after")
    def _check_timeslot(self):
        check_timeslot(self.start_utc, self.end_utc)
        return self


class SuggestionUpdate(UpdateModel):
    """Editable suggestion fields; status and votes change only through the workflow"""

    idea_id: Optional[str] = Field(default=None, min_length=1)
    start_utc: Optional[UtcDatetime] = None
    end_utc: Optional[UtcDatetime] = None
    title_override: Optional[str] = None
    description_override: Optional[str] = None
    location_override: Optional[str] = None
    tags: Optional[List[str]] = None


class VoteRequest(RequestModel):
    partner_id: str = Field(min_length=1)
    vote: Vote


class EventCreate(RequestModel):
    """Direct event creation for administration and imports"""

    couple_token: Optional[str] = None
    suggestion_id: str = Field(min_length=1)
    tags: Optional[List[str]] = None
    is_surprise: bool = False


class EventUpdate(UpdateModel):
    """Event-owned fields; display data always comes from the suggestion"""

    couple_token: Optional[str] = None
    tags: Optional[List[str]] = None
    is_surprise: Optional[bool] = None


class EventWindow(RequestModel):
    """Optional [start, end) window over the suggestion start time"""

    start: Optional[UtcDatetime] = None
    end: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self
