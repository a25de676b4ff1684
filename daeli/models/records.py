from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class RecordKind(str, Enum):
    IDEA = "idea"
    SUGGESTION = "suggestion"
    EVENT = "event"


class IdeaSource(str, Enum):
    MANUAL = "manual"
    AI = "ai"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"


class Vote(str, Enum):
    UP = "up"
    DOWN = "down"


def to_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp(value: Optional[datetime] = None) -> str:
    """ISO 8601 in UTC with a Z suffix, the form records are stored in"""
    value = to_utc(value) if value is not None else utc_now()
    return value.isoformat().replace("+00:00", "Z")


UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]


def check_timeslot(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and end <= start:
        raise ValueError("endUtc must be after startUtc")


class RecordModel(BaseModel):
    """Base for persisted documents; stored with camelCase keys"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the JSON document kept in the store"""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        return cls.model_validate(record)


class Idea(RecordModel):
    id: str
    couple_token: Optional[str] = None
    source: IdeaSource = IdeaSource.MANUAL
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class Suggestion(RecordModel):
    """A proposed timeslot for an idea.

    Display fields are never copied from the idea; only the optional
    overrides live here. ``votes`` maps partner id to ``up``/``down``.
    """

    id: str
    couple_token: Optional[str] = None
    idea_id: str
    start_utc: UtcDatetime
    end_utc: UtcDatetime
    title_override: Optional[str] = None
    description_override: Optional[str] = None
    location_override: Optional[str] = None
    tags: Optional[List[str]] = None
    votes: Dict[str, Vote] = {}
    status: SuggestionStatus = SuggestionStatus.PENDING
    accepted_by: Optional[str] = None
    accepted_at: Optional[UtcDatetime] = None
    event_id: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _check_timeslot(self):
        check_timeslot(self.start_utc, self.end_utc)
        return self


class Event(RecordModel):
    """Calendar entry for an accepted suggestion; holds no display data"""

    id: str
    suggestion_id: str
    couple_token: Optional[str] = None
    tags: Optional[List[str]] = None
    is_surprise: bool = False
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
