import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from daeli.database.store import Store
from daeli.errors import ConflictError, NotFoundError, ValidationError
from daeli.models.records import (
    Event, Idea, IdeaSource, RecordKind, RecordModel, Suggestion, SuggestionStatus, utc_now, utc_timestamp,
)
from daeli.models.requests import (
    EventCreate, EventUpdate, EventWindow, IdeaCreate, IdeaUpdate, SuggestionCreate, SuggestionUpdate,
)
from daeli.models.views import AcceptResult, EventView, ResolvedView
from daeli.services.acceptance import AcceptanceWorkflow, event_id_for
from daeli.services.resolver import resolve, resolve_event
from daeli.services.tags import propagate_tags
from daeli.services.voting import VotingLedger

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)

# Curated picks offered by the "AI picks" action
AI_IDEA_POOL = [
    {'title': 'Storm-watching coffee date', 'tags': ['rain', 'cozy']},
    {'title': 'Sunrise beach stretch', 'tags': ['outdoor', 'sunrise'], 'location': 'My Khe Beach'},
    {'title': 'Puzzle & pasta night', 'tags': ['home', 'cozy']},
]

# Size of the "upcoming dates" list
UPCOMING_LIMIT = 5


def _parse(model_cls: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    """Validate caller input before anything is written"""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model_cls.__name__} input",
            details=json.loads(e.json(include_url=False)),
        ) from e


def _revalidate(model_cls: Type[RecordModel], record: Dict[str, Any]) -> None:
    try:
        model_cls.from_record(record)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Update would leave {model_cls.__name__.lower()} invalid",
            details=json.loads(e.json(include_url=False)),
        ) from e


def _apply_changes(record: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge; an explicit null clears the field"""
    for key, value in changes.items():
        if value is None:
            record.pop(key, None)
        else:
            record[key] = value
    record['updatedAt'] = utc_timestamp()
    return record


def _new_id() -> str:
    return str(uuid.uuid4())


class PlannerService:
    """Idea, suggestion and event operations over a Store.

    With ``strict_references`` on, suggestions must point at an existing
    idea and the direct event path only accepts an accepted suggestion that
    has no event yet. Otherwise dangling references are tolerated and
    resolved with placeholders at read time.
    """

    def __init__(self, store: Store, strict_references: bool = False):
        self.store = store
        self.strict_references = strict_references
        self.voting = VotingLedger(store)
        self.acceptance = AcceptanceWorkflow(store)

    # Ideas

    def create_idea(self, data: Union[IdeaCreate, Dict[str, Any]]) -> Idea:
        """Create an idea and add it to the idea listing"""
        payload = _parse(IdeaCreate, data)
        now = utc_now()
        idea = Idea(id=_new_id(), created_at=now, updated_at=now, **payload.model_dump())
        self.store.put(RecordKind.IDEA, idea.id, idea.to_record())
        self.store.append_id(RecordKind.IDEA, idea.id)
        logger.info(f"Created {idea.source} idea {idea.id}: {idea.title}")
        return idea

    def create_ai_ideas(self, couple_token: Optional[str] = None) -> List[Idea]:
        """Add the curated AI picks as new ideas"""
        return [
            self.create_idea({**pick, 'source': IdeaSource.AI.value, 'couple_token': couple_token})
            for pick in AI_IDEA_POOL
        ]

    def get_idea(self, idea_id: str) -> Idea:
        record = self.store.get(RecordKind.IDEA, idea_id)
        if record is None:
            raise NotFoundError('idea', idea_id)
        return Idea.from_record(record)

    def list_ideas(self, couple_token: Optional[str] = None) -> List[Idea]:
        ideas = [Idea.from_record(r) for r in self.store.list_records(RecordKind.IDEA)]
        return [i for i in ideas if couple_token is None or i.couple_token == couple_token]

    def update_idea(self, idea_id: str, data: Union[IdeaUpdate, Dict[str, Any]]) -> Idea:
        changes = _parse(IdeaUpdate, data).changes()

        def merge(record):
            merged = _apply_changes(record, changes)
            _revalidate(Idea, merged)
            return merged

        updated = self.store.update(RecordKind.IDEA, idea_id, merge)
        if updated is None:
            raise NotFoundError('idea', idea_id)
        logger.info(f"Updated idea {idea_id}: {sorted(changes)}")
        return Idea.from_record(updated)

    def delete_idea(self, idea_id: str) -> None:
        """Delete an idea; suggestions pointing at it are left in place"""
        if not self.store.delete(RecordKind.IDEA, idea_id):
            raise NotFoundError('idea', idea_id)
        self.store.remove_id(RecordKind.IDEA, idea_id)
        logger.info(f"Deleted idea {idea_id}")

    # Suggestions

    def _find_idea(self, idea_id: str) -> Optional[Idea]:
        record = self.store.get(RecordKind.IDEA, idea_id)
        if record is None:
            if self.strict_references:
                raise NotFoundError('idea', idea_id)
            logger.warning(f"Idea {idea_id} not found; continuing without it")
            return None
        return Idea.from_record(record)

    def create_suggestion(self, data: Union[SuggestionCreate, Dict[str, Any]]) -> Suggestion:
        """Propose a timeslot for an idea; tags are inherited from the idea when not given"""
        payload = _parse(SuggestionCreate, data)
        idea = self._find_idea(payload.idea_id)

        now = utc_now()
        fields = payload.model_dump(exclude={'tags'})
        suggestion = Suggestion(
            id=_new_id(),
            tags=propagate_tags(payload.tags, idea),
            votes={},
            status=SuggestionStatus.PENDING,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.store.put(RecordKind.SUGGESTION, suggestion.id, suggestion.to_record())
        self.store.append_id(RecordKind.SUGGESTION, suggestion.id)
        logger.info(f"Created suggestion {suggestion.id} for idea {suggestion.idea_id}")
        return suggestion

    def get_suggestion(self, suggestion_id: str) -> Suggestion:
        record = self.store.get(RecordKind.SUGGESTION, suggestion_id)
        if record is None:
            raise NotFoundError('suggestion', suggestion_id)
        return Suggestion.from_record(record)

    def list_suggestions(self, couple_token: Optional[str] = None,
                         status: Optional[str] = None) -> List[Suggestion]:
        if status is not None:
            try:
                status = SuggestionStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown status {status!r}")
        suggestions = [Suggestion.from_record(r) for r in self.store.list_records(RecordKind.SUGGESTION)]
        return [
            s for s in suggestions
            if (couple_token is None or s.couple_token == couple_token)
            and (status is None or s.status == status)
        ]

    def update_suggestion(self, suggestion_id: str,
                          data: Union[SuggestionUpdate, Dict[str, Any]]) -> Suggestion:
        """Edit overrides, timeslot, tags or idea; the timeslot is re-checked"""
        changes = _parse(SuggestionUpdate, data).changes()
        if changes.get('ideaId'):
            self._find_idea(changes['ideaId'])

        def merge(record):
            merged = _apply_changes(record, changes)
            _revalidate(Suggestion, merged)
            return merged

        updated = self.store.update(RecordKind.SUGGESTION, suggestion_id, merge)
        if updated is None:
            raise NotFoundError('suggestion', suggestion_id)
        logger.info(f"Updated suggestion {suggestion_id}: {sorted(changes)}")
        return Suggestion.from_record(updated)

    def delete_suggestion(self, suggestion_id: str) -> None:
        if not self.store.delete(RecordKind.SUGGESTION, suggestion_id):
            raise NotFoundError('suggestion', suggestion_id)
        self.store.remove_id(RecordKind.SUGGESTION, suggestion_id)
        logger.info(f"Deleted suggestion {suggestion_id}")

    def cast_vote(self, suggestion_id: str, partner_id: str, vote: str) -> Suggestion:
        return self.voting.cast_vote(suggestion_id, partner_id, vote)

    def accept(self, suggestion_id: str, accepted_by: Optional[str] = None) -> AcceptResult:
        return self.acceptance.accept(suggestion_id, accepted_by=accepted_by)

    def cancel(self, suggestion_id: str) -> Suggestion:
        return self.acceptance.cancel(suggestion_id)

    def resolve_display(self, suggestion_id: str) -> ResolvedView:
        """Current display attributes of a suggestion"""
        suggestion = self.get_suggestion(suggestion_id)
        record = self.store.get(RecordKind.IDEA, suggestion.idea_id)
        idea = Idea.from_record(record) if record is not None else None
        return resolve(suggestion, idea)

    # Events

    def create_event(self, data: Union[EventCreate, Dict[str, Any]]) -> Event:
        """Create an event directly, outside of accept.

        Used for administration and imports. Unless strict references are on,
        this does not check that the suggestion is accepted or that it has no
        event yet. In strict mode the event takes the suggestion's derived id,
        so a second create for the same suggestion is refused atomically.
        """
        payload = _parse(EventCreate, data)
        record = self.store.get(RecordKind.SUGGESTION, payload.suggestion_id)
        suggestion = Suggestion.from_record(record) if record is not None else None

        event_id = _new_id()
        if self.strict_references:
            if suggestion is None:
                raise NotFoundError('suggestion', payload.suggestion_id)
            if suggestion.status != SuggestionStatus.ACCEPTED:
                raise ConflictError(f"Suggestion {suggestion.id} is {suggestion.status}, not accepted")
            event_id = suggestion.event_id or event_id_for(suggestion.id)
            if any(e.suggestion_id == suggestion.id and e.id != event_id for e in self.list_events()):
                raise ConflictError(f"Suggestion {suggestion.id} already has an event")

        idea = None
        if suggestion is not None:
            idea_record = self.store.get(RecordKind.IDEA, suggestion.idea_id)
            idea = Idea.from_record(idea_record) if idea_record is not None else None

        event = Event(
            id=event_id,
            suggestion_id=payload.suggestion_id,
            couple_token=payload.couple_token or (suggestion.couple_token if suggestion else None),
            tags=propagate_tags(payload.tags, suggestion, idea),
            is_surprise=payload.is_surprise,
            created_at=utc_now(),
        )
        if not self.store.create(RecordKind.EVENT, event.id, event.to_record()):
            raise ConflictError(f"Suggestion {payload.suggestion_id} already has an event")
        self.store.append_id(RecordKind.EVENT, event.id)
        logger.info(f"Created event {event.id} directly for suggestion {event.suggestion_id}")
        return event

    def get_event(self, event_id: str) -> Event:
        record = self.store.get(RecordKind.EVENT, event_id)
        if record is None:
            raise NotFoundError('event', event_id)
        return Event.from_record(record)

    def list_events(self, couple_token: Optional[str] = None) -> List[Event]:
        events = [Event.from_record(r) for r in self.store.list_records(RecordKind.EVENT)]
        return [e for e in events if couple_token is None or e.couple_token == couple_token]

    def update_event(self, event_id: str, data: Union[EventUpdate, Dict[str, Any]]) -> Event:
        """Edit tags, couple token or the surprise flag; the suggestion link is fixed"""
        changes = _parse(EventUpdate, data).changes()

        def merge(record):
            merged = _apply_changes(record, changes)
            _revalidate(Event, merged)
            return merged

        updated = self.store.update(RecordKind.EVENT, event_id, merge)
        if updated is None:
            raise NotFoundError('event', event_id)
        logger.info(f"Updated event {event_id}: {sorted(changes)}")
        return Event.from_record(updated)

    def view_event(self, event: Event) -> EventView:
        """Resolve an event through its suggestion and idea"""
        suggestion_record = self.store.get(RecordKind.SUGGESTION, event.suggestion_id)
        if suggestion_record is None:
            logger.warning(f"Event {event.id} points at missing suggestion {event.suggestion_id}")
            return resolve_event(event)
        suggestion = Suggestion.from_record(suggestion_record)
        idea_record = self.store.get(RecordKind.IDEA, suggestion.idea_id)
        idea = Idea.from_record(idea_record) if idea_record is not None else None
        return resolve_event(event, suggestion, idea)

    def resolve_event(self, event_id: str) -> EventView:
        return self.view_event(self.get_event(event_id))

    def list_event_views(self, couple_token: Optional[str] = None,
                         start: Optional[Union[datetime, str]] = None,
                         end: Optional[Union[datetime, str]] = None) -> List[EventView]:
        """Resolved events, optionally limited to those starting in [start, end).

        With a window, events whose suggestion is gone (and so have no start)
        are left out and the result is sorted by start.
        """
        window = _parse(EventWindow, {'start': start, 'end': end})
        views = [self.view_event(e) for e in self.list_events(couple_token)]
        if window.start is None and window.end is None:
            return views

        in_window = [
            v for v in views
            if v.start_utc is not None
            and (window.start is None or v.start_utc >= window.start)
            and (window.end is None or v.start_utc < window.end)
        ]
        return sorted(in_window, key=lambda v: v.start_utc)

    def list_upcoming(self, couple_token: Optional[str] = None, limit: int = UPCOMING_LIMIT,
                      now: Optional[datetime] = None) -> List[EventView]:
        """The next ``limit`` events that have not started yet, soonest first"""
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")
        return self.list_event_views(couple_token, start=now or utc_now())[:limit]

    def delete_event(self, event_id: str) -> None:
        if not self.store.delete(RecordKind.EVENT, event_id):
            raise NotFoundError('event', event_id)
        self.store.remove_id(RecordKind.EVENT, event_id)
        logger.info(f"Deleted event {event_id}")
