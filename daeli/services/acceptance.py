"""Suggestion state machine.

    pending --accept--> accepted   (creates exactly one event)
    pending --cancel--> cancelled  (no event)

Nothing leaves ``accepted`` or ``cancelled``. The status flip is a
compare-and-swap through ``Store.update`` and is committed before the event
is written. The event id is derived from the suggestion id, so a retried or
racing accept lands on the same event record instead of creating another.
"""
import logging
import uuid
from typing import Optional

from daeli.database.store import Store
from daeli.errors import ConflictError, NotFoundError
from daeli.models.records import Event, Idea, RecordKind, Suggestion, SuggestionStatus, utc_now, utc_timestamp
from daeli.models.views import AcceptResult
from daeli.services.resolver import resolve, resolve_event, suggestion_view
from daeli.services.tags import propagate_tags

logger = logging.getLogger(__name__)

EVENT_NAMESPACE = uuid.UUID('5b0e7a52-3f4c-4d8e-9a61-2c7d1e0f9b34')


def event_id_for(suggestion_id: str) -> str:
    """Id of the event derived from a suggestion through accept"""
    return str(uuid.uuid5(EVENT_NAMESPACE, suggestion_id))


class AcceptanceWorkflow:
    def __init__(self, store: Store):
        self.store = store

    def _load_idea(self, idea_id: str) -> Optional[Idea]:
        record = self.store.get(RecordKind.IDEA, idea_id)
        if record is None:
            logger.warning(f"Idea {idea_id} no longer exists; resolving without it")
            return None
        return Idea.from_record(record)

    def accept(self, suggestion_id: str, accepted_by: Optional[str] = None) -> AcceptResult:
        """Accept a pending suggestion and create its event.

        Accepting an already accepted suggestion returns the existing event.
        If the event record is missing (a previous accept stopped after the
        status flip) it is recreated under the same id.
        """
        if self.store.get(RecordKind.SUGGESTION, suggestion_id) is None:
            raise NotFoundError('suggestion', suggestion_id)

        new_event_id = event_id_for(suggestion_id)
        transitioned = False

        def flip_to_accepted(record):
            nonlocal transitioned
            status = record.get('status', SuggestionStatus.PENDING.value)
            if status == SuggestionStatus.CANCELLED.value:
                raise ConflictError(f"Suggestion {suggestion_id} was cancelled and cannot be accepted")
            if status == SuggestionStatus.ACCEPTED.value:
                if record.get('eventId'):
                    return None
                # Accepted before events were linked
                record['eventId'] = new_event_id
                return record

            now = utc_timestamp()
            record['status'] = SuggestionStatus.ACCEPTED.value
            record['acceptedAt'] = now
            record['updatedAt'] = now
            record['eventId'] = new_event_id
            if accepted_by:
                record['acceptedBy'] = accepted_by
            transitioned = True
            return record

        updated = self.store.update(RecordKind.SUGGESTION, suggestion_id, flip_to_accepted)
        if updated is None:
            raise NotFoundError('suggestion', suggestion_id)

        suggestion = Suggestion.from_record(updated)
        idea = self._load_idea(suggestion.idea_id)
        display = resolve(suggestion, idea)

        event_id = suggestion.event_id or new_event_id
        event = Event(
            id=event_id,
            suggestion_id=suggestion.id,
            couple_token=suggestion.couple_token,
            tags=propagate_tags(None, suggestion, idea),
            created_at=utc_now(),
        )
        # Racing accepts all try the same id; exactly one write lands
        created = self.store.create(RecordKind.EVENT, event_id, event.to_record())
        if created:
            self.store.append_id(RecordKind.EVENT, event_id)
            if not transitioned:
                logger.warning(f"Recreated missing event {event_id} for accepted suggestion {suggestion_id}")
        else:
            event = Event.from_record(self.store.get(RecordKind.EVENT, event_id))

        if transitioned:
            logger.info(f"Suggestion {suggestion_id} accepted; event {event_id} created")
        else:
            logger.info(f"Suggestion {suggestion_id} already accepted; returning event {event_id}")

        return AcceptResult(
            suggestion=suggestion_view(suggestion),
            event=resolve_event(event, suggestion, idea),
            display=display,
            created=created,
        )

    def cancel(self, suggestion_id: str) -> Suggestion:
        """Cancel a pending suggestion; repeating the call is a no-op"""

        def flip_to_cancelled(record):
            status = record.get('status', SuggestionStatus.PENDING.value)
            if status == SuggestionStatus.CANCELLED.value:
                return None
            if status == SuggestionStatus.ACCEPTED.value:
                raise ConflictError(f"Suggestion {suggestion_id} is already accepted")
            record['status'] = SuggestionStatus.CANCELLED.value
            record['updatedAt'] = utc_timestamp()
            return record

        updated = self.store.update(RecordKind.SUGGESTION, suggestion_id, flip_to_cancelled)
        if updated is None:
            raise NotFoundError('suggestion', suggestion_id)

        logger.info(f"Suggestion {suggestion_id} cancelled")
        return Suggestion.from_record(updated)
