import json
import logging

from pydantic import ValidationError as PydanticValidationError

from daeli.database.store import Store
from daeli.errors import NotFoundError, ValidationError
from daeli.models.records import RecordKind, Suggestion, SuggestionStatus, utc_timestamp
from daeli.models.requests import VoteRequest

logger = logging.getLogger(__name__)


class VotingLedger:
    """Per-partner votes on suggestions.

    Each partner holds at most one vote per suggestion; casting again
    replaces it. Only pending suggestions take votes; votes on accepted or
    cancelled suggestions succeed without changing anything. Partner ids
    are taken as given.
    """

    def __init__(self, store: Store):
        self.store = store

    def cast_vote(self, suggestion_id: str, partner_id: str, vote: str) -> Suggestion:
        """Upsert one partner's vote and return the suggestion as stored"""
        try:
            request = VoteRequest(partner_id=partner_id, vote=vote)
        except PydanticValidationError as e:
            raise ValidationError(
                "A vote needs a partnerId and a vote of 'up' or 'down'",
                details=json.loads(e.json(include_url=False)),
            ) from e
        partner_id, vote = request.partner_id, request.vote

        def merge_vote(record):
            if record.get('status', SuggestionStatus.PENDING.value) != SuggestionStatus.PENDING.value:
                logger.warning(
                    f"Ignoring {vote} vote by {partner_id} on {record.get('status')} suggestion {suggestion_id}"
                )
                return None
            votes = record.setdefault('votes', {})
            if votes.get(partner_id) == vote:
                return None
            # Merge just this partner's key; the other partner's vote is untouched
            votes[partner_id] = vote
            record['updatedAt'] = utc_timestamp()
            return record

        updated = self.store.update(RecordKind.SUGGESTION, suggestion_id, merge_vote)
        if updated is None:
            raise NotFoundError('suggestion', suggestion_id)

        logger.info(f"Partner {partner_id} voted {vote} on suggestion {suggestion_id}")
        return Suggestion.from_record(updated)
