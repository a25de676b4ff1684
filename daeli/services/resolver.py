"""Display resolution for suggestions and events.

Suggestions and events never copy display data from their idea. Title,
description and location are re-derived on every read so an edited idea is
reflected everywhere it is referenced.
"""
from typing import Dict, Optional, Tuple

from daeli.models.records import Event, Idea, Suggestion, Vote
from daeli.models.views import EventView, ResolvedView, SuggestionView

PLACEHOLDER_TITLE = "(Idea)"


def resolve(suggestion: Suggestion, idea: Optional[Idea] = None) -> ResolvedView:
    """Apply the override -> idea -> placeholder chain to a suggestion"""
    title = suggestion.title_override
    if title is None:
        title = idea.title if idea is not None else PLACEHOLDER_TITLE

    description = suggestion.description_override
    if description is None and idea is not None:
        description = idea.description

    location = suggestion.location_override
    if location is None and idea is not None:
        location = idea.location

    return ResolvedView(
        title=title,
        description=description,
        location=location,
        start=suggestion.start_utc,
        end=suggestion.end_utc,
    )


def resolve_event(event: Event, suggestion: Optional[Suggestion] = None,
                  idea: Optional[Idea] = None) -> EventView:
    """Build the full event view; a missing suggestion leaves only the placeholder"""
    if suggestion is not None:
        display = resolve(suggestion, idea)
    else:
        display = ResolvedView(title=PLACEHOLDER_TITLE)

    return EventView(
        id=event.id,
        suggestion_id=event.suggestion_id,
        couple_token=event.couple_token,
        tags=event.tags,
        is_surprise=event.is_surprise,
        created_at=event.created_at,
        updated_at=event.updated_at,
        title=display.title,
        description=display.description,
        location=display.location,
        start_utc=display.start,
        end_utc=display.end,
    )


def tally_votes(votes: Dict[str, str]) -> Tuple[int, int]:
    """Count up and down votes from the current map"""
    up = sum(1 for value in votes.values() if value == Vote.UP)
    down = sum(1 for value in votes.values() if value == Vote.DOWN)
    return up, down


def suggestion_view(suggestion: Suggestion) -> SuggestionView:
    """Suggestion plus vote counts recomputed from the votes map"""
    up, down = tally_votes(suggestion.votes)
    return SuggestionView(suggestion=suggestion, up_count=up, down_count=down)
