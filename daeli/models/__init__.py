from daeli.models.records import Event, Idea, IdeaSource, RecordKind, Suggestion, SuggestionStatus, Vote
from daeli.models.views import AcceptResult, EventView, ResolvedView, SuggestionView

# Re-exported so callers can import every record and view from one place
__all__ = [
    'Idea', 'Suggestion', 'Event', 'RecordKind', 'IdeaSource', 'SuggestionStatus', 'Vote',
    'ResolvedView', 'SuggestionView', 'EventView', 'AcceptResult',
]
