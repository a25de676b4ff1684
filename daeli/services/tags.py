from typing import Iterable, List, Optional

from pydantic import BaseModel

# Suggestion -> Idea, or Event -> Suggestion -> Idea
MAX_TAG_ANCESTORS = 2


def propagate_tags(explicit_tags: Optional[Iterable[str]], *lineage: Optional[BaseModel]) -> Optional[List[str]]:
    """Tags to store on a new record.

    Explicit, non-empty tags win. Otherwise the first non-empty tag list among
    the ancestors (nearest first) is copied. Runs once at creation; the
    result is not re-derived when an ancestor changes later.
    """
    if explicit_tags:
        return list(explicit_tags)

    for ancestor in lineage[:MAX_TAG_ANCESTORS]:
        if ancestor is None:
            continue
        tags = getattr(ancestor, 'tags', None)
        if tags:
            return list(tags)

    return None
