from __future__ import annotations

from typing import Iterable, List, Set

from src.models.performance import CanonicalKey, RawEvent


def dedupe_events(events: Iterable[RawEvent]) -> List[RawEvent]:
    """Keep the first event per (schema origin, subject) and drop the rest.

    Call once per event kind. Events without a subject cannot be keyed or
    attributed and are dropped. Input order is preserved, so running the
    function on its own output returns the same list.
    """
    seen: Set[CanonicalKey] = set()
    unique: List[RawEvent] = []
    for event in events:
        key = event.canonical_key
        if key is None or key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique
