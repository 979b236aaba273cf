"""Collapse contiguous duplicate CREATE/CREATE and DELETE/DELETE events."""

import logging
from typing import Dict, List, Sequence

from .models import ChangeEvent, EventType

logger = logging.getLogger(__name__)

_SUMMARY_SYMBOLS = {
    EventType.CREATE: "+",
    EventType.MODIFY: ">",
    EventType.DELETE: "-",
}


def remove_duplicate_events_of_type(
    events: Sequence[ChangeEvent],
    event_type: EventType,
) -> List[ChangeEvent]:
    """
    Drop the second of two same-path events of ``event_type`` with no other
    event for that path between them.
    
    Events of other types on the same path break the run, so CREATE, MODIFY,
    CREATE keeps both creates. Relative order is preserved.
    
    Raises:
        ValueError: If called for MODIFY, which is never deduplicated
    """
    if event_type is EventType.MODIFY:
        raise ValueError("MODIFY events are not deduplicated")

    seen: Dict[str, bool] = {}
    result = []
    for event in events:
        if event.event_type is event_type:
            if event.path in seen:
                continue
            seen[event.path] = True
        else:
            seen.pop(event.path, None)
        result.append(event)
    return result


def deduplicate(events: Sequence[ChangeEvent]) -> List[ChangeEvent]:
    """
    Order events by timestamp and collapse contiguous CREATE and DELETE duplicates.
    
    The sort is stable, so events sharing a timestamp keep their creation order.
    """
    ordered = sorted(events, key=lambda e: e.timestamp_ms)
    ordered = remove_duplicate_events_of_type(ordered, EventType.CREATE)
    ordered = remove_duplicate_events_of_type(ordered, EventType.DELETE)
    if len(ordered) != len(events):
        logger.debug("Removed %d duplicate event(s)", len(events) - len(ordered))
    return ordered


def find_adjacent_duplicates(events: Sequence[ChangeEvent]) -> List[str]:
    """
    Paths that have two CREATE or two DELETE events as neighbours in their
    own event sub-sequence.
    """
    last_type: Dict[str, EventType] = {}
    duplicates: List[str] = []
    for event in events:
        previous = last_type.get(event.path)
        if (
            previous is event.event_type
            and event.event_type in (EventType.CREATE, EventType.DELETE)
            and event.path not in duplicates
        ):
            duplicates.append(event.path)
        last_type[event.path] = event.event_type
    return duplicates


def summarize(events: Sequence[ChangeEvent], max_length: int = 256) -> str:
    """
    One-line description of a batch for logs, e.g. ``+a.txt >b.txt -c``.
    
    Long summaries keep their head and tail around `` (...) ``.
    """
    parts = []
    for event in events:
        name = event.path.rsplit("/", 1)[-1] or event.path
        parts.append(_SUMMARY_SYMBOLS[event.event_type] + name)
    text = " ".join(parts)

    if len(text) > max_length:
        half = (max_length - len(" (...) ")) // 2
        text = text[:half] + " (...) " + text[-half:]
    return text
