"""
Calendar Conflict Detection
Pure functions over stored events: the symmetric overlap graph that drives
has_conflict/conflict_with, and a richer classification for summaries.
"""
from datetime import timedelta
from typing import Dict, Iterable, List, Sequence, Set

from emergent_sync.models.schemas.calendar import ConflictDetail, StoredEvent

# Stop scanning forward once a later event starts this long after the current one ends
LOOKAHEAD = timedelta(hours=1)
BUFFER = timedelta(minutes=15)
TRAVEL_TIME = timedelta(minutes=30)
CRITICAL_OVERLAP = timedelta(minutes=30)

_ONLINE_MARKERS = ("http", "zoom", "meet", "teams")


def _active_sorted(events: Iterable[StoredEvent]) -> List[StoredEvent]:
    """Drop cancelled and zero/negative-length events, order by start."""
    active = [
        e for e in events
        if e.status != "cancelled" and e.end_time > e.start_time
    ]
    return sorted(active, key=lambda e: e.start_time)


def detect_conflicts(events: Sequence[StoredEvent]) -> Dict[str, Set[str]]:
    """
    Build the overlap graph.

    Intervals are half-open: A ending exactly when B starts is not a conflict.
    Every surviving event is a key (possibly with an empty set), and the
    relation is symmetric.

    Returns:
        {event_id: {event_ids it overlaps}}
    """
    ordered = _active_sorted(events)
    graph: Dict[str, Set[str]] = {e.event_id: set() for e in ordered}

    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if b.start_time >= a.end_time + LOOKAHEAD:
                break
            if b.start_time < a.end_time and a.event_id != b.event_id:
                graph[a.event_id].add(b.event_id)
                graph[b.event_id].add(a.event_id)

    return graph


def _is_physical(location) -> bool:
    if not location or not location.strip():
        return False
    lowered = location.lower()
    return not any(marker in lowered for marker in _ONLINE_MARKERS)


def _minutes(delta: timedelta) -> int:
    return round(delta.total_seconds() / 60)


def classify_conflicts(events: Sequence[StoredEvent]) -> List[ConflictDetail]:
    """
    Classify adjacent pairs for the conflict summary. Never affects conflict flags.

    Types, checked in order per pair:
    - hard_overlap: critical above 30 minutes of overlap, else high
    - back_to_back: B starts exactly when A ends
    - insufficient_buffer: gap under 15 minutes
    - travel_conflict: two different physical locations under 30 minutes apart
    """
    ordered = _active_sorted(events)
    details: List[ConflictDetail] = []

    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if b.start_time >= a.end_time + LOOKAHEAD:
                break

            gap = b.start_time - a.end_time

            if b.start_time < a.end_time:
                overlap = min(a.end_time, b.end_time) - b.start_time
                details.append(ConflictDetail(
                    event_id=a.event_id,
                    overlap_ids=[b.event_id],
                    type="hard_overlap",
                    severity="critical" if overlap > CRITICAL_OVERLAP else "high",
                    details=f'"{a.title}" overlaps with "{b.title}" by {_minutes(overlap)} minutes',
                ))
            elif gap == timedelta(0):
                details.append(ConflictDetail(
                    event_id=a.event_id,
                    overlap_ids=[b.event_id],
                    type="back_to_back",
                    severity="medium",
                    details=f'"{a.title}" ends exactly when "{b.title}" starts - no recovery time',
                ))
            elif gap < BUFFER:
                details.append(ConflictDetail(
                    event_id=a.event_id,
                    overlap_ids=[b.event_id],
                    type="insufficient_buffer",
                    severity="low",
                    details=f'Only {_minutes(gap)}min between "{a.title}" and "{b.title}" - recommend 15min buffer',
                ))
            elif (
                gap < TRAVEL_TIME
                and _is_physical(a.location)
                and _is_physical(b.location)
                and a.location.strip().lower() != b.location.strip().lower()
            ):
                details.append(ConflictDetail(
                    event_id=a.event_id,
                    overlap_ids=[b.event_id],
                    type="travel_conflict",
                    severity="high",
                    details=f'Only {_minutes(gap)}min to travel from "{a.location}" to "{b.location}"',
                ))

    return details
