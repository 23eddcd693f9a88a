"""
Engagement/Frequency Scorer
===========================

WHAT:
    - Per-event engagement averaged over the distinct sessions it occurred in
    - Per-visitor event frequency histogram

RULES:
    - Session engagement = min(active / duration * 100, 100) when duration > 0,
      else 0. Active time can exceed logged duration through measurement skew,
      so the cap is required.
    - An event occurring several times in one session counts that session once.
    - Frequency buckets: 1, 2, 3, 4, 5, 6-10, 11-20, 21+; empty buckets are
      dropped, the rest keep this fixed order.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from funnel_analytics.services.rollup import pct, safe_div, to_float


# (label, min, max inclusive; None = open-ended)
FREQUENCY_BUCKETS: List[Tuple[str, int, Optional[int]]] = [
    ("1", 1, 1),
    ("2", 2, 2),
    ("3", 3, 3),
    ("4", 4, 4),
    ("5", 5, 5),
    ("6-10", 6, 10),
    ("11-20", 11, 20),
    ("21+", 21, None),
]


def session_engagement(active_seconds: Any, duration_seconds: Any) -> float:
    duration = to_float(duration_seconds)
    if duration <= 0:
        return 0.0
    return min(to_float(active_seconds) / duration * 100, 100.0)


@dataclass
class EventEngagement:
    event_name: str
    occurrences: int
    sessions: int
    avg_engagement: float
    avg_duration: float
    avg_active_time: float
    conversions: int
    conversion_rate: float
    revenue: float


def event_engagement(sessions: Iterable[Any], events: Iterable[Any]) -> List[EventEngagement]:
    """
    Engagement per event name over sessions with an engagement measurement.

    Args:
        sessions: sessions in the window; only those with a non-null
            engagement_rate participate
        events: events in the window (event_name, session_id)

    Returns:
        EventEngagement list sorted by avg_engagement descending.
    """
    measured = {s.session_id: s for s in sessions if s.engagement_rate is not None}

    occurrences: Dict[str, int] = {}
    session_ids: Dict[str, Dict[str, None]] = {}
    for event in events:
        if event.session_id not in measured:
            continue
        occurrences[event.event_name] = occurrences.get(event.event_name, 0) + 1
        session_ids.setdefault(event.event_name, {})[event.session_id] = None

    results = []
    for name, ids in session_ids.items():
        unique = [measured[sid] for sid in ids]
        engagement = [session_engagement(s.active_time_seconds, s.duration_seconds) for s in unique]
        converted = [s for s in unique if s.converted]
        results.append(EventEngagement(
            event_name=name,
            occurrences=occurrences[name],
            sessions=len(unique),
            avg_engagement=safe_div(sum(engagement), len(unique)),
            avg_duration=safe_div(sum(to_float(s.duration_seconds) for s in unique), len(unique)),
            avg_active_time=safe_div(sum(to_float(s.active_time_seconds) for s in unique), len(unique)),
            conversions=len(converted),
            conversion_rate=pct(len(converted), len(unique)),
            revenue=sum(to_float(s.conversion_value) for s in converted),
        ))

    return sorted(results, key=lambda r: r.avg_engagement, reverse=True)


def overall_engagement(sessions: Iterable[Any]) -> Tuple[int, float]:
    """(measured session count, mean engagement_rate) for the window."""
    rates = [to_float(s.engagement_rate) for s in sessions if s.engagement_rate is not None]
    return len(rates), safe_div(sum(rates), len(rates))


# =============================================================================
# FREQUENCY
# =============================================================================

@dataclass
class FrequencyBucket:
    label: str
    visitors: int
    total_events: int
    percentage: float


def visitor_key(event: Any) -> Optional[str]:
    return event.user_id or event.anonymous_id


def count_per_visitor(events: Iterable[Any]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for event in events:
        key = visitor_key(event)
        if not key:
            continue
        counts[key] = counts.get(key, 0) + 1
    return counts


def bucket_label(occurrences: int) -> Optional[str]:
    for label, low, high in FREQUENCY_BUCKETS:
        if occurrences >= low and (high is None or occurrences <= high):
            return label
    return None


def frequency_distribution(per_visitor_counts: Iterable[int]) -> List[FrequencyBucket]:
    """Histogram of raw per-visitor counts in the fixed bucket order."""
    counts = [c for c in per_visitor_counts if c > 0]
    visitors: Dict[str, int] = {}
    events: Dict[str, int] = {}
    for c in counts:
        label = bucket_label(c)
        visitors[label] = visitors.get(label, 0) + 1
        events[label] = events.get(label, 0) + c

    return [
        FrequencyBucket(
            label=label,
            visitors=visitors[label],
            total_events=events[label],
            percentage=pct(visitors[label], len(counts)),
        )
        for label, _, _ in FREQUENCY_BUCKETS
        if label in visitors
    ]
