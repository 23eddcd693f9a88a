"""
Time Bucketer
=============

WHAT:
    Maps timestamps to fixed-width bucket keys (15min, 30min, hour, 4hour,
    day) and folds rows into an ordered series of TimeBuckets.

WHY:
    Every trend analysis (sessions, events, categories, conversions) shares
    one bucketing rule so that keys line up across charts.

KEY FORMAT:
    Keys are ISO-8601 prefixes of the bucket start:
      - sub-day: "2025-12-30T14:15"
      - day:     "2025-12-30"
    so lexicographic order equals chronological order. A display label
    ("Dec 30 14:15" / "Dec 30") is produced alongside.

USAGE:
    series = aggregate_series(
        events, "hour", timestamp_of=lambda e: e.timestamp,
        metrics={"events": count(), "conversions": count_where(lambda e: e.is_conversion)},
    )

REFERENCES:
    - funnel_analytics/services/session_analytics.py: sessions_trend
    - funnel_analytics/services/event_analytics.py: events_trend, events_over_time
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from funnel_analytics.services.time_range import TimeWindow


# Minutes per bucket for each granularity
GRANULARITIES: Dict[str, int] = {
    "15min": 15,
    "30min": 30,
    "hour": 60,
    "4hour": 240,
    "day": 1440,
}

Metric = Callable[[List[Any]], Any]


@dataclass
class TimeBucket:
    key: str
    start: datetime
    label: str
    values: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.key, "label": self.label, **self.values}


def _check_granularity(granularity: str) -> int:
    try:
        return GRANULARITIES[granularity]
    except KeyError:
        raise ValueError(
            f"Unknown granularity '{granularity}'. Expected one of: {', '.join(GRANULARITIES)}"
        )


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def bucket_start(timestamp: datetime, granularity: str) -> datetime:
    """Floor a timestamp to the start of its bucket."""
    width = _check_granularity(granularity)
    ts = _naive_utc(timestamp).replace(second=0, microsecond=0)
    if granularity == "day":
        return ts.replace(hour=0, minute=0)
    if width < 60:
        return ts.replace(minute=(ts.minute // width) * width)
    hours = width // 60
    return ts.replace(hour=(ts.hour // hours) * hours, minute=0)


def format_key(start: datetime, granularity: str) -> str:
    if granularity == "day":
        return start.strftime("%Y-%m-%d")
    return start.strftime("%Y-%m-%dT%H:%M")


def format_label(start: datetime, granularity: str) -> str:
    if granularity == "day":
        return f"{start:%b} {start.day}"
    return f"{start:%b} {start.day} {start:%H:%M}"


def bucket_key(timestamp: datetime, granularity: str) -> str:
    """Return the sortable bucket key for a timestamp."""
    return format_key(bucket_start(timestamp, granularity), granularity)


# =============================================================================
# METRIC EXTRACTORS
# =============================================================================
# Each extractor receives the rows of one bucket (possibly empty).

def count() -> Metric:
    return lambda rows: len(rows)


def count_where(predicate: Callable[[Any], bool]) -> Metric:
    return lambda rows: sum(1 for r in rows if predicate(r))


def total(value_of: Callable[[Any], Any]) -> Metric:
    """Sum of a numeric field; None counts as 0."""
    return lambda rows: sum(float(value_of(r) or 0) for r in rows)


def mean(value_of: Callable[[Any], Any], skip_none: bool = True) -> Metric:
    """Mean of a numeric field, 0 for an empty bucket.

    With skip_none, rows whose value is None do not count in the denominator.
    """
    def _mean(rows: List[Any]) -> float:
        values = [value_of(r) for r in rows]
        if skip_none:
            values = [v for v in values if v is not None]
        else:
            values = [v or 0 for v in values]
        if not values:
            return 0
        return sum(float(v) for v in values) / len(values)
    return _mean


# =============================================================================
# SERIES
# =============================================================================

def aggregate_series(
    rows: Iterable[Any],
    granularity: str,
    timestamp_of: Callable[[Any], datetime],
    metrics: Dict[str, Metric],
    zero_fill: bool = False,
    window: Optional[TimeWindow] = None,
) -> List[TimeBucket]:
    """
    Group rows by bucket and apply each metric per bucket.

    Returns buckets in chronological order. Buckets without rows are omitted
    unless zero_fill is set, in which case every bucket from the window start
    (or the first row) to the window end (or the last row) is emitted.
    Empty input always yields an empty series.
    """
    width = _check_granularity(granularity)
    grouped: Dict[datetime, List[Any]] = {}
    for row in rows:
        start = bucket_start(timestamp_of(row), granularity)
        grouped.setdefault(start, []).append(row)

    if not grouped:
        return []

    starts = sorted(grouped)
    if zero_fill:
        first, last = starts[0], starts[-1]
        if window is not None and window.start is not None:
            first = min(first, bucket_start(window.start, granularity))
        if window is not None and window.end is not None:
            last = max(last, bucket_start(window.end, granularity))
        step = timedelta(minutes=width)
        starts = []
        cursor = first
        while cursor <= last:
            starts.append(cursor)
            cursor += step

    series = []
    for start in starts:
        bucket_rows = grouped.get(start, [])
        series.append(TimeBucket(
            key=format_key(start, granularity),
            start=start,
            label=format_label(start, granularity),
            values={name: metric(bucket_rows) for name, metric in metrics.items()},
        ))
    return series
