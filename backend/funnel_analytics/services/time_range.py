"""
Time Range Resolution
=====================

WHAT:
    Turns a named preset (24h, 7d, 30d, 90d, all) or an explicit start/end
    pair into a concrete TimeWindow before any analysis runs.

WHY:
    Analyses only ever see an explicit window; presets are resolved once at
    the edge so every sub-analysis of a dashboard uses the same bounds.

NOTE:
    Timestamps are stored as naive UTC. Aware datetimes coming in through
    query params are converted to UTC and made naive.

REFERENCES:
    - funnel_analytics/deps.py: get_time_window dependency
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from funnel_analytics.errors import InvalidTimeRangeError


PRESETS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
ALL_TIME = "all"
DEFAULT_PRESET = "7d"


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive analysis window. start=None means unbounded."""
    start: Optional[datetime]
    end: Optional[datetime]
    preset: Optional[str] = None

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True

    @property
    def default_interval(self) -> str:
        """Bucket granularity a trend should use when the caller gives none."""
        if self.preset == "24h":
            return "hour"
        if self.preset is None and self.start is not None and self.end is not None:
            return "hour" if self.end - self.start <= timedelta(days=2) else "day"
        return "day"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_time_range(
    preset: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> TimeWindow:
    """
    Resolve a preset or explicit range into a TimeWindow.

    An explicit start/end takes precedence over the preset. With neither,
    the default preset (7d) applies.

    Raises:
        InvalidTimeRangeError: unknown preset, or start after end
    """
    now = to_naive_utc(now) or utcnow()

    if start is not None or end is not None:
        start = to_naive_utc(start)
        end = to_naive_utc(end) or now
        if start is not None and start > end:
            raise InvalidTimeRangeError("start_date must not be after end_date")
        return TimeWindow(start=start, end=end)

    preset = (preset or DEFAULT_PRESET).strip().lower()
    if preset == ALL_TIME:
        return TimeWindow(start=None, end=now, preset=ALL_TIME)

    delta = PRESETS.get(preset)
    if delta is None:
        raise InvalidTimeRangeError(
            f"Unknown time range '{preset}'. Expected one of: {', '.join([*PRESETS, ALL_TIME])}"
        )
    return TimeWindow(start=now - delta, end=now, preset=preset)
