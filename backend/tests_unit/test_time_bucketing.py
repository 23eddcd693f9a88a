"""
Time Bucketing Tests (Unit)
===========================

WHAT: Unit tests for bucket keys, labels and series aggregation.
WHY: Trend charts from different analyses are overlaid by key, so every
     analysis must bucket identically and keys must sort chronologically.

REFERENCES:
- backend/funnel_analytics/services/time_buckets.py
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from funnel_analytics.services import time_buckets as tb
from funnel_analytics.services.time_range import TimeWindow


TS = datetime(2025, 12, 30, 14, 17, 42)


@pytest.mark.parametrize(
    "granularity,key,label",
    [
        ("15min", "2025-12-30T14:15", "Dec 30 14:15"),
        ("30min", "2025-12-30T14:00", "Dec 30 14:00"),
        ("hour", "2025-12-30T14:00", "Dec 30 14:00"),
        ("4hour", "2025-12-30T12:00", "Dec 30 12:00"),
        ("day", "2025-12-30", "Dec 30"),
    ],
)
def test_bucket_key_and_label(granularity, key, label) -> None:
    start = tb.bucket_start(TS, granularity)

    assert tb.bucket_key(TS, granularity) == key
    assert tb.format_label(start, granularity) == label
    assert start <= TS


def test_aware_timestamps_are_bucketed_in_utc() -> None:
    aware = datetime(2025, 12, 30, 15, 17, tzinfo=timezone(timedelta(hours=1)))

    assert tb.bucket_key(aware, "hour") == "2025-12-30T14:00"


def test_unknown_granularity_raises() -> None:
    with pytest.raises(ValueError):
        tb.bucket_key(TS, "week")


def test_series_is_chronological_and_partitions_rows() -> None:
    rows = [
        SimpleNamespace(ts=TS + timedelta(hours=h), value=v)
        for h, v in [(5, 1), (0, 2), (0, None), (26, 4)]
    ]

    series = tb.aggregate_series(
        rows, "day",
        timestamp_of=lambda r: r.ts,
        metrics={"n": tb.count(), "total": tb.total(lambda r: r.value), "avg": tb.mean(lambda r: r.value)},
    )

    keys = [b.key for b in series]
    assert keys == sorted(keys) == ["2025-12-30", "2025-12-31"]
    assert sum(b.values["n"] for b in series) == len(rows)
    assert series[0].values["total"] == 3
    assert series[0].values["avg"] == pytest.approx(1.5)
    assert series[1].to_dict() == {"date": "2025-12-31", "label": "Dec 31", "n": 1, "total": 4, "avg": 4}


def test_empty_input_yields_empty_series_even_with_zero_fill() -> None:
    window = TimeWindow(start=TS - timedelta(days=3), end=TS)

    assert tb.aggregate_series([], "day", lambda r: r, {"n": tb.count()}, zero_fill=True, window=window) == []


def test_zero_fill_spans_the_window() -> None:
    window = TimeWindow(start=TS - timedelta(days=2), end=TS)
    rows = [TS]

    series = tb.aggregate_series(rows, "day", lambda r: r, {"n": tb.count()}, zero_fill=True, window=window)

    assert [b.key for b in series] == ["2025-12-28", "2025-12-29", "2025-12-30"]
    assert [b.values["n"] for b in series] == [0, 0, 1]


def test_mean_without_skip_counts_missing_as_zero() -> None:
    rows = [SimpleNamespace(v=10), SimpleNamespace(v=None)]

    assert tb.mean(lambda r: r.v, skip_none=False)(rows) == 5
    assert tb.mean(lambda r: r.v)([]) == 0
