"""
Web Vitals Summary
==================

WHAT:
    Per-metric distribution of Core Web Vitals samples (percentiles,
    min/max/mean, rating counts) and the share of samples rated GOOD.

WHY:
    Session averages hide the tail. p75 is the value Google grades a page
    on, so the raw per-event samples are summarized here instead.

RULES:
    - A sample is one non-null metric value on one event; the event's
      vital_rating applies to every metric it carries.
    - Percentile p of n sorted values is values[floor(n * p)] (nearest rank,
      no interpolation).
    - Metrics without samples are omitted; an empty input summarizes to no
      metrics and a 0 passing rate.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from funnel_analytics.models import VitalRatingEnum
from funnel_analytics.services.rollup import pct, safe_div

VITAL_METRICS = ("lcp", "inp", "cls", "fcp", "ttfb")
PERCENTILES = {"p50": 0.5, "p75": 0.75, "p90": 0.9, "p95": 0.95}


@dataclass
class VitalSample:
    metric: str
    value: float
    rating: Optional[str]


@dataclass
class MetricSummary:
    metric: str
    total: int
    avg: float
    p50: float
    p75: float
    p90: float
    p95: float
    min: float
    max: float
    good_count: int
    needs_improvement_count: int
    poor_count: int
    good_percent: float
    needs_improvement_percent: float
    poor_percent: float


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile over ascending values, 0 for no values."""
    if not sorted_values:
        return 0.0
    index = min(int(math.floor(len(sorted_values) * p)), len(sorted_values) - 1)
    return sorted_values[index]


def _rating_value(rating: Any) -> Optional[str]:
    if rating is None:
        return None
    return rating.value if isinstance(rating, VitalRatingEnum) else str(rating)


def samples_from_events(events: Iterable[Any]) -> List[VitalSample]:
    """Explode event rows (lcp, inp, cls, fcp, ttfb, vital_rating) into samples."""
    samples = []
    for event in events:
        rating = _rating_value(event.vital_rating)
        for metric in VITAL_METRICS:
            value = getattr(event, metric)
            if value is not None:
                samples.append(VitalSample(metric=metric, value=float(value), rating=rating))
    return samples


def summarize_metric(metric: str, samples: Sequence[VitalSample]) -> MetricSummary:
    values = sorted(s.value for s in samples)
    total = len(values)
    good = sum(1 for s in samples if s.rating == VitalRatingEnum.good.value)
    needs_improvement = sum(1 for s in samples if s.rating == VitalRatingEnum.needs_improvement.value)
    poor = sum(1 for s in samples if s.rating == VitalRatingEnum.poor.value)

    return MetricSummary(
        metric=metric,
        total=total,
        avg=safe_div(sum(values), total),
        min=values[0] if values else 0.0,
        max=values[-1] if values else 0.0,
        good_count=good,
        needs_improvement_count=needs_improvement,
        poor_count=poor,
        good_percent=pct(good, total),
        needs_improvement_percent=pct(needs_improvement, total),
        poor_percent=pct(poor, total),
        **{name: percentile(values, p) for name, p in PERCENTILES.items()},
    )


def summarize_vitals(samples: Sequence[VitalSample]) -> Dict[str, Any]:
    """
    Summaries per metric in VITAL_METRICS order, plus the overall GOOD share.

    Returns:
        {"stats": [MetricSummary, ...], "passing_rate": float, "total_vitals": int}
    """
    by_metric: Dict[str, List[VitalSample]] = {}
    for sample in samples:
        by_metric.setdefault(sample.metric, []).append(sample)

    stats = [summarize_metric(m, by_metric[m]) for m in VITAL_METRICS if m in by_metric]
    passing = sum(1 for s in samples if s.rating == VitalRatingEnum.good.value)
    return {
        "stats": stats,
        "passing_rate": pct(passing, len(samples)),
        "total_vitals": len(samples),
    }
