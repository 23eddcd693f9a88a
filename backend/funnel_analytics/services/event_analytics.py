"""
Event-level Analyses
====================

WHAT:
    Handlers computed over individual funnel events: trends, category and
    micro-conversion breakdowns, dynamic property breakdowns, frequency,
    geography/device/browser rollups, engagement, the purchase heatmap and
    Web Vitals percentiles.

WHY:
    Session-level analyses answer "who converted"; these answer "what did
    visitors do". Event rows are loaded once per handler with only the
    columns the handler needs.

CONVENTIONS:
    Same as session_analytics: (db, funnel_id, window, **params) -> dict,
    rounding only at the response boundary.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from funnel_analytics.models import FunnelEvent, FunnelSession
from funnel_analytics.services import time_buckets as tb
from funnel_analytics.services.attribution import UNKNOWN, display_country_name
from funnel_analytics.services.engagement import (
    count_per_visitor,
    event_engagement as score_event_engagement,
    frequency_distribution,
    overall_engagement,
)
from funnel_analytics.services.rollup import (
    first_seen,
    group_by_property,
    pct,
    rollup,
    rollup_by_keys,
    round2,
    round_pct,
    safe_div,
    to_float,
)
from funnel_analytics.services.store_reader import PAGE_VIEW, FunnelStore
from funnel_analytics.services.time_range import TimeWindow
from funnel_analytics.services.web_vitals import samples_from_events, summarize_vitals

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"
CONVERSION_CATEGORY = "conversion"
TREND_INTERVALS = ("hour", "day")
DAYS_OF_WEEK = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _category(event) -> str:
    return event.event_category or UNCATEGORIZED


def _trend_category(event) -> str:
    return CONVERSION_CATEGORY if event.is_conversion else _category(event)


# =============================================================================
# TRENDS
# =============================================================================

def events_trend(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    interval: Optional[str] = None,
) -> Dict[str, Any]:
    """Page views vs custom events per bucket, top event types and totals."""
    interval = interval or window.default_interval
    if interval not in TREND_INTERVALS:
        raise ValueError(f"interval must be one of {TREND_INTERVALS}")

    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.event_name, FunnelEvent.event_category, FunnelEvent.is_conversion,
        FunnelEvent.revenue, FunnelEvent.timestamp,
    )
    series = tb.aggregate_series(
        events, interval,
        timestamp_of=lambda e: e.timestamp,
        metrics={
            "page_views": tb.count_where(lambda e: e.event_name == PAGE_VIEW),
            "custom_events": tb.count_where(lambda e: e.event_name != PAGE_VIEW),
            "conversions": tb.count_where(lambda e: e.is_conversion),
            "total_events": tb.count(),
            "revenue": tb.total(lambda e: e.revenue),
        },
    )
    event_types = rollup(events, lambda e: e.event_name, keep_rows=True)[:20]

    return {
        "interval": interval,
        "trend": [
            {**b.to_dict(), "revenue": round2(b.values["revenue"])}
            for b in series
        ],
        "event_types": [
            {
                "event_name": g.key,
                "category": first_seen((e.event_category for e in g.rows), UNCATEGORIZED),
                "count": g.count,
                "percentage": round_pct(g.percentage),
            }
            for g in event_types
        ],
        "totals": {
            "total_events": len(events),
            "page_views": sum(1 for e in events if e.event_name == PAGE_VIEW),
            "custom_events": sum(1 for e in events if e.event_name != PAGE_VIEW),
            "conversions": sum(1 for e in events if e.is_conversion),
            "revenue": round2(sum(to_float(e.revenue) for e in events)),
        },
    }


def events_over_time(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    interval: Optional[str] = None,
    event_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Sparse series of event and conversion counts."""
    interval = interval or window.default_interval
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.is_conversion, FunnelEvent.timestamp,
        event_name=event_name,
    )
    series = tb.aggregate_series(
        events, interval,
        timestamp_of=lambda e: e.timestamp,
        metrics={
            "events": tb.count(),
            "conversions": tb.count_where(lambda e: e.is_conversion),
        },
    )
    return {"interval": interval, "data": [b.to_dict() for b in series]}


def event_category_trend(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    interval: Optional[str] = None,
) -> Dict[str, Any]:
    """Per-bucket event counts by category; conversions count as 'conversion'."""
    interval = interval or window.default_interval
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.event_category, FunnelEvent.is_conversion, FunnelEvent.timestamp,
    )
    categories = sorted({_trend_category(e) for e in events})
    series = tb.aggregate_series(
        events, interval,
        timestamp_of=lambda e: e.timestamp,
        metrics={
            category: tb.count_where(lambda e, category=category: _trend_category(e) == category)
            for category in categories
        },
    )
    return {
        "interval": interval,
        "categories": categories,
        "data": [
            {"date": b.key, "label": b.label, "counts": b.values}
            for b in series
        ],
    }


# =============================================================================
# MICRO-CONVERSIONS
# =============================================================================

def _distinct_sessions(events) -> List[str]:
    return list(dict.fromkeys(e.session_id for e in events))


def category_breakdown(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Micro-conversion events grouped by category."""
    store = FunnelStore(db)
    events = store.events(
        funnel_id, window,
        FunnelEvent.session_id, FunnelEvent.event_category, FunnelEvent.micro_conversion_value,
        micro_conversions_only=True,
    )
    converted = store.sessions_by_client_id(e.session_id for e in events)

    categories = []
    for g in rollup(events, _category, keep_rows=True):
        sessions = _distinct_sessions(g.rows)
        converted_sessions = sum(1 for sid in sessions if converted.get(sid))
        values = [to_float(e.micro_conversion_value) for e in g.rows if e.micro_conversion_value is not None]
        categories.append({
            "category": g.key,
            "count": g.count,
            "avg_value": round_pct(safe_div(sum(values), len(values))),
            "sessions": len(sessions),
            "converted_sessions": converted_sessions,
            "conversion_rate": round2(pct(converted_sessions, len(sessions))),
            "percentage": round_pct(g.percentage),
        })

    return {"total_events": len(events), "categories": categories}


def top_micro_conversions(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    limit: int = 20,
    min_sessions: int = 5,
) -> Dict[str, Any]:
    """
    Micro-conversions ranked by how often their sessions convert.

    Groups reached by fewer than min_sessions distinct sessions are dropped
    as too small to rank.
    """
    store = FunnelStore(db)
    events = store.events(
        funnel_id, window,
        FunnelEvent.session_id, FunnelEvent.event_name, FunnelEvent.micro_conversion_type,
        FunnelEvent.event_category, FunnelEvent.event_description, FunnelEvent.micro_conversion_value,
        micro_conversions_only=True,
    )
    converted = store.sessions_by_client_id(e.session_id for e in events)

    ranked = []
    groups = rollup_by_keys(
        events,
        [
            lambda e: e.micro_conversion_type or e.event_name,
            _category,
            lambda e: e.event_description,
        ],
        keep_rows=True,
    )
    for g in groups:
        sessions = _distinct_sessions(g.rows)
        if len(sessions) < min_sessions:
            continue
        converted_sessions = sum(1 for sid in sessions if converted.get(sid))
        values = [to_float(e.micro_conversion_value) for e in g.rows if e.micro_conversion_value is not None]
        ranked.append({
            "micro_conversion_type": g.key[0],
            "category": g.key[1],
            "description": g.key[2],
            "count": g.count,
            "unique_sessions": len(sessions),
            "converted_sessions": converted_sessions,
            "conversion_rate": pct(converted_sessions, len(sessions)),
            "avg_value": round_pct(safe_div(sum(values), len(values))),
        })

    ranked.sort(key=lambda r: (r["conversion_rate"], r["unique_sessions"]), reverse=True)
    for row in ranked:
        row["conversion_rate"] = round2(row["conversion_rate"])
    return {"micro_conversions": ranked[:limit]}


# =============================================================================
# PROPERTIES / FREQUENCY
# =============================================================================

def event_properties_breakdown(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    event_name: Optional[str] = None,
    limit: int = 10,
) -> Dict[str, Any]:
    """One rollup per property key discovered in the window's events."""
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.event_properties, FunnelEvent.revenue,
        event_name=event_name,
    )
    breakdown = group_by_property(
        events,
        lambda e: e.event_properties if isinstance(e.event_properties, dict) else None,
        missing=UNKNOWN,
        revenue_fn=lambda e: e.revenue,
    )
    return {
        "event_name": event_name,
        "total_events": len(events),
        "properties": [
            {
                "property": name,
                "values": [
                    {
                        "value": g.key,
                        "count": g.count,
                        "revenue": round2(g.revenue),
                        "percentage": round_pct(g.percentage),
                    }
                    for g in groups[:limit]
                ],
                "distinct_values": len(groups),
            }
            for name, groups in breakdown.items()
        ],
    }


def event_frequency(db: Session, funnel_id: str, window: TimeWindow, event_name: str) -> Dict[str, Any]:
    """How many times each visitor fired one event, bucketed.

    Raises:
        ValueError: missing event name
    """
    if not event_name:
        raise ValueError("event_name is required")

    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.user_id, FunnelEvent.anonymous_id,
        event_name=event_name,
    )
    per_visitor = count_per_visitor(events)
    buckets = frequency_distribution(per_visitor.values())
    total_events = sum(per_visitor.values())

    return {
        "event_name": event_name,
        "total_users": len(per_visitor),
        "total_events": total_events,
        "avg_frequency": round_pct(safe_div(total_events, len(per_visitor))),
        "distribution": [
            {
                "bucket": b.label,
                "label": f"{b.label}x",
                "user_count": b.visitors,
                "total_events": b.total_events,
                "percentage": round_pct(b.percentage),
                "avg_frequency": round_pct(safe_div(b.total_events, b.visitors)),
            }
            for b in buckets
        ],
    }


# =============================================================================
# EVENT-LEVEL DIMENSIONS
# =============================================================================

def _event_dimension_rows(groups, name_field: Optional[str], limit: int) -> List[Dict[str, Any]]:
    return [
        {
            **({name_field: g.key} if name_field else {}),
            "count": g.count,
            "conversions": g.converted,
            "conversion_rate": round_pct(g.conversion_rate),
            "revenue": round2(g.revenue),
            "percentage": round_pct(g.percentage),
        }
        for g in groups[:limit]
    ]


def event_geography(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    event_name: Optional[str] = None,
    limit: int = 10,
) -> Dict[str, Any]:
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.country_code, FunnelEvent.country_name, FunnelEvent.city,
        FunnelEvent.is_conversion, FunnelEvent.revenue,
        event_name=event_name,
    )
    common = dict(revenue_fn=lambda e: e.revenue, converted_fn=lambda e: e.is_conversion)
    countries = rollup(events, lambda e: e.country_code or UNKNOWN, keep_rows=True, **common)
    cities = rollup(events, lambda e: e.city or UNKNOWN, **common)
    return {
        "total_events": len(events),
        "countries": [
            {
                "country_code": g.key,
                "country_name": display_country_name(g.key, (e.country_name for e in g.rows)),
                **row,
            }
            for g, row in zip(countries, _event_dimension_rows(countries, None, limit))
        ],
        "cities": _event_dimension_rows(cities, "city", limit),
    }


def event_devices(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    event_name: Optional[str] = None,
    limit: int = 10,
) -> Dict[str, Any]:
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.device_type, FunnelEvent.os_name, FunnelEvent.is_conversion, FunnelEvent.revenue,
        event_name=event_name,
    )
    common = dict(revenue_fn=lambda e: e.revenue, converted_fn=lambda e: e.is_conversion)
    return {
        "total_events": len(events),
        "devices": _event_dimension_rows(rollup(events, lambda e: e.device_type or UNKNOWN, **common), "device", limit),
        "operating_systems": _event_dimension_rows(rollup(events, lambda e: e.os_name or UNKNOWN, **common), "os", limit),
    }


def event_browsers(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    event_name: Optional[str] = None,
    limit: int = 10,
) -> Dict[str, Any]:
    """Browser rollup, with each browser's most common version."""
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.browser_name, FunnelEvent.browser_version, FunnelEvent.is_conversion, FunnelEvent.revenue,
        event_name=event_name,
    )
    groups = rollup(
        events, lambda e: e.browser_name or UNKNOWN,
        revenue_fn=lambda e: e.revenue,
        converted_fn=lambda e: e.is_conversion,
        keep_rows=True,
    )
    browsers = []
    for g, row in zip(groups[:limit], _event_dimension_rows(groups, "browser", limit)):
        versions = rollup([e for e in g.rows if e.browser_version], lambda e: e.browser_version)
        browsers.append({
            **row,
            "top_version": versions[0].key if versions else None,
            "total_versions": len(versions),
        })
    return {"total_events": len(events), "browsers": browsers}


# =============================================================================
# ENGAGEMENT / HEATMAP
# =============================================================================

def event_engagement(db: Session, funnel_id: str, window: TimeWindow, limit: int = 20) -> Dict[str, Any]:
    """Engagement per event over sessions that measured engagement."""
    store = FunnelStore(db)
    sessions = store.sessions(
        funnel_id, window,
        FunnelSession.session_id, FunnelSession.engagement_rate, FunnelSession.active_time_seconds,
        FunnelSession.duration_seconds, FunnelSession.converted, FunnelSession.conversion_value,
        with_engagement=True,
    )
    events = store.events(funnel_id, window, FunnelEvent.session_id, FunnelEvent.event_name)
    scored = score_event_engagement(sessions, events)
    measured, avg_engagement = overall_engagement(sessions)

    return {
        "sessions_with_engagement": measured,
        "avg_engagement": round_pct(avg_engagement),
        "events": [
            {
                "event_name": r.event_name,
                "occurrences": r.occurrences,
                "sessions": r.sessions,
                "avg_engagement": round_pct(r.avg_engagement),
                "avg_duration": round(r.avg_duration),
                "avg_active_time": round(r.avg_active_time),
                "conversions": r.conversions,
                "conversion_rate": round_pct(r.conversion_rate),
                "revenue": round2(r.revenue),
            }
            for r in scored[:limit]
        ],
    }


def day_of_week(ts) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (ts.weekday() + 1) % 7


def purchase_heatmap(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """7x24 grid of conversion events and revenue by weekday and hour (UTC)."""
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.timestamp, FunnelEvent.revenue,
        conversions_only=True,
    )
    counts = [[0] * 24 for _ in range(7)]
    revenue = [[0.0] * 24 for _ in range(7)]
    for event in events:
        day, hour = day_of_week(event.timestamp), event.timestamp.hour
        counts[day][hour] += 1
        revenue[day][hour] += to_float(event.revenue)

    cells = []
    peak = None
    for day in range(7):
        for hour in range(24):
            cell = {
                "day": day,
                "day_name": DAYS_OF_WEEK[day],
                "hour": hour,
                "count": counts[day][hour],
                "revenue": round2(revenue[day][hour]),
            }
            cells.append(cell)
            # Strictly greater: the first maximum in day-major order wins
            if cell["count"] > (peak["count"] if peak else 0):
                peak = cell

    return {
        "cells": cells,
        "peak": peak,
        "total_purchases": len(events),
        "total_revenue": round2(sum(to_float(e.revenue) for e in events)),
    }


# =============================================================================
# WEB VITALS
# =============================================================================

def _vital_value(metric: str, value: float) -> float:
    # CLS is unitless and small; the others are milliseconds
    return round(value, 3) if metric == "cls" else round2(value)


def web_vitals_stats(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Percentiles and rating mix per Web Vitals metric over the window's events."""
    events = FunnelStore(db).events(
        funnel_id, window,
        FunnelEvent.lcp, FunnelEvent.inp, FunnelEvent.cls, FunnelEvent.fcp, FunnelEvent.ttfb,
        FunnelEvent.vital_rating,
        with_vitals=True,
    )
    summary = summarize_vitals(samples_from_events(events))

    stats = []
    for s in summary["stats"]:
        stats.append({
            "metric": s.metric,
            "total": s.total,
            **{
                name: _vital_value(s.metric, getattr(s, name))
                for name in ("avg", "p50", "p75", "p90", "p95", "min", "max")
            },
            "good_count": s.good_count,
            "needs_improvement_count": s.needs_improvement_count,
            "poor_count": s.poor_count,
            "good_percent": round_pct(s.good_percent),
            "needs_improvement_percent": round_pct(s.needs_improvement_percent),
            "poor_percent": round_pct(s.poor_percent),
        })

    return {
        "stats": stats,
        "passing_rate": round_pct(summary["passing_rate"]),
        "total_vitals": summary["total_vitals"],
    }
