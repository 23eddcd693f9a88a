"""
Session-level Analyses
======================

WHAT:
    Handlers for the analyses computed over funnel sessions: overview,
    traffic sources, UTM, session trend, device, geography, performance,
    page flow, stage flow and conversion attribution.

WHY:
    Each handler loads its rows once through FunnelStore and routes them
    through one aggregator. They never verify the funnel themselves; the
    router (or dashboard) does that once per request.

CONVENTIONS:
    - Signature: (db, funnel_id, window, **params) -> dict
    - Rates are percentage points (0-100), durations seconds, revenue raw
      currency units
    - Rounding happens here, at the response boundary, never in aggregators

REFERENCES:
    - funnel_analytics/services/rollup.py
    - funnel_analytics/services/attribution.py
    - funnel_analytics/routers/funnel_analytics.py
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from funnel_analytics.models import FunnelEvent, FunnelSession
from funnel_analytics.services import time_buckets as tb
from funnel_analytics.services.attribution import (
    UNKNOWN,
    attribution_split,
    display_country_name,
    has_known_geo,
    resolve_geographies,
    resolve_touch,
)
from funnel_analytics.services.flow_graph import build_flow
from funnel_analytics.services.rollup import (
    pct,
    rollup,
    rollup_by_keys,
    round2,
    round_pct,
    safe_div,
    to_float,
)
from funnel_analytics.services.stage_flow import count_stages, stage_flow
from funnel_analytics.services.store_reader import PAGE_VIEW, FunnelStore
from funnel_analytics.services.time_range import TimeWindow
from funnel_analytics.telemetry import capture_message

logger = logging.getLogger(__name__)


UTM_GROUPINGS = ("source", "medium", "campaign", "all")
FLOW_EVENT_TYPES = ("page_view", "all")

# (label, lower bound inclusive, upper bound exclusive; None = open)
DURATION_BUCKETS = [
    ("0-30s", 0, 30),
    ("30s-1m", 30, 60),
    ("1-2m", 60, 120),
    ("2-5m", 120, 300),
    ("5-10m", 300, 600),
    ("10m+", 600, None),
]

VITALS = ("lcp", "inp", "cls", "fcp", "ttfb")


def _source(s) -> str:
    return s.first_source or "Direct"


def _medium(s) -> str:
    return s.first_medium or "None"


def _campaign(s) -> str:
    return s.first_campaign or "None"


def _mean_of(values: List[Any]) -> Optional[float]:
    """Mean over non-null values, None without samples."""
    present = [to_float(v) for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


# =============================================================================
# OVERVIEW
# =============================================================================

def overview(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Headline counters plus the top UTM combinations over events."""
    store = FunnelStore(db)
    events = store.events(
        funnel_id, window,
        FunnelEvent.session_id, FunnelEvent.event_name, FunnelEvent.is_conversion,
        FunnelEvent.revenue, FunnelEvent.utm_source, FunnelEvent.utm_medium, FunnelEvent.utm_campaign,
    )
    sessions = store.sessions(funnel_id, window, FunnelSession.session_id, FunnelSession.duration_seconds)

    conversions = [e for e in events if e.is_conversion]
    durations = [s.duration_seconds for s in sessions if s.duration_seconds is not None]

    top_utm = rollup_by_keys(
        [e for e in events if e.utm_source],
        [lambda e: e.utm_source, lambda e: e.utm_medium, lambda e: e.utm_campaign],
    )[:10]

    return {
        "total_events": len(events),
        "total_sessions": len(sessions),
        "page_views": sum(1 for e in events if e.event_name == PAGE_VIEW),
        "conversions": len(conversions),
        "revenue": round2(sum(to_float(e.revenue) for e in conversions)),
        "avg_session_duration": round(safe_div(sum(durations), len(durations))),
        "top_utm": [
            {
                "source": g.key[0],
                "medium": g.key[1],
                "campaign": g.key[2],
                "events": g.count,
            }
            for g in top_utm
        ],
    }


# =============================================================================
# TRAFFIC SOURCES / UTM
# =============================================================================

def traffic_sources(db: Session, funnel_id: str, window: TimeWindow, limit: int = 20) -> Dict[str, Any]:
    """First-touch source/medium/campaign breakdown of sessions."""
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.first_source, FunnelSession.first_medium, FunnelSession.first_campaign,
        FunnelSession.converted, FunnelSession.conversion_value,
    )
    groups = rollup_by_keys(
        sessions, [_source, _medium, _campaign],
        revenue_fn=lambda s: s.conversion_value,
        converted_fn=lambda s: s.converted,
    )
    return {
        "total_sessions": len(sessions),
        "sources": [
            {
                "source": g.key[0],
                "medium": g.key[1],
                "campaign": g.key[2],
                "sessions": g.count,
                "conversions": g.converted,
                "conversion_rate": round_pct(g.conversion_rate),
                "revenue": round2(g.revenue),
                "percentage": round_pct(g.percentage),
            }
            for g in groups[:limit]
        ],
    }


def utm_analytics(db: Session, funnel_id: str, window: TimeWindow, group_by: str = "source") -> Dict[str, Any]:
    """
    First-touch UTM breakdown along one dimension, or all three combined.

    Raises:
        ValueError: unknown group_by
    """
    if group_by not in UTM_GROUPINGS:
        raise ValueError(f"group_by must be one of {UTM_GROUPINGS}")

    key_fns = {
        "source": lambda s: _source(s),
        "medium": lambda s: _medium(s),
        "campaign": lambda s: _campaign(s),
        "all": lambda s: f"{_source(s)}|{_medium(s)}|{_campaign(s)}",
    }
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.first_source, FunnelSession.first_medium, FunnelSession.first_campaign,
        FunnelSession.converted, FunnelSession.conversion_value, FunnelSession.page_views,
    )
    groups = rollup(
        sessions, key_fns[group_by],
        revenue_fn=lambda s: s.conversion_value,
        converted_fn=lambda s: s.converted,
        sums={"page_views": lambda s: s.page_views},
        keep_rows=True,
    )

    rows = []
    for g in groups:
        first = g.rows[0]
        rows.append({
            "key": g.key,
            "source": _source(first) if group_by in ("source", "all") else None,
            "medium": _medium(first) if group_by in ("medium", "all") else None,
            "campaign": _campaign(first) if group_by in ("campaign", "all") else None,
            "sessions": g.count,
            "conversions": g.converted,
            "conversion_rate": round2(g.conversion_rate),
            "revenue": round2(g.revenue),
            "avg_page_views": round2(g.mean("page_views")),
            "avg_revenue": round2(safe_div(g.revenue, g.count)),
            "revenue_per_conversion": round2(safe_div(g.revenue, g.converted)),
        })

    total_conversions = sum(g.converted for g in groups)
    total_revenue = sum(g.revenue for g in groups)
    return {
        "group_by": group_by,
        "data": rows,
        "totals": {
            "sessions": len(sessions),
            "conversions": total_conversions,
            "revenue": round2(total_revenue),
            "conversion_rate": round2(pct(total_conversions, len(sessions))),
        },
    }


# =============================================================================
# SESSION TREND
# =============================================================================

def duration_bucket(seconds: Any) -> str:
    seconds = to_float(seconds)
    for label, low, high in DURATION_BUCKETS:
        if seconds >= low and (high is None or seconds < high):
            return label
    return DURATION_BUCKETS[0][0]


def sessions_trend(
    db: Session,
    funnel_id: str,
    window: TimeWindow,
    interval: Optional[str] = None,
) -> Dict[str, Any]:
    """Per-bucket session metrics, duration distribution and totals."""
    interval = interval or window.default_interval
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.started_at, FunnelSession.page_views, FunnelSession.converted,
        FunnelSession.conversion_value, FunnelSession.duration_seconds, FunnelSession.experience_score,
    )

    series = tb.aggregate_series(
        sessions, interval,
        timestamp_of=lambda s: s.started_at,
        metrics={
            "sessions": tb.count(),
            "page_views": tb.total(lambda s: s.page_views),
            "conversions": tb.count_where(lambda s: s.converted),
            "revenue": tb.total(lambda s: s.conversion_value),
            "avg_duration": tb.mean(lambda s: s.duration_seconds, skip_none=False),
            "avg_experience_score": tb.mean(lambda s: s.experience_score),
        },
    )
    trend = []
    for bucket in series:
        values = bucket.values
        trend.append({
            "date": bucket.key,
            "label": bucket.label,
            "sessions": values["sessions"],
            "page_views": int(values["page_views"]),
            "conversions": values["conversions"],
            "revenue": round2(values["revenue"]),
            "avg_duration": round(values["avg_duration"]),
            "avg_experience_score": round(values["avg_experience_score"]),
        })

    distribution = rollup(
        [s for s in sessions if s.duration_seconds is not None],
        lambda s: duration_bucket(s.duration_seconds),
    )
    by_label = {g.key: g for g in distribution}

    converted = sum(1 for s in sessions if s.converted)
    return {
        "interval": interval,
        "trend": trend,
        "duration_distribution": [
            {
                "range": label,
                "sessions": by_label[label].count if label in by_label else 0,
                "percentage": round_pct(by_label[label].percentage) if label in by_label else 0.0,
            }
            for label, _, _ in DURATION_BUCKETS
        ],
        "totals": {
            "sessions": len(sessions),
            "page_views": sum(s.page_views or 0 for s in sessions),
            "conversions": converted,
            "revenue": round2(sum(to_float(s.conversion_value) for s in sessions)),
            "conversion_rate": round2(pct(converted, len(sessions))),
            "avg_duration": round(safe_div(sum(to_float(s.duration_seconds) for s in sessions), len(sessions))),
            "avg_page_views": round2(safe_div(sum(s.page_views or 0 for s in sessions), len(sessions))),
        },
    }


# =============================================================================
# DEVICE / GEOGRAPHY
# =============================================================================

def _dimension_rows(groups, name_field: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return [
        {
            name_field: g.key,
            "sessions": g.count,
            "conversions": g.converted,
            "conversion_rate": round_pct(g.conversion_rate),
            "revenue": round2(g.revenue),
            "percentage": round_pct(g.percentage),
        }
        for g in (groups[:limit] if limit else groups)
    ]


def device_analytics(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Device type, browser and OS breakdowns of sessions."""
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.device_type, FunnelSession.browser_name, FunnelSession.os_name,
        FunnelSession.converted, FunnelSession.conversion_value,
    )
    common = dict(revenue_fn=lambda s: s.conversion_value, converted_fn=lambda s: s.converted)
    return {
        "total_sessions": len(sessions),
        "devices": _dimension_rows(rollup(sessions, lambda s: s.device_type or UNKNOWN, **common), "device"),
        "browsers": _dimension_rows(rollup(sessions, lambda s: s.browser_name or UNKNOWN, **common), "browser"),
        "operating_systems": _dimension_rows(rollup(sessions, lambda s: s.os_name or UNKNOWN, **common), "os"),
    }


def geography_analytics(db: Session, funnel_id: str, window: TimeWindow, city_limit: int = 20) -> Dict[str, Any]:
    """Country and city breakdowns after event-level geography fallback."""
    store = FunnelStore(db)
    sessions = store.sessions(
        funnel_id, window,
        FunnelSession.session_id, FunnelSession.country_code, FunnelSession.country_name,
        FunnelSession.region, FunnelSession.city,
        FunnelSession.converted, FunnelSession.conversion_value,
    )
    geos = resolve_geographies(store, funnel_id, sessions, window)
    rows = [(s, geos[s.session_id]) for s in sessions]

    common = dict(
        revenue_fn=lambda r: r[0].conversion_value,
        converted_fn=lambda r: r[0].converted,
    )
    countries = rollup(rows, lambda r: r[1].country_code, keep_rows=True, **common)
    cities = rollup_by_keys(
        [r for r in rows if has_known_geo(r[1].city)],
        [lambda r: r[1].city, lambda r: r[1].country_code],
        total=len(rows),
        **common,
    )

    return {
        "total_sessions": len(sessions),
        "countries": [
            {
                "country_code": g.key,
                "country_name": display_country_name(g.key, (r[1].country_name for r in g.rows)),
                "sessions": g.count,
                "conversions": g.converted,
                "conversion_rate": round_pct(g.conversion_rate),
                "revenue": round2(g.revenue),
                "percentage": round_pct(g.percentage),
            }
            for g in countries
        ],
        "cities": [
            {
                "city": g.key[0],
                "country_code": g.key[1],
                "sessions": g.count,
                "conversions": g.converted,
                "conversion_rate": round_pct(g.conversion_rate),
                "revenue": round2(g.revenue),
                "percentage": round_pct(g.percentage),
            }
            for g in cities[:city_limit]
        ],
    }


# =============================================================================
# PERFORMANCE
# =============================================================================

def _vital(name: str, value: Optional[float]) -> Optional[float]:
    """Milliseconds and scores as integers; CLS is unitless and stays fractional."""
    if value is None:
        return None
    if name == "cls":
        return round(value, 3)
    return round(value)


def performance_analytics(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Core Web Vitals means overall and per device type."""
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.device_type, FunnelSession.avg_lcp, FunnelSession.avg_inp, FunnelSession.avg_cls,
        FunnelSession.avg_fcp, FunnelSession.avg_ttfb, FunnelSession.experience_score,
    )
    overall = {
        f"avg_{name}": _vital(name, _mean_of([getattr(s, f"avg_{name}") for s in sessions]))
        for name in VITALS
    }

    by_device = []
    for g in rollup(sessions, lambda s: s.device_type or UNKNOWN, keep_rows=True):
        scores = [s.experience_score for s in g.rows if s.experience_score is not None]
        by_device.append({
            "device": g.key,
            "avg_lcp": _vital("lcp", _mean_of([s.avg_lcp for s in g.rows])),
            "avg_inp": _vital("inp", _mean_of([s.avg_inp for s in g.rows])),
            "avg_cls": _vital("cls", _mean_of([s.avg_cls for s in g.rows])),
            "avg_experience_score": _vital("score", _mean_of(scores)),
            "sessions": len(scores),
        })

    return {
        **overall,
        "avg_experience_score": _vital("score", _mean_of([s.experience_score for s in sessions])),
        "sessions_with_vitals": sum(1 for s in sessions if s.experience_score is not None),
        "by_device": by_device,
    }


# =============================================================================
# FLOW
# =============================================================================

def funnel_flow(db: Session, funnel_id: str, window: TimeWindow, event_type: str = "page_view") -> Dict[str, Any]:
    """Page (or event) transition graph for the window."""
    if event_type not in FLOW_EVENT_TYPES:
        raise ValueError(f"event_type must be one of {FLOW_EVENT_TYPES}")

    store = FunnelStore(db)
    events = store.events(
        funnel_id, window,
        FunnelEvent.session_id, FunnelEvent.event_name, FunnelEvent.page_path,
        FunnelEvent.page_title, FunnelEvent.timestamp,
        page_views_only=event_type == "page_view",
    )
    sessions = store.sessions(funnel_id, window, FunnelSession.session_id, FunnelSession.converted)
    graph = build_flow(events, sessions)

    logger.debug(
        f"[FUNNEL_FLOW] funnel={funnel_id} events={len(events)} "
        f"nodes={len(graph.nodes)} edges={len(graph.edges)}"
    )
    return {
        "nodes": [{"id": n.id, "label": n.label, "count": n.count} for n in graph.nodes],
        "links": [{"source": e.source, "target": e.target, "value": e.weight} for e in graph.edges],
        "metrics": {
            "total_sessions": graph.total_sessions,
            "converted_sessions": graph.converted_sessions,
            "conversion_rate": graph.conversion_rate,
            "drop_off_rate": graph.drop_off_rate,
        },
    }


def stage_flow_analysis(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Sessions per canonical stage with drop-off between adjacent stages."""
    sessions = FunnelStore(db).sessions(
        funnel_id, window,
        FunnelSession.current_stage, FunnelSession.converted, FunnelSession.is_abandoned,
        FunnelSession.started_at, FunnelSession.ended_at,
        with_stage=True,
    )
    flow = stage_flow(count_stages(sessions))

    if flow.unrecognized_stages:
        logger.warning(
            f"[STAGE_FLOW] funnel={funnel_id} has unrecognized stages: {flow.unrecognized_stages}"
        )
        capture_message(
            "Unrecognized funnel stages",
            level="warning",
            extra={"funnel_id": funnel_id, "stages": flow.unrecognized_stages},
        )

    return {
        "stages": [s.to_dict() for s in flow.stages],
        "total_sessions": flow.total_sessions,
        "final_conversions": flow.final_conversions,
        "overall_conversion_rate": flow.overall_conversion_rate,
        "unrecognized_stages": flow.unrecognized_stages,
    }


# =============================================================================
# ATTRIBUTION
# =============================================================================

def _campaign_of(s) -> str:
    return s.last_campaign or s.first_campaign or "unknown"


def _any_click_id(s, side: str) -> bool:
    return resolve_touch(s, side).is_attributed


def conversions_by_platform(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """First/last touch attribution of converted sessions by click identifier."""
    sessions = FunnelStore(db).sessions(funnel_id, window, converted=True)
    split = attribution_split(sessions)
    first, last = split["first_touch"], split["last_touch"]

    platforms = [
        {
            "platform": platform,
            "first_touch_conversions": first["conversions"][platform],
            "first_touch_revenue": round2(first["revenue"][platform]),
            "last_touch_conversions": last["conversions"][platform],
            "last_touch_revenue": round2(last["revenue"][platform]),
        }
        for platform in first["conversions"]
        if first["conversions"][platform] or last["conversions"][platform]
    ]
    platforms.sort(key=lambda p: p["last_touch_revenue"], reverse=True)

    campaigns = rollup(
        sessions,
        lambda s: f"{resolve_touch(s, 'last').platform}-{_campaign_of(s)}",
        revenue_fn=lambda s: s.conversion_value,
        keep_rows=True,
    )
    campaigns.sort(key=lambda g: g.revenue, reverse=True)

    return {
        "total_conversions": len(sessions),
        "total_revenue": round2(sum(to_float(s.conversion_value) for s in sessions)),
        "first_touch": {
            "conversions": first["conversions"],
            "revenue": {k: round2(v) for k, v in first["revenue"].items()},
        },
        "last_touch": {
            "conversions": last["conversions"],
            "revenue": {k: round2(v) for k, v in last["revenue"].items()},
        },
        "platforms": platforms,
        "top_campaigns": [
            {
                "key": g.key,
                "platform": resolve_touch(g.rows[0], "last").platform,
                "campaign": _campaign_of(g.rows[0]),
                "conversions": g.count,
                "revenue": round2(g.revenue),
            }
            for g in campaigns[:10]
        ],
    }


def ad_performance(db: Session, funnel_id: str, window: TimeWindow) -> Dict[str, Any]:
    """Converted sessions per conversion platform with campaigns and a daily timeline."""
    sessions = FunnelStore(db).sessions(funnel_id, window, converted=True)
    groups = rollup(
        sessions,
        lambda s: s.conversion_platform or "unknown",
        revenue_fn=lambda s: s.conversion_value,
        keep_rows=True,
    )

    platforms = []
    for g in groups:
        campaigns = rollup(g.rows, _campaign_of, revenue_fn=lambda s: s.conversion_value)
        campaigns.sort(key=lambda c: c.revenue, reverse=True)
        platforms.append({
            "platform": g.key,
            "conversions": g.count,
            "revenue": round2(g.revenue),
            "aov": round2(safe_div(g.revenue, g.count)),
            "first_touch_attributed": sum(1 for s in g.rows if _any_click_id(s, "first")),
            "last_touch_attributed": sum(1 for s in g.rows if _any_click_id(s, "last")),
            "top_campaigns": [
                {"campaign": c.key, "conversions": c.count, "revenue": round2(c.revenue)}
                for c in campaigns[:5]
            ],
        })

    names = [g.key for g in groups]
    series = tb.aggregate_series(
        sessions, "day",
        timestamp_of=lambda s: s.started_at,
        metrics={
            name: tb.count_where(lambda s, name=name: (s.conversion_platform or "unknown") == name)
            for name in names
        },
    )
    timeline = [
        {"date": b.key, "platforms": b.values, "total": sum(b.values.values())}
        for b in series
    ]

    total_revenue = sum(g.revenue for g in groups)
    return {
        "platforms": platforms,
        "timeline": timeline,
        "summary": {
            "total_conversions": len(sessions),
            "total_revenue": round2(total_revenue),
            "aov": round2(safe_div(total_revenue, len(sessions))),
            "platform_count": len(groups),
        },
    }
