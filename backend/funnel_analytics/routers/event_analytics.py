"""
Event Analytics Router
======================

WHAT:
    Event-level analytics for one funnel: trends, category and
    micro-conversion breakdowns, property breakdowns, frequency, event
    geography/devices/browsers, engagement, the purchase heatmap and Web
    Vitals percentiles.

USAGE:
    GET /funnels/{funnel_id}/events/trend?time_range=24h
    GET /funnels/{funnel_id}/events/properties?event_name=add_to_cart&limit=5
    GET /funnels/{funnel_id}/events/frequency?event_name=page_view
    GET /funnels/{funnel_id}/events/web-vitals?time_range=30d

REFERENCES:
    - funnel_analytics/services/event_analytics.py
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from funnel_analytics import schemas
from funnel_analytics.database import get_db
from funnel_analytics.deps import get_funnel, get_time_window, run_analysis
from funnel_analytics.models import Funnel
from funnel_analytics.services import event_analytics
from funnel_analytics.services.time_range import TimeWindow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/funnels/{funnel_id}/events", tags=["event-analytics"])

Interval = Literal["15min", "30min", "hour", "4hour", "day"]


@router.get("/trend", response_model=schemas.EventsTrendResponse)
def get_events_trend(
    interval: Optional[Literal["hour", "day"]] = Query(None),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Page views vs custom events over time."""
    return run_analysis(event_analytics.events_trend, db, funnel.id, window, interval=interval)


@router.get("/over-time", response_model=schemas.EventsOverTimeResponse)
def get_events_over_time(
    interval: Optional[Interval] = Query(None),
    event_name: Optional[str] = Query(None),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(
        event_analytics.events_over_time, db, funnel.id, window,
        interval=interval, event_name=event_name,
    )


@router.get("/category-trend", response_model=schemas.EventCategoryTrendResponse)
def get_event_category_trend(
    interval: Optional[Interval] = Query(None),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(event_analytics.event_category_trend, db, funnel.id, window, interval=interval)


@router.get("/categories", response_model=schemas.CategoryBreakdownResponse)
def get_category_breakdown(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Micro-conversion events by category."""
    return run_analysis(event_analytics.category_breakdown, db, funnel.id, window)


@router.get("/micro-conversions", response_model=schemas.TopMicroConversionsResponse)
def get_top_micro_conversions(
    limit: int = Query(20, ge=1, le=100),
    min_sessions: int = Query(5, ge=1),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(
        event_analytics.top_micro_conversions, db, funnel.id, window,
        limit=limit, min_sessions=min_sessions,
    )


@router.get("/properties", response_model=schemas.EventPropertiesResponse)
def get_event_properties_breakdown(
    event_name: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Breakdown per property key found on the window's events."""
    return run_analysis(
        event_analytics.event_properties_breakdown, db, funnel.id, window,
        event_name=event_name, limit=limit,
    )


@router.get("/frequency", response_model=schemas.EventFrequencyResponse)
def get_event_frequency(
    event_name: str = Query(..., min_length=1),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(event_analytics.event_frequency, db, funnel.id, window, event_name=event_name)


@router.get("/geography", response_model=schemas.EventGeographyResponse)
def get_event_geography(
    event_name: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(
        event_analytics.event_geography, db, funnel.id, window,
        event_name=event_name, limit=limit,
    )


@router.get("/devices", response_model=schemas.EventDevicesResponse)
def get_event_devices(
    event_name: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(
        event_analytics.event_devices, db, funnel.id, window,
        event_name=event_name, limit=limit,
    )


@router.get("/browsers", response_model=schemas.EventBrowsersResponse)
def get_event_browsers(
    event_name: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(
        event_analytics.event_browsers, db, funnel.id, window,
        event_name=event_name, limit=limit,
    )


@router.get("/engagement", response_model=schemas.EventEngagementResponse)
def get_event_engagement(
    limit: int = Query(20, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Engagement per event over sessions that measured engagement."""
    return run_analysis(event_analytics.event_engagement, db, funnel.id, window, limit=limit)


@router.get("/purchase-heatmap", response_model=schemas.PurchaseHeatmapResponse)
def get_purchase_heatmap(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(event_analytics.purchase_heatmap, db, funnel.id, window)


@router.get("/web-vitals", response_model=schemas.WebVitalsStatsResponse)
def get_web_vitals_stats(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """p50/p75/p90/p95 and GOOD/NEEDS_IMPROVEMENT/POOR mix per metric."""
    return run_analysis(event_analytics.web_vitals_stats, db, funnel.id, window)
