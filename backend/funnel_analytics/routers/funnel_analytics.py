"""
Funnel Analytics Router
=======================

WHAT:
    Session-level analytics for one funnel: overview, traffic sources, UTM,
    session trend, devices, geography, Web Vitals, page flow, stage flow,
    attribution, plus the parallel dashboard.

WHY:
    - Frontend should be dumb: every number is computed server-side
    - One endpoint per analysis keeps responses typed and cacheable
    - The dashboard endpoint computes many analyses concurrently

USAGE:
    GET /funnels/{funnel_id}/traffic-sources?time_range=30d
    GET /funnels/{funnel_id}/stage-flow?start_date=2025-12-01T00:00:00&end_date=2025-12-31T23:59:59
    GET /funnels/{funnel_id}/dashboard?analyses=devices,geography

    Every request carries X-Organization-Id (and X-Subaccount-Id where the
    funnel belongs to a subaccount).

REFERENCES:
    - funnel_analytics/services/session_analytics.py
    - funnel_analytics/services/dashboard.py
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, sessionmaker

from funnel_analytics import schemas
from funnel_analytics.database import get_db, get_session_factory
from funnel_analytics.deps import (
    TenantScope,
    get_funnel,
    get_max_workers,
    get_tenant_scope,
    get_time_window,
    run_analysis,
)
from funnel_analytics.models import Funnel
from funnel_analytics.services import session_analytics
from funnel_analytics.services.dashboard import build_dashboard
from funnel_analytics.services.time_range import TimeWindow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/funnels/{funnel_id}", tags=["funnel-analytics"])

Interval = Literal["15min", "30min", "hour", "4hour", "day"]


@router.get("/overview", response_model=schemas.OverviewResponse)
def get_overview(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Headline counters for the window."""
    return run_analysis(session_analytics.overview, db, funnel.id, window)


@router.get("/traffic-sources", response_model=schemas.TrafficSourcesResponse)
def get_traffic_sources(
    limit: int = Query(20, ge=1, le=100),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """First-touch source/medium/campaign breakdown."""
    return run_analysis(session_analytics.traffic_sources, db, funnel.id, window, limit=limit)


@router.get("/utm", response_model=schemas.UtmAnalyticsResponse)
def get_utm_analytics(
    group_by: Literal["source", "medium", "campaign", "all"] = Query("source"),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.utm_analytics, db, funnel.id, window, group_by=group_by)


@router.get("/sessions-trend", response_model=schemas.SessionsTrendResponse)
def get_sessions_trend(
    interval: Optional[Interval] = Query(None, description="Defaults to hour for 24h, day otherwise"),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.sessions_trend, db, funnel.id, window, interval=interval)


@router.get("/devices", response_model=schemas.DeviceAnalyticsResponse)
def get_device_analytics(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.device_analytics, db, funnel.id, window)


@router.get("/geography", response_model=schemas.GeographyAnalyticsResponse)
def get_geography_analytics(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Country/city breakdown; sessions without geography fall back to their events."""
    return run_analysis(session_analytics.geography_analytics, db, funnel.id, window)


@router.get("/performance", response_model=schemas.PerformanceAnalyticsResponse)
def get_performance_analytics(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.performance_analytics, db, funnel.id, window)


@router.get("/flow", response_model=schemas.FunnelFlowResponse)
def get_funnel_flow(
    event_type: Literal["page_view", "all"] = Query("page_view"),
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Transition graph between pages (or all events)."""
    return run_analysis(session_analytics.funnel_flow, db, funnel.id, window, event_type=event_type)


@router.get("/stage-flow", response_model=schemas.StageFlowResponse)
def get_stage_flow(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    """Sessions per canonical stage with drop-off between adjacent stages."""
    return run_analysis(session_analytics.stage_flow_analysis, db, funnel.id, window)


@router.get("/conversions-by-platform", response_model=schemas.ConversionsByPlatformResponse)
def get_conversions_by_platform(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.conversions_by_platform, db, funnel.id, window)


@router.get("/ad-performance", response_model=schemas.AdPerformanceResponse)
def get_ad_performance(
    funnel: Funnel = Depends(get_funnel),
    window: TimeWindow = Depends(get_time_window),
    db: Session = Depends(get_db),
):
    return run_analysis(session_analytics.ad_performance, db, funnel.id, window)


@router.get("/dashboard", response_model=schemas.DashboardResponse)
def get_dashboard(
    funnel_id: str,
    analyses: Optional[str] = Query(None, description="Comma-separated analysis names"),
    scope: TenantScope = Depends(get_tenant_scope),
    window: TimeWindow = Depends(get_time_window),
    max_workers: int = Depends(get_max_workers),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Several analyses computed in parallel for the same window.

    Failed analyses are listed under `errors`; the rest still succeed.
    """
    names = [a.strip() for a in analyses.split(",") if a.strip()] if analyses else None
    return run_analysis(
        build_dashboard,
        funnel_id,
        scope,
        window,
        names,
        session_factory=session_factory,
        max_workers=max_workers,
    )
