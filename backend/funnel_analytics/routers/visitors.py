"""
Visitors Router
===============

WHAT:
    Visitor profile listing and drill-downs for one funnel.

WHY:
    The list endpoint is where lifecycle stages get backfilled; concurrent
    calls are safe because the backfill only writes rows whose stage is
    still unset, with a deterministic value.

USAGE:
    GET /funnels/{funnel_id}/visitors?lifecycle_stage=LOYAL&limit=25
    GET /funnels/{funnel_id}/visitors/{anonymous_id}
    GET /funnels/{funnel_id}/visitors/{anonymous_id}/journey
    GET /funnels/{funnel_id}/sessions/{session_id}/journey
    GET /funnels/{funnel_id}/visitor-export?email=ada@example.com

REFERENCES:
    - funnel_analytics/services/visitor_analytics.py
    - funnel_analytics/services/lifecycle.py
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from funnel_analytics import schemas
from funnel_analytics.database import get_db
from funnel_analytics.deps import Settings, get_funnel, get_settings, run_analysis
from funnel_analytics.models import Funnel
from funnel_analytics.services import visitor_analytics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/funnels/{funnel_id}", tags=["visitors"])


@router.get("/visitors", response_model=schemas.VisitorProfilesResponse)
def list_visitor_profiles(
    lifecycle_stage: Optional[Literal["NEW", "RETURNING", "LOYAL", "CHURNED"]] = Query(None),
    has_identified: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, min_length=1),
    cursor: Optional[str] = Query(None, description="Id of the last profile of the previous page"),
    limit: int = Query(visitor_analytics.DEFAULT_PAGE_SIZE, ge=1, le=visitor_analytics.MAX_PAGE_SIZE),
    funnel: Funnel = Depends(get_funnel),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    """Visitors seen in this funnel, most recent first."""
    return run_analysis(
        visitor_analytics.visitor_profiles, db, funnel.id,
        lifecycle_stage=lifecycle_stage,
        has_identified=has_identified,
        search=search,
        cursor=cursor,
        limit=limit,
        churn_days=settings.LIFECYCLE_CHURN_DAYS,
    )


@router.get("/visitors/{anonymous_id}", response_model=schemas.VisitorProfileResponse)
def get_visitor_profile(
    anonymous_id: str,
    funnel: Funnel = Depends(get_funnel),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    return run_analysis(
        visitor_analytics.visitor_profile, db, funnel.id, anonymous_id,
        churn_days=settings.LIFECYCLE_CHURN_DAYS,
    )


@router.get("/visitors/{anonymous_id}/journey", response_model=schemas.VisitorJourneyResponse)
def get_visitor_journey(
    anonymous_id: str,
    funnel: Funnel = Depends(get_funnel),
    db: Session = Depends(get_db),
):
    return run_analysis(visitor_analytics.visitor_journey, db, funnel.id, anonymous_id)


@router.get("/sessions/{session_id}/journey", response_model=schemas.SessionJourneyResponse)
def get_session_journey(
    session_id: str,
    funnel: Funnel = Depends(get_funnel),
    db: Session = Depends(get_db),
):
    """One session's events in order, with Web Vitals and stage history."""
    return run_analysis(visitor_analytics.session_journey, db, funnel.id, session_id)


@router.get("/visitor-export", response_model=schemas.VisitorExportResponse)
def export_visitor_data(
    anonymous_id: Optional[str] = Query(None),
    email: Optional[str] = Query(None, description="Identified user id the visitor signed in with"),
    funnel: Funnel = Depends(get_funnel),
    db: Session = Depends(get_db),
):
    """Profile, sessions and events of one visitor in this funnel."""
    return run_analysis(
        visitor_analytics.export_visitor_data, db, funnel.id,
        anonymous_id=anonymous_id, email=email,
    )
